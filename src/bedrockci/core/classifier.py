# bedrockci/core/classifier.py
"""Classification of Bedrock Dedicated Server log lines.

Each output line is matched against :data:`RULES`, an ordered table evaluated
top to bottom where the first matching rule wins. A match yields either a
lifecycle signal (the server finished loading, or it failed fatally) or a
:class:`Diagnostic`. Lines no rule matches are not interesting and yield
``None``.

Server lines look like ``[2025-06-01 12:00:00:123 ERROR] message`` (older
builds and some subsystems print just ``[ERROR] message``). The bracketed
prefix is parsed for the level and stripped to form the diagnostic message.

Classification is a pure function of the line and the packs under test.
"""
import enum
import logging
import re
from dataclasses import dataclass, replace
from typing import FrozenSet, Optional, Pattern, Sequence, Tuple

from bedrockci.core.packs import PackReference

logger = logging.getLogger(__name__)

READY_MARKER = "Server started."

_PREFIX_RE = re.compile(
    r"^\s*(?:NO LOG FILE! - )?"
    r"\[(?:(?P<timestamp>\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2}(?:[:.]\d+)?)\s+)?"
    r"(?P<level>[A-Z]+)\]\s*(?P<message>.*)$"
)


class Signal(enum.Enum):
    READY = "ready"
    FATAL = "fatal"
    DIAGNOSTIC = "diagnostic"


class DiagnosticKind(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """An error or warning extracted from one server output line."""

    kind: DiagnosticKind
    message: str
    raw_line: str
    source_pack: Optional[PackReference] = None
    rule: str = ""

    def demoted(self) -> "Diagnostic":
        """Returns this diagnostic as a warning."""
        if self.kind is DiagnosticKind.WARNING:
            return self
        return replace(self, kind=DiagnosticKind.WARNING)


@dataclass(frozen=True)
class Rule:
    """One row of the classification table.

    A rule matches when the line's level is in ``levels`` (any level, or no
    prefix at all, when ``levels`` is None) and ``pattern`` is found in the
    line. An unprefixed line has the level ``None``.
    """

    name: str
    pattern: Pattern
    signal: Signal
    kind: Optional[DiagnosticKind] = None
    levels: Optional[FrozenSet[Optional[str]]] = None

    def matches(self, line: str, level: Optional[str]) -> Optional["re.Match"]:
        if self.levels is not None and level not in self.levels:
            return None
        return self.pattern.search(line)


@dataclass(frozen=True)
class Classification:
    """The result of classifying a line that matched a rule.

    Diagnostic and fatal lines carry a :class:`Diagnostic`; the ready signal
    does not.
    """

    signal: Signal
    rule: str
    message: str
    diagnostic: Optional[Diagnostic] = None


_ERROR_LEVELS = frozenset({"ERROR"})
_WARN_LEVELS = frozenset({"WARN", "WARNING"})
_FATAL_LEVELS = frozenset({"FATAL", "CRITICAL"})
# Unprefixed lines come from the loader before logging is set up.
_ERROR_OR_BARE_LEVELS = frozenset({"ERROR", None})

_MANIFEST_RE = re.compile(
    r"manifest (?:is )?(?:invalid|malformed|could not be (?:parsed|read))"
    r"|(?:invalid|malformed|unable to (?:parse|read)) (?:pack )?manifest"
    r"|\[Manifest\]",
    re.IGNORECASE,
)
_DEPENDENCY_RE = re.compile(
    r"(?:missing|unable to find|could not find|cannot find|unresolved) (?:pack )?dependenc(?:y|ies)"
    r"|dependenc(?:y|ies) (?:is |are )?(?:missing|not found|could not be found)",
    re.IGNORECASE,
)

RULES: Tuple[Rule, ...] = (
    Rule(
        "ready",
        re.compile(re.escape(READY_MARKER)),
        Signal.READY,
    ),
    Rule(
        "fatal-level",
        re.compile(r"."),
        Signal.FATAL,
        DiagnosticKind.ERROR,
        levels=_FATAL_LEVELS,
    ),
    Rule(
        "fatal-crash",
        re.compile(
            r"Segmentation fault|core dumped|\bCrash(?:ed)? (?:detected|handler|dump)"
            r"|\bcorrupt(?:ed)? (?:world|level)\b|\b(?:world|level) (?:is |was )?corrupt"
            r"|\b(?:unable|failed) to (?:open|load) (?:the )?(?:world|level)\b",
            re.IGNORECASE,
        ),
        Signal.FATAL,
        DiagnosticKind.ERROR,
    ),
    Rule(
        "manifest-invalid",
        _MANIFEST_RE,
        Signal.DIAGNOSTIC,
        DiagnosticKind.ERROR,
        levels=_ERROR_OR_BARE_LEVELS,
    ),
    Rule(
        "manifest-warning",
        _MANIFEST_RE,
        Signal.DIAGNOSTIC,
        DiagnosticKind.WARNING,
        levels=_WARN_LEVELS,
    ),
    Rule(
        "dependency-missing",
        _DEPENDENCY_RE,
        Signal.DIAGNOSTIC,
        DiagnosticKind.ERROR,
        levels=_ERROR_OR_BARE_LEVELS,
    ),
    Rule(
        "dependency-warning",
        _DEPENDENCY_RE,
        Signal.DIAGNOSTIC,
        DiagnosticKind.WARNING,
        levels=_WARN_LEVELS,
    ),
    Rule(
        "script-error",
        re.compile(
            r"\[Scripting\]|script engine|\b(?:TypeError|ReferenceError|SyntaxError|RangeError)\b",
            re.IGNORECASE,
        ),
        Signal.DIAGNOSTIC,
        DiagnosticKind.ERROR,
        levels=_ERROR_LEVELS,
    ),
    Rule(
        "error",
        re.compile(r"."),
        Signal.DIAGNOSTIC,
        DiagnosticKind.ERROR,
        levels=_ERROR_LEVELS,
    ),
    Rule(
        "warning",
        re.compile(r"."),
        Signal.DIAGNOSTIC,
        DiagnosticKind.WARNING,
        levels=_WARN_LEVELS,
    ),
)


def split_prefix(line: str) -> Tuple[Optional[str], str]:
    """Splits a server line into its level (if any) and its message."""
    match = _PREFIX_RE.match(line)
    if not match:
        return None, line.strip()
    return match.group("level"), match.group("message").strip()


def attribute_pack(line: str, packs: Sequence[PackReference]) -> Optional[PackReference]:
    """Finds the pack a line refers to, by UUID first, then by name.

    When several pack names occur in the line, the longest one wins, so a
    pack called ``foo`` is not credited with a message about ``foo_extra``.
    """
    if not packs:
        return None
    lowered = line.lower()
    for pack in packs:
        if pack.uuid and pack.uuid in lowered:
            return pack

    best: Optional[PackReference] = None
    best_length = 0
    for pack in packs:
        for token in (pack.name, pack.dir_name):
            token = (token or "").strip().lower()
            if len(token) > best_length and token in lowered:
                best, best_length = pack, len(token)
    return best


def classify_line(
    line: str,
    packs: Sequence[PackReference] = (),
    rules: Sequence[Rule] = RULES,
) -> Optional[Classification]:
    """Classifies one server output line.

    Args:
        line: The raw line, without its trailing newline.
        packs: The packs under test, used to attribute diagnostics.
        rules: The rule table. Defaults to :data:`RULES`.

    Returns:
        The classification of the first matching rule, or None when no rule
        matches.
    """
    if not line or not line.strip():
        return None

    level, message = split_prefix(line)
    for rule in rules:
        if not rule.matches(line, level):
            continue
        if rule.kind is None:
            return Classification(signal=rule.signal, rule=rule.name, message=message)
        diagnostic = Diagnostic(
            kind=rule.kind,
            message=message,
            raw_line=line,
            source_pack=attribute_pack(line, packs),
            rule=rule.name,
        )
        return Classification(signal=rule.signal, rule=rule.name, message=message, diagnostic=diagnostic)
    return None


class LogClassifier:
    """Binds :func:`classify_line` to the packs of one session."""

    def __init__(self, packs: Sequence[PackReference] = (), rules: Sequence[Rule] = RULES):
        self.packs = tuple(packs)
        self.rules = tuple(rules)

    def classify(self, line: str) -> Optional[Classification]:
        return classify_line(line, self.packs, self.rules)
