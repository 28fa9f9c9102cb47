# bedrockci/core/session.py
"""
Runs one validation: start a server with packs, watch its output, judge it.

A :class:`ValidationSession` owns a workspace and the server process started
in it. Output lines, process exit, the deadline and cancellation all arrive as
events on one queue, and the thread calling :meth:`ValidationSession.run` is
the only one that consumes them and changes the session state::

    STARTING -> RUNNING -> COMPLETED | TIMED_OUT | CRASHED | CANCELLED -> CLOSED

Whatever the terminal state, the server is stopped and the workspace removed
before the :class:`ValidationResult` is built.
"""
import enum
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from bedrockci.core.archive_store import InstalledServerInstance
from bedrockci.core.classifier import Diagnostic, DiagnosticKind, LogClassifier, Signal
from bedrockci.core.packs import PackReference
from bedrockci.core.process import ServerProcess
from bedrockci.core.workspace import SessionWorkspace
from bedrockci.error import SessionClosedError

logger = logging.getLogger(__name__)

DEFAULT_DEADLINE = 60.0
DEFAULT_GRACE_PERIOD = 10.0

_LINE = "line"
_EXITED = "exited"
_DEADLINE = "deadline"
_CANCEL = "cancel"


class SessionState(enum.Enum):
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CRASHED = "crashed"
    CANCELLED = "cancelled"
    CLOSED = "closed"


class TerminationReason(str, enum.Enum):
    READY_DETECTED = "ready_detected"
    TIMEOUT = "timeout"
    PROCESS_CRASHED = "process_crashed"
    CANCELLED = "cancelled"


_REASONS = {
    SessionState.COMPLETED: TerminationReason.READY_DETECTED,
    SessionState.TIMED_OUT: TerminationReason.TIMEOUT,
    SessionState.CRASHED: TerminationReason.PROCESS_CRASHED,
    SessionState.CANCELLED: TerminationReason.CANCELLED,
}


@dataclass(frozen=True)
class ValidationPolicy:
    """How diagnostics affect the verdict.

    Attributes:
        only_warn: Treat every error as a warning.
        fail_on_warn: Fail when any warning remains.
    """

    only_warn: bool = False
    fail_on_warn: bool = False


@dataclass(frozen=True)
class ValidationResult:
    passed: bool
    diagnostics: Tuple[Diagnostic, ...]
    termination_reason: TerminationReason
    version: Optional[str] = None
    duration: float = 0.0
    exit_code: Optional[int] = None

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind is DiagnosticKind.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind is DiagnosticKind.WARNING]


def compute_verdict(
    diagnostics: Iterable[Diagnostic],
    reason: TerminationReason,
    policy: Optional[ValidationPolicy] = None,
) -> Tuple[bool, Tuple[Diagnostic, ...]]:
    """Decides whether a run passed.

    With ``only_warn`` every error is demoted to a warning, and the returned
    diagnostics carry the demoted kinds. A run that did not reach the ready
    signal never passes.

    Returns:
        A ``(passed, diagnostics)`` tuple.
    """
    policy = policy or ValidationPolicy()
    diagnostics = tuple(diagnostics)
    if policy.only_warn:
        diagnostics = tuple(d.demoted() for d in diagnostics)

    if reason is not TerminationReason.READY_DETECTED:
        return False, diagnostics

    has_errors = any(d.kind is DiagnosticKind.ERROR for d in diagnostics)
    has_warnings = any(d.kind is DiagnosticKind.WARNING for d in diagnostics)
    return not has_errors and not (policy.fail_on_warn and has_warnings), diagnostics


def _as_pack(pack: Union[PackReference, str]) -> PackReference:
    if isinstance(pack, PackReference):
        return pack
    return PackReference.from_directory(pack)


class ValidationSession:
    """A single validation run against one installed server.

    Args:
        instance: The installed server to validate against.
        packs: Packs to activate, in order. Paths are read as pack
            directories.
        deadline: Seconds to wait for the ready signal.
        policy: Verdict policy. Defaults to strict.
        grace_period: Seconds the server gets to stop before it is killed.
        quiet_period: When set, keep reading after the ready signal until no
            line arrives for this many seconds.
        line_callback: Called with every output line, in order.
        base_dir: Parent directory for the workspace.
        property_overrides: Extra ``server.properties`` values.
        link_packs: Symlink packs into the workspace instead of copying.
    """

    def __init__(
        self,
        instance: InstalledServerInstance,
        packs: Sequence[Union[PackReference, str]],
        deadline: float = DEFAULT_DEADLINE,
        policy: Optional[ValidationPolicy] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        quiet_period: Optional[float] = None,
        line_callback: Optional[Callable[[str], None]] = None,
        base_dir: Optional[str] = None,
        property_overrides: Optional[Mapping[str, str]] = None,
        link_packs: bool = False,
    ):
        if deadline <= 0:
            raise ValueError("deadline must be positive.")
        if quiet_period is not None and quiet_period <= 0:
            raise ValueError("quiet_period must be positive.")

        self.instance = instance
        self.packs = [_as_pack(p) for p in packs]
        self.deadline = deadline
        self.policy = policy or ValidationPolicy()
        self.grace_period = grace_period
        self.quiet_period = quiet_period
        self.line_callback = line_callback
        self.base_dir = base_dir
        self.property_overrides = dict(property_overrides or {})
        self.link_packs = link_packs

        self._classifier = LogClassifier(self.packs)
        self._events: "queue.Queue[Tuple[str, Optional[str]]]" = queue.Queue()
        self._diagnostics: List[Diagnostic] = []
        self._run_lock = threading.Lock()
        self._used = False
        self._state = SessionState.STARTING

    @property
    def state(self) -> SessionState:
        return self._state

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"Session state {self._state.value} -> {state.value}")
        self._state = state

    def cancel(self) -> None:
        """Asks a running session to stop. Safe to call from any thread."""
        logger.info("Cancellation requested.")
        self._events.put((_CANCEL, None))

    def run(self) -> ValidationResult:
        """Runs the validation and returns its result.

        Raises:
            SessionClosedError: If the session has already been run.
            WorkspaceSetupError: If the workspace cannot be built.
            SpawnError: If the server cannot be started.
        """
        with self._run_lock:
            if self._used:
                raise SessionClosedError("A validation session can only be run once.")
            self._used = True

        started = time.monotonic()
        logger.info(f"Validating {len(self.packs)} pack(s) against server {self.instance.version}")

        try:
            workspace = SessionWorkspace.create(
                self.instance,
                self.packs,
                base_dir=self.base_dir,
                property_overrides=self.property_overrides,
                link_packs=self.link_packs,
            )
        except Exception:
            self._transition(SessionState.CLOSED)
            raise

        try:
            process = ServerProcess.launch(workspace)
        except Exception:
            workspace.destroy()
            self._transition(SessionState.CLOSED)
            raise

        forwarder = threading.Thread(
            target=self._forward_output,
            args=(process,),
            name=f"bedrockci-session-{process.pid}",
            daemon=True,
        )
        timer = threading.Timer(self.deadline, self._events.put, args=((_DEADLINE, None),))
        timer.daemon = True

        terminal = SessionState.CRASHED
        try:
            self._transition(SessionState.RUNNING)
            forwarder.start()
            timer.start()
            terminal = self._consume_events()
            self._transition(terminal)
        finally:
            timer.cancel()
            try:
                exit_code = process.stop(self.grace_period)
                forwarder.join(timeout=self.grace_period)
            finally:
                workspace.destroy()

        reason = _REASONS[terminal]
        passed, diagnostics = compute_verdict(self._diagnostics, reason, self.policy)
        result = ValidationResult(
            passed=passed,
            diagnostics=diagnostics,
            termination_reason=reason,
            version=self.instance.version,
            duration=time.monotonic() - started,
            exit_code=exit_code,
        )
        self._transition(SessionState.CLOSED)
        logger.info(
            f"Validation finished: {reason.value}, passed={passed}, "
            f"{len(result.errors)} error(s), {len(result.warnings)} warning(s)"
        )
        return result

    def _forward_output(self, process: ServerProcess) -> None:
        while True:
            line = process.next_line()
            if line is None:
                break
            self._events.put((_LINE, line))
        self._events.put((_EXITED, None))

    def _consume_events(self) -> SessionState:
        ready = False
        while True:
            try:
                kind, line = self._events.get(timeout=self.quiet_period if ready else None)
            except queue.Empty:
                logger.info(f"No output for {self.quiet_period}s after ready signal.")
                return SessionState.COMPLETED

            if kind == _CANCEL:
                return SessionState.CANCELLED
            if kind == _DEADLINE:
                if ready:
                    return SessionState.COMPLETED
                logger.warning(f"Server did not become ready within {self.deadline}s.")
                return SessionState.TIMED_OUT
            if kind == _EXITED:
                if ready:
                    return SessionState.COMPLETED
                logger.warning("Server exited before becoming ready.")
                return SessionState.CRASHED

            if self.line_callback is not None:
                self.line_callback(line)
            classification = self._classifier.classify(line)
            if classification is None:
                continue
            if classification.diagnostic is not None:
                self._diagnostics.append(classification.diagnostic)

            if classification.signal is Signal.READY:
                if not ready:
                    logger.info("Server reported ready.")
                ready = True
                if self.quiet_period is None:
                    return SessionState.COMPLETED
            elif classification.signal is Signal.FATAL:
                logger.warning(f"Fatal server output: {classification.message}")
                return SessionState.CRASHED


def validate(
    instance: InstalledServerInstance,
    packs: Sequence[Union[PackReference, str]],
    deadline: float = DEFAULT_DEADLINE,
    policy: Optional[ValidationPolicy] = None,
    **kwargs,
) -> ValidationResult:
    """Validates ``packs`` against ``instance`` and returns the result.

    Keyword arguments are passed to :class:`ValidationSession`.
    """
    return ValidationSession(instance, packs, deadline=deadline, policy=policy, **kwargs).run()
