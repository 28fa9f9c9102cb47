# bedrockci/__init__.py
import logging

from bedrockci.config.const import get_installed_version
from bedrockci.config.settings import Settings
from bedrockci.core.archive_store import ArchiveStore, InstalledServerInstance
from bedrockci.core.downloader import BedrockDownloader, ServerVersion
from bedrockci.core.packs import PackKind, PackReference
from bedrockci.core.classifier import Diagnostic, DiagnosticKind, classify_line
from bedrockci.core.session import (
    TerminationReason,
    ValidationPolicy,
    ValidationResult,
    ValidationSession,
    validate,
)

logger = logging.getLogger(__name__)

__version__ = get_installed_version()
