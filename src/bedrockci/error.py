# bedrockci/error.py
"""Defines the exception hierarchy for bedrockci.

Every exception raised deliberately by the package derives from
:class:`BedrockCIError`, so callers (the CLI, CI wrappers) can catch a single
base class. All of these are fatal to the operation that raised them and are
never retried by the core; retry policy belongs to the calling tool.

Note that a server crash or a startup timeout is *not* an exception: those are
terminal states of a validation session and are reported in its result.
"""
from typing import Optional


class BedrockCIError(Exception):
    """Base exception for all bedrockci errors."""


# --- Installation / catalog ---


class CatalogUnavailable(BedrockCIError):
    """Raised when the upstream server catalog cannot be fetched or parsed."""


class EulaNotAccepted(BedrockCIError):
    """Raised when a download is attempted without accepting the EULA."""

    def __init__(self, message: str = "EULA and Privacy Policy not accepted"):
        super().__init__(message)
        self.message = message


class DownloadFailed(BedrockCIError):
    """Raised when a server archive cannot be downloaded."""

    def __init__(self, url: str, message: str = "Failed to download server"):
        super().__init__(f"{message}: {url}")
        self.url = url
        self.message = message


class ArchiveCorrupt(BedrockCIError):
    """Raised when a downloaded archive is not a usable server archive."""


class ServerNotInstalledError(BedrockCIError):
    """Raised when a requested server version is not installed locally."""

    def __init__(self, version: Optional[str], message: str = "Server version not installed"):
        super().__init__(f"{message}: {version}" if version else message)
        self.version = version
        self.message = message


# --- Session ---


class WorkspaceSetupError(BedrockCIError):
    """Raised when a session workspace cannot be built."""


class SpawnError(BedrockCIError):
    """Raised when the server binary cannot be started."""

    def __init__(self, executable: str, message: str = "Failed to start server"):
        super().__init__(f"{message}: {executable}")
        self.executable = executable
        self.message = message


class SessionClosedError(BedrockCIError):
    """Raised when a validation session is used after it has closed."""


# --- General ---


class ConfigurationError(BedrockCIError):
    """Raised when the application configuration cannot be read or written."""


class MissingArgumentError(BedrockCIError, ValueError):
    """Raised when a required argument is empty or missing."""
