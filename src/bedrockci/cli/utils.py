# bedrockci/cli/utils.py
"""
Helpers shared by the command-line commands.

Resolves the installation root and server version from settings and command
options, and prints validation results.
"""
import logging
from typing import Optional

import click

from bedrockci.config.settings import get_settings_instance
from bedrockci.core.archive_store import ArchiveStore, InstalledServerInstance
from bedrockci.core.classifier import Diagnostic
from bedrockci.core.session import TerminationReason, ValidationResult
from bedrockci.error import ServerNotInstalledError

logger = logging.getLogger(__name__)

_REASON_TEXT = {
    TerminationReason.READY_DETECTED: "server started",
    TerminationReason.TIMEOUT: "server did not start before the deadline",
    TerminationReason.PROCESS_CRASHED: "server crashed during startup",
    TerminationReason.CANCELLED: "validation was cancelled",
}


def get_archive_store() -> ArchiveStore:
    """Builds an :class:`ArchiveStore` rooted at the configured server path."""
    return ArchiveStore(get_settings_instance().get("paths.servers"))


def resolve_instance(store: ArchiveStore, version: Optional[str]) -> InstalledServerInstance:
    """Finds the installed server to use, defaulting to the newest one.

    Raises:
        ServerNotInstalledError: If the version (or any version) is not
            installed.
    """
    if version:
        instance = store.get_installed(version)
        if instance is None:
            raise ServerNotInstalledError(
                version,
                f"Server version {version} not found. Download it first with: "
                f"bedrockci download --version {version}",
            )
        return instance

    instance = store.latest_installed()
    if instance is None:
        raise ServerNotInstalledError(
            None, "No server versions found. Download one first with: bedrockci download"
        )
    click.echo(f"No version specified, using latest installed: {instance.version}")
    return instance


def format_diagnostic(diagnostic: Diagnostic) -> str:
    if diagnostic.source_pack is not None:
        return f"[{diagnostic.source_pack.label}] {diagnostic.message}"
    return diagnostic.message


def echo_line(line: str) -> None:
    """Prints a server output line, colored by its level."""
    if "ERROR" in line or "FATAL" in line:
        click.secho(line, fg="red")
    elif "WARN" in line:
        click.secho(line, fg="yellow")
    elif "INFO" in line:
        click.secho(line, fg="blue")
    else:
        click.secho(line, dim=True)


def print_result(result: ValidationResult) -> None:
    """Prints the diagnostics and the verdict of a validation run."""
    click.secho("Validation Results:", fg="cyan", bold=True)

    if result.errors:
        click.secho("\nErrors:", fg="red", bold=True)
        for diagnostic in result.errors:
            click.secho(f"  {format_diagnostic(diagnostic)}", fg="red")

    if result.warnings:
        click.secho("\nWarnings:", fg="yellow", bold=True)
        for diagnostic in result.warnings:
            click.secho(f"  {format_diagnostic(diagnostic)}", fg="yellow")

    summary = (
        f"{len(result.errors)} error(s) and {len(result.warnings)} warning(s), "
        f"{_REASON_TEXT[result.termination_reason]} ({result.duration:.1f}s)"
    )
    if result.passed:
        click.secho(f"\nValidation passed with {summary}", fg="green")
    else:
        click.secho(f"\nValidation failed with {summary}", fg="red", bold=True)
