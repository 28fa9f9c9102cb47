# bedrockci/cli/run.py
"""
Click command that runs a development server with packs until interrupted.

Packs are symlinked into a fresh workspace, so edits to the pack sources are
visible to the server after a reload. The workspace is removed when the server
stops.
"""
import logging
from typing import Optional

import click

from bedrockci.cli.utils import echo_line, get_archive_store, resolve_instance
from bedrockci.config.settings import get_settings_instance
from bedrockci.core.classifier import LogClassifier, Signal
from bedrockci.core.packs import load_packs
from bedrockci.core.process import ServerProcess
from bedrockci.core.workspace import SessionWorkspace
from bedrockci.error import BedrockCIError

logger = logging.getLogger(__name__)


def _show_line(line: str, classifier: LogClassifier, verbose: bool) -> None:
    classification = classifier.classify(line)
    if classification is not None and classification.signal is Signal.READY:
        click.secho("Server has started successfully! Ready for connections.", fg="green", bold=True)
        return
    if verbose or classification is not None:
        echo_line(line)


@click.command("run")
@click.option("--rp", "resource_pack", required=True, type=click.Path(), help="Path to the resource pack.")
@click.option("--bp", "behavior_pack", required=True, type=click.Path(), help="Path to the behavior pack.")
@click.option("--version", "version", default=None, help="Server version to use. Defaults to the latest installed.")
@click.option("--verbose", is_flag=True, default=False, help="Print all server output.")
def run(resource_pack: str, behavior_pack: str, version: Optional[str], verbose: bool):
    """Runs a server with the given packs until Ctrl+C."""
    settings = get_settings_instance()
    try:
        instance = resolve_instance(get_archive_store(), version)
        packs = load_packs([behavior_pack, resource_pack])
        click.secho(f"Using server version: {instance.version}", fg="cyan", bold=True)
        workspace = SessionWorkspace.create(
            instance,
            packs,
            base_dir=settings.get("paths.workspaces"),
            link_packs=True,
        )
    except BedrockCIError as e:
        click.secho(f"Could not prepare server: {e}", fg="red", err=True)
        raise click.Abort()

    with workspace:
        try:
            process = ServerProcess.launch(workspace)
        except BedrockCIError as e:
            click.secho(f"Could not start server: {e}", fg="red", err=True)
            raise click.Abort()

        click.secho("Server is running! Press Ctrl+C to stop.", fg="green", bold=True)
        if not verbose:
            click.secho("Use --verbose to see all server output", dim=True)

        classifier = LogClassifier(packs)
        try:
            while True:
                line = process.next_line()
                if line is None:
                    click.secho("Server exited.", fg="yellow")
                    break
                _show_line(line, classifier, verbose)
        except KeyboardInterrupt:
            click.secho("\nReceived Ctrl+C, stopping server...", fg="yellow")
        finally:
            exit_code = process.stop(float(settings.get("validation.grace_period")))
            logger.info(f"Development server exited with code {exit_code}")

    click.secho("Server stopped successfully.", fg="green")
