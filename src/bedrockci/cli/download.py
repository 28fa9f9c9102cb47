# bedrockci/cli/download.py
"""
Click command that downloads and installs a Bedrock Dedicated Server version.
"""
import logging
from typing import Optional

import click

from bedrockci.cli.utils import get_archive_store
from bedrockci.config.const import EULA_TEXT
from bedrockci.error import BedrockCIError, EulaNotAccepted

logger = logging.getLogger(__name__)


@click.command("download")
@click.option(
    "--accept-eula",
    is_flag=True,
    default=False,
    help="Accept the Minecraft EULA and Privacy Policy.",
)
@click.option("--version", "version", default=None, help="Server version to install. Defaults to the latest.")
@click.option("--preview", is_flag=True, default=False, help="Use the preview channel when resolving the latest version.")
@click.option("--force-reinstall", is_flag=True, default=False, help="Download again even if already installed.")
def download(accept_eula: bool, version: Optional[str], preview: bool, force_reinstall: bool):
    """Downloads a Bedrock Dedicated Server into the installation root."""
    store = get_archive_store()
    try:
        if version is None:
            target = store.latest_remote_version(preview=preview)
            click.echo(f"No version specified, using latest version: {target.version}")
        else:
            target = version

        target_version = target if isinstance(target, str) else target.version
        if not force_reinstall and store.get_installed(target_version) is not None:
            click.secho(
                f"Server {target_version} already installed, use --force-reinstall to download again",
                fg="yellow",
            )
            return

        click.echo(f"Downloading server {target_version} into {store.root}...")
        instance = store.ensure_installed(target, accept_eula=accept_eula, force_reinstall=force_reinstall)
    except EulaNotAccepted:
        click.echo(EULA_TEXT, err=True)
        click.secho(
            "Please run the command with the --accept-eula flag to accept the EULA and Privacy Policy.",
            fg="red",
            err=True,
        )
        raise click.Abort()
    except BedrockCIError as e:
        click.secho(f"Error downloading server: {e}", fg="red", err=True)
        raise click.Abort()

    click.secho(f"Server {instance.version} downloaded successfully!", fg="green")
