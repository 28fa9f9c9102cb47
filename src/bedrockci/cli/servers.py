# bedrockci/cli/servers.py
"""
Click command that lists installed (or downloadable) server versions.
"""
import logging

import click

from bedrockci.cli.utils import get_archive_store
from bedrockci.error import BedrockCIError

logger = logging.getLogger(__name__)


@click.command("list")
@click.option("--remote", is_flag=True, default=False, help="List versions available for download instead.")
def list_servers(remote: bool):
    """Lists downloaded server versions."""
    store = get_archive_store()

    if remote:
        try:
            versions = store.list_remote_versions()
        except BedrockCIError as e:
            click.secho(f"Could not fetch available versions: {e}", fg="red", err=True)
            raise click.Abort()
        click.echo("Available server versions:")
        for server_version in versions:
            click.echo(str(server_version))
        return

    installed = store.list_installed()
    if not installed:
        click.secho("No server versions downloaded yet. Use 'bedrockci download'.", fg="yellow")
        return
    click.echo("Downloaded server versions:")
    for instance in installed:
        click.echo(instance.version)
