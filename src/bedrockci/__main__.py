# bedrockci/__main__.py
"""
Main entry point for the bedrockci command-line interface.

Sets up logging from the user's settings, assembles the `click` commands and
runs them. Every command exits with status 0 on success and 1 on failure.
"""

import logging
import sys

import click

from bedrockci import __version__
from bedrockci.cli import download, run, servers, validate
from bedrockci.cli import settings as settings_commands
from bedrockci.config.const import app_name_title
from bedrockci.config.settings import get_settings_instance
from bedrockci.logging import log_separator, setup_logging


# --- Main Click Group Definition ---
@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(__version__, "-V", "--version", message=f"{app_name_title} %(version)s")
@click.pass_context
def cli(ctx: click.Context):
    """Validate Minecraft Bedrock packs against a real dedicated server.

    Download a server with `download`, then point `validate` at a resource
    pack and a behavior pack. The server is started in a throwaway copy,
    its log is checked for pack errors, and the exit code reports the result.
    """
    try:
        settings = get_settings_instance()
        logger = setup_logging(
            log_dir=settings.get("paths.logs"),
            log_keep=settings.get("retention.logs"),
            file_log_level=settings.get("logging.file_level"),
            cli_log_level=settings.get("logging.cli_level"),
            force_reconfigure=True,
        )
        log_separator(logger, app_name=app_name_title, app_version=__version__)
        logger.info(f"Starting {app_name_title} v{__version__} (CLI context)...")
    except Exception as setup_e:
        logging.getLogger("bedrockci_critical_setup").critical(
            f"An unrecoverable error occurred during CLI startup: {setup_e}",
            exc_info=True,
        )
        click.secho(f"CRITICAL STARTUP ERROR: {setup_e}", fg="red", bold=True)
        sys.exit(1)

    ctx.obj = {"settings": settings}


# --- Command Assembly ---
def _add_commands_to_cli():
    """Attaches all commands to the main CLI group."""
    cli.add_command(download.download)
    cli.add_command(servers.list_servers)
    cli.add_command(validate.validate)
    cli.add_command(run.run)
    cli.add_command(settings_commands.config)


_add_commands_to_cli()


def main():
    """Main execution function wrapped for final, fatal exception handling."""
    try:
        cli()
    except Exception as e:
        # Last-resort catch-all for unexpected errors not handled by Click.
        logger = logging.getLogger("bedrockci_critical_fatal")
        logger.critical("A fatal, unhandled error occurred.", exc_info=True)
        click.secho(f"\nFATAL UNHANDLED ERROR: {type(e).__name__}: {e}", fg="red", bold=True)
        click.secho("Please check the logs for more details.", fg="yellow")
        sys.exit(1)


if __name__ == "__main__":
    main()
