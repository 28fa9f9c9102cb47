# bedrockci/cli/validate.py
"""
Click command that validates packs against a real server.

Exits with status 0 when validation passes and 1 otherwise, so it can be used
directly as a CI step.
"""
import logging
import sys
from typing import Optional, Tuple

import click

from bedrockci.cli.utils import echo_line, get_archive_store, print_result, resolve_instance
from bedrockci.config.settings import get_settings_instance
from bedrockci.core.session import ValidationPolicy, ValidationSession
from bedrockci.error import BedrockCIError

logger = logging.getLogger(__name__)


@click.command("validate")
@click.option("--rp", "resource_pack", required=True, type=click.Path(), help="Path to the resource pack.")
@click.option("--bp", "behavior_pack", required=True, type=click.Path(), help="Path to the behavior pack.")
@click.option(
    "--pack",
    "extra_packs",
    multiple=True,
    type=click.Path(),
    help="Additional pack to load after --bp and --rp. Can be repeated.",
)
@click.option("--only-warn", is_flag=True, default=False, help="Treat errors as warnings; never fail.")
@click.option("--fail-on-warn", is_flag=True, default=False, help="Fail on warnings as well as errors.")
@click.option("--version", "version", default=None, help="Server version to use. Defaults to the latest installed.")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the server to start.")
@click.option(
    "--last-log-timeout",
    type=float,
    default=None,
    help="After the server starts, keep reading until it is silent for this many seconds.",
)
@click.option("--verbose", is_flag=True, default=False, help="Print all server output.")
def validate(
    resource_pack: str,
    behavior_pack: str,
    extra_packs: Tuple[str, ...],
    only_warn: bool,
    fail_on_warn: bool,
    version: Optional[str],
    timeout: Optional[float],
    last_log_timeout: Optional[float],
    verbose: bool,
):
    """Starts a server with the given packs and reports pack errors."""
    if only_warn and fail_on_warn:
        raise click.UsageError("--only-warn and --fail-on-warn cannot be used together.")

    settings = get_settings_instance()
    deadline = timeout if timeout is not None else float(settings.get("validation.deadline"))

    try:
        instance = resolve_instance(get_archive_store(), version)
        click.secho(f"Using server version: {instance.version}", fg="cyan", bold=True)

        session = ValidationSession(
            instance,
            [behavior_pack, resource_pack, *extra_packs],
            deadline=deadline,
            policy=ValidationPolicy(only_warn=only_warn, fail_on_warn=fail_on_warn),
            grace_period=float(settings.get("validation.grace_period")),
            quiet_period=last_log_timeout,
            line_callback=echo_line if verbose else None,
            base_dir=settings.get("paths.workspaces"),
        )
        click.secho("Starting server for validation...", fg="cyan")
        result = session.run()
    except BedrockCIError as e:
        click.secho(f"Validation could not run: {e}", fg="red", err=True)
        raise click.Abort()
    except ValueError as e:
        raise click.BadParameter(str(e))

    print_result(result)
    if not result.passed:
        sys.exit(1)
