# bedrockci/cli/settings.py
"""
Click commands that view and change the persistent bedrockci settings.
"""
import json
import logging
from typing import Any, Optional

import click

from bedrockci.config.settings import get_settings_instance
from bedrockci.error import ConfigurationError

logger = logging.getLogger(__name__)

_MISSING = object()


def parse_value(raw: str) -> Any:
    """Reads ``raw`` as JSON so numbers, booleans and null keep their type."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@click.group("config")
def config():
    """View and modify bedrockci settings."""
    pass


@config.command("get")
@click.argument("key", required=False)
def get(key: Optional[str]):
    """Displays settings. Shows all if no KEY is given."""
    settings = get_settings_instance()

    if key:
        value = settings.get(key, _MISSING)
        if value is _MISSING:
            click.secho(f"Setting '{key}' not found.", fg="red")
            raise click.Abort()
        click.echo(json.dumps(value))
        return

    click.secho(f"Settings ({settings.config_path}):", bold=True)
    click.echo(json.dumps(settings.as_dict(), indent=4, sort_keys=True))


@config.command("set")
@click.argument("key")
@click.argument("value")
def set_setting(key: str, value: str):
    """
    Sets KEY to VALUE and saves the configuration file.

    VALUE is read as JSON where possible.
    Example: bedrockci config set validation.deadline 120
    """
    settings = get_settings_instance()
    try:
        settings.set(key, parse_value(value))
    except ConfigurationError as e:
        click.secho(f"Could not save setting: {e}", fg="red", err=True)
        raise click.Abort()
    click.secho(f"Setting '{key}' updated.", fg="green")
