# bedrockci/config/settings.py
"""Manages bedrockci configuration settings.

This module provides the `Settings` class, which is responsible for loading
settings from a JSON file, providing default values for missing keys, saving
changes back to the file, and determining the application data and
configuration directories based on the environment.

The configuration is stored in a nested JSON format. Settings are accessed
programmatically using dot-notation (e.g., `settings.get('paths.servers')`).

Only the command-line layer reads settings. Core engine functions receive
explicit paths and values as arguments.
"""

import collections.abc
import copy
import json
import logging
import os
from typing import Any, Dict, Optional

from appdirs import user_config_dir, user_data_dir

from bedrockci.config.const import app_author, env_name, package_name, SERVER_PATH_ENV
from bedrockci.error import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_SCHEMA_VERSION = 1
CONFIG_FILE_NAME = "bedrockci.json"


def deep_merge(source: Dict, destination: Dict) -> Dict:
    """
    Recursively merges the `source` dictionary into the `destination` dictionary.

    Nested dictionaries are merged, while other values in `source` overwrite
    those in `destination`.

    Args:
        source: The dictionary with new or updated values.
        destination: The dictionary to be updated.

    Returns:
        The merged dictionary (`destination`).
    """
    for key, value in source.items():
        if isinstance(value, collections.abc.Mapping):
            node = destination.setdefault(key, {})
            deep_merge(value, node)
        else:
            destination[key] = value
    return destination


class Settings:
    """Loads, exposes and persists bedrockci settings.

    The data directory is taken from the ``BEDROCKCI_DATA_DIR`` environment
    variable, falling back to the platform user data directory. The server
    installation root can additionally be pinned with ``BEDROCK_SERVER_PATH``,
    which always wins over the configuration file.
    """

    def __init__(self, config_dir: Optional[str] = None):
        logger.debug("Initializing Settings")
        self._app_data_dir_path = self._determine_app_data_dir()
        self._config_dir_path = config_dir or self._determine_app_config_dir()
        self.config_path = os.path.join(self._config_dir_path, CONFIG_FILE_NAME)
        self._settings: Dict[str, Any] = {}
        self._server_path_override: Optional[str] = None
        self.load()

    def _determine_app_data_dir(self) -> str:
        data_dir = os.environ.get(f"{env_name}_DATA_DIR")
        if not data_dir:
            data_dir = user_data_dir(package_name, app_author)
        return data_dir

    def _determine_app_config_dir(self) -> str:
        if os.environ.get(f"{env_name}_DATA_DIR"):
            return os.path.join(self._app_data_dir_path, ".config")
        return user_config_dir(package_name, app_author)

    @property
    def app_data_dir(self) -> str:
        return self._app_data_dir_path

    @property
    def config_dir(self) -> str:
        return self._config_dir_path

    @property
    def default_config(self) -> dict:
        """Provides the default configuration values.

        Returns:
            A dictionary of default settings with a nested structure.
        """
        app_data_dir_val = self._app_data_dir_path
        return {
            "config_version": CONFIG_SCHEMA_VERSION,
            "paths": {
                "servers": os.path.join(app_data_dir_val, "servers"),
                "logs": os.path.join(app_data_dir_val, ".logs"),
                "workspaces": None,
            },
            "validation": {
                "deadline": 60,
                "grace_period": 10,
            },
            "retention": {
                "logs": 3,
            },
            "logging": {
                "file_level": logging.INFO,
                "cli_level": logging.WARNING,
            },
        }

    def load(self):
        """Loads settings from the JSON configuration file.

        User settings are merged over the defaults. A missing file is not an
        error; an unreadable one is logged and the defaults are used.
        """
        self._settings = self.default_config

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    user_config = json.load(f)
                if isinstance(user_config, dict):
                    deep_merge(user_config, self._settings)
                else:
                    logger.warning(
                        f"Config file {self.config_path} is not a JSON object. Using defaults."
                    )
            except (ValueError, OSError) as e:
                logger.warning(
                    f"Could not load config file at {self.config_path}: {e}. Using default settings."
                )

        server_path = os.environ.get(SERVER_PATH_ENV)
        if server_path:
            logger.debug(f"Using server path from {SERVER_PATH_ENV}: {server_path}")
        self._server_path_override = server_path or None

    def _write_config(self):
        """Writes the current settings dictionary to the JSON configuration file.

        Raises:
            ConfigurationError: If writing the configuration fails.
        """
        try:
            os.makedirs(self._config_dir_path, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, indent=4, sort_keys=True)
        except (OSError, TypeError) as e:
            raise ConfigurationError(f"Failed to write configuration: {e}") from e

    def as_dict(self) -> Dict[str, Any]:
        """Returns a copy of the effective settings, environment overrides applied.

        Overrides are never written back to the configuration file.
        """
        effective = copy.deepcopy(self._settings)
        if self._server_path_override:
            effective.setdefault("paths", {})["servers"] = self._server_path_override
        return effective

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieves a setting value using dot-notation for nested access.

        Example: `settings.get("paths.servers")`

        Args:
            key: The dot-separated configuration key.
            default: The value to return if the key is not found.

        Returns:
            The value associated with the key, or the default value.
        """
        d = self.as_dict()
        try:
            for k in key.split("."):
                d = d[k]
            return d
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any):
        """Sets a setting value using dot-notation and saves the change.

        Raises:
            ConfigurationError: If the configuration cannot be written.
        """
        keys = key.split(".")
        d = self._settings
        for k in keys[:-1]:
            d = d.setdefault(k, {})

        if d.get(keys[-1]) == value:
            return

        d[keys[-1]] = value
        logger.info(f"Setting '{key}' updated to '{value}'. Saving configuration.")
        self._write_config()


_settings_instance: Optional[Settings] = None


def get_settings_instance() -> Settings:
    """Returns the shared `Settings` instance used by the command-line layer."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
