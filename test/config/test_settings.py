import json
import logging
import os

import pytest

from bedrockci.config import settings as settings_module
from bedrockci.config.settings import CONFIG_SCHEMA_VERSION, Settings, deep_merge, get_settings_instance
from bedrockci.error import ConfigurationError


@pytest.fixture
def settings(isolated_settings):
    return Settings()


def test_initialization_with_defaults(settings, isolated_settings):
    """Test that settings are initialized with default values."""
    assert settings.get("config_version") == CONFIG_SCHEMA_VERSION
    assert settings.get("validation.deadline") == 60
    assert settings.get("validation.grace_period") == 10
    assert settings.get("retention.logs") == 3
    assert settings.get("paths.workspaces") is None
    assert settings.get("paths.servers") == os.path.join(str(isolated_settings), "servers")
    assert settings.get("logging.cli_level") == logging.WARNING


def test_config_dir_follows_data_dir_env(settings, isolated_settings):
    assert settings.app_data_dir == str(isolated_settings)
    assert settings.config_dir == os.path.join(str(isolated_settings), ".config")


def test_server_path_env_overrides_config(monkeypatch, tmp_path):
    monkeypatch.setenv("BEDROCK_SERVER_PATH", str(tmp_path / "custom"))
    assert Settings().get("paths.servers") == str(tmp_path / "custom")


def test_user_config_is_merged_over_defaults(tmp_path):
    config_dir = tmp_path / "cfg"
    config_dir.mkdir()
    with open(config_dir / "bedrockci.json", "w") as f:
        json.dump({"validation": {"deadline": 120}}, f)

    settings = Settings(config_dir=str(config_dir))

    assert settings.get("validation.deadline") == 120
    assert settings.get("validation.grace_period") == 10


def test_invalid_config_file_falls_back_to_defaults(tmp_path):
    config_dir = tmp_path / "cfg"
    config_dir.mkdir()
    (config_dir / "bedrockci.json").write_text("{not json")

    assert Settings(config_dir=str(config_dir)).get("validation.deadline") == 60


def test_get_nonexistent_key(settings):
    assert settings.get("nonexistent.key") is None
    assert settings.get("nonexistent.key", "fallback") == "fallback"


def test_set_writes_config_file(settings):
    settings.set("validation.deadline", 90)

    assert settings.get("validation.deadline") == 90
    with open(settings.config_path, "r") as f:
        assert json.load(f)["validation"]["deadline"] == 90


def test_server_path_env_is_not_persisted(monkeypatch, tmp_path, isolated_settings):
    monkeypatch.setenv("BEDROCK_SERVER_PATH", str(tmp_path / "custom"))
    settings = Settings()

    settings.set("validation.deadline", 90)

    with open(settings.config_path, "r") as f:
        assert json.load(f)["paths"]["servers"] == os.path.join(str(isolated_settings), "servers")
    assert settings.as_dict()["paths"]["servers"] == str(tmp_path / "custom")


def test_as_dict_is_a_copy(settings):
    settings.as_dict()["validation"]["deadline"] = 1
    assert settings.get("validation.deadline") == 60


def test_set_write_failure_raises(settings, mocker):
    mocker.patch("bedrockci.config.settings.open", side_effect=OSError("read-only"))
    with pytest.raises(ConfigurationError, match="read-only"):
        settings.set("validation.deadline", 5)


def test_deep_merge_nested():
    destination = {"a": {"b": 1, "c": 2}, "d": 3}
    deep_merge({"a": {"b": 10}, "e": 4}, destination)
    assert destination == {"a": {"b": 10, "c": 2}, "d": 3, "e": 4}


def test_get_settings_instance_is_shared():
    assert settings_module._settings_instance is None
    first = get_settings_instance()
    assert get_settings_instance() is first
