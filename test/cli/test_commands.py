import sys
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from bedrockci.__main__ import cli
from bedrockci.core.downloader import ServerVersion
from bedrockci.core.session import TerminationReason, ValidationPolicy, ValidationResult
from bedrockci.config import settings as settings_module
from bedrockci.error import CatalogUnavailable, ConfigurationError, EulaNotAccepted

WAIT_FOR_STOP = """\
while read line; do
  if [ "$line" = "stop" ]; then
    exit 0
  fi
done
"""

CLEAN_SERVER = 'echo "[2025-01-01 00:00:00:003 INFO] Server started."\n' + WAIT_FOR_STOP
BROKEN_SERVER = (
    'echo "[2025-01-01 00:00:00:001 ERROR] Pack manifest invalid: my_bp"\n'
    'echo "[2025-01-01 00:00:00:003 INFO] Server started."\n'
) + WAIT_FOR_STOP

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake server is a POSIX shell script")


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def servers_root(tmp_path, monkeypatch):
    root = tmp_path / "servers"
    monkeypatch.setenv("BEDROCK_SERVER_PATH", str(root))
    return root


# --- list ---


def test_list_without_installs(runner, servers_root):
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "No server versions downloaded yet" in result.output


def test_list_installed(runner, servers_root, make_install):
    make_install(version="1.21.0.1")
    make_install(version="1.20.0.1")

    result = runner.invoke(cli, ["list"])

    assert result.exit_code == 0
    assert result.output.index("1.20.0.1") < result.output.index("1.21.0.1")


@patch("bedrockci.cli.servers.get_archive_store")
def test_list_remote(mock_get_store, runner):
    mock_get_store.return_value.list_remote_versions.return_value = [
        ServerVersion(version="1.21.90.3", archive_url="a"),
        ServerVersion(version="1.22.0.5", archive_url="b", preview=True),
    ]

    result = runner.invoke(cli, ["list", "--remote"])

    assert result.exit_code == 0
    assert "1.21.90.3" in result.output
    assert "1.22.0.5-preview" in result.output


@patch("bedrockci.cli.servers.get_archive_store")
def test_list_remote_catalog_error(mock_get_store, runner):
    mock_get_store.return_value.list_remote_versions.side_effect = CatalogUnavailable("offline")

    result = runner.invoke(cli, ["list", "--remote"])

    assert result.exit_code == 1
    assert "offline" in result.output


# --- download ---


@patch("bedrockci.cli.download.get_archive_store")
def test_download_requires_eula(mock_get_store, runner):
    store = mock_get_store.return_value
    store.get_installed.return_value = None
    store.ensure_installed.side_effect = EulaNotAccepted()

    result = runner.invoke(cli, ["download", "--version", "1.21.0.1"])

    assert result.exit_code == 1
    assert "--accept-eula" in result.output
    store.ensure_installed.assert_called_once_with("1.21.0.1", accept_eula=False, force_reinstall=False)


@patch("bedrockci.cli.download.get_archive_store")
def test_download_latest(mock_get_store, runner):
    store = mock_get_store.return_value
    latest = ServerVersion(version="1.21.90.3", archive_url="a")
    store.latest_remote_version.return_value = latest
    store.get_installed.return_value = None
    store.ensure_installed.return_value = MagicMock(version="1.21.90.3")

    result = runner.invoke(cli, ["download", "--accept-eula"])

    assert result.exit_code == 0
    assert "using latest version: 1.21.90.3" in result.output
    assert "downloaded successfully" in result.output
    store.latest_remote_version.assert_called_once_with(preview=False)
    store.ensure_installed.assert_called_once_with(latest, accept_eula=True, force_reinstall=False)


@patch("bedrockci.cli.download.get_archive_store")
def test_download_already_installed(mock_get_store, runner):
    store = mock_get_store.return_value
    store.get_installed.return_value = MagicMock(version="1.21.0.1")

    result = runner.invoke(cli, ["download", "--accept-eula", "--version", "1.21.0.1"])

    assert result.exit_code == 0
    assert "already installed" in result.output
    store.ensure_installed.assert_not_called()


@patch("bedrockci.cli.download.get_archive_store")
def test_download_force_reinstall(mock_get_store, runner):
    store = mock_get_store.return_value
    store.get_installed.return_value = MagicMock(version="1.21.0.1")
    store.ensure_installed.return_value = MagicMock(version="1.21.0.1")

    result = runner.invoke(cli, ["download", "--accept-eula", "--version", "1.21.0.1", "--force-reinstall"])

    assert result.exit_code == 0
    store.ensure_installed.assert_called_once_with("1.21.0.1", accept_eula=True, force_reinstall=True)


# --- validate ---


def test_validate_flags_are_exclusive(runner, behavior_pack, resource_pack):
    result = runner.invoke(
        cli, ["validate", "--rp", resource_pack, "--bp", behavior_pack, "--only-warn", "--fail-on-warn"]
    )
    assert result.exit_code == 2
    assert "cannot be used together" in result.output


def test_validate_without_installed_server(runner, servers_root, behavior_pack, resource_pack):
    result = runner.invoke(cli, ["validate", "--rp", resource_pack, "--bp", behavior_pack])
    assert result.exit_code == 1
    assert "No server versions found" in result.output


def test_validate_unknown_version(runner, servers_root, make_install, behavior_pack, resource_pack):
    make_install()
    result = runner.invoke(cli, ["validate", "--rp", resource_pack, "--bp", behavior_pack, "--version", "9.9.9.9"])
    assert result.exit_code == 1
    assert "9.9.9.9 not found" in result.output


@posix_only
def test_validate_passes(runner, servers_root, make_install, behavior_pack, resource_pack):
    make_install(CLEAN_SERVER)

    result = runner.invoke(cli, ["validate", "--rp", resource_pack, "--bp", behavior_pack, "--timeout", "10"])

    assert result.exit_code == 0, result.output
    assert "using latest installed: 1.21.0.1" in result.output
    assert "Validation passed" in result.output


@posix_only
def test_validate_fails_on_errors(runner, servers_root, make_install, behavior_pack, resource_pack):
    make_install(BROKEN_SERVER)

    result = runner.invoke(cli, ["validate", "--rp", resource_pack, "--bp", behavior_pack, "--timeout", "10"])

    assert result.exit_code == 1
    assert "Errors:" in result.output
    assert "[my_bp] Pack manifest invalid: my_bp" in result.output
    assert "Validation failed" in result.output


@posix_only
def test_validate_only_warn_passes(runner, servers_root, make_install, behavior_pack, resource_pack):
    make_install(BROKEN_SERVER)

    result = runner.invoke(
        cli, ["validate", "--rp", resource_pack, "--bp", behavior_pack, "--timeout", "10", "--only-warn"]
    )

    assert result.exit_code == 0
    assert "Warnings:" in result.output


@patch("bedrockci.cli.validate.ValidationSession")
@patch("bedrockci.cli.validate.resolve_instance")
def test_validate_passes_options_to_session(
    mock_resolve, mock_session_cls, runner, behavior_pack, resource_pack, make_pack
):
    mock_resolve.return_value = MagicMock(version="1.21.0.1")
    mock_session_cls.return_value.run.return_value = ValidationResult(
        passed=True, diagnostics=(), termination_reason=TerminationReason.READY_DETECTED
    )
    extra = make_pack("extra")

    result = runner.invoke(
        cli,
        [
            "validate",
            "--rp", resource_pack,
            "--bp", behavior_pack,
            "--pack", extra,
            "--fail-on-warn",
            "--last-log-timeout", "5",
            "--verbose",
        ],
    )

    assert result.exit_code == 0, result.output
    args, kwargs = mock_session_cls.call_args
    assert args[1] == [behavior_pack, resource_pack, extra]
    assert kwargs["deadline"] == 60.0
    assert kwargs["policy"] == ValidationPolicy(only_warn=False, fail_on_warn=True)
    assert kwargs["quiet_period"] == 5.0
    assert kwargs["line_callback"] is not None


@patch("bedrockci.cli.validate.ValidationSession")
@patch("bedrockci.cli.validate.resolve_instance")
def test_validate_timeout_exits_nonzero(mock_resolve, mock_session_cls, runner, behavior_pack, resource_pack):
    mock_resolve.return_value = MagicMock(version="1.21.0.1")
    mock_session_cls.return_value.run.return_value = ValidationResult(
        passed=False, diagnostics=(), termination_reason=TerminationReason.TIMEOUT, duration=60.0
    )

    result = runner.invoke(cli, ["validate", "--rp", resource_pack, "--bp", behavior_pack])

    assert result.exit_code == 1
    assert "did not start before the deadline" in result.output


# --- run ---


@patch("bedrockci.cli.run.ServerProcess")
def test_run_prints_startup_and_stops(mock_process_cls, runner, servers_root, make_install, behavior_pack, resource_pack):
    make_install()
    process = mock_process_cls.launch.return_value
    process.next_line.side_effect = [
        "[2025-01-01 00:00:00:000 INFO] Starting Server",
        "[2025-01-01 00:00:00:001 WARN] [Json] odd field",
        "[2025-01-01 00:00:00:003 INFO] Server started.",
        None,
    ]
    process.stop.return_value = 0

    result = runner.invoke(cli, ["run", "--rp", resource_pack, "--bp", behavior_pack])

    assert result.exit_code == 0, result.output
    assert "Server has started successfully!" in result.output
    assert "[Json] odd field" in result.output
    assert "Starting Server" not in result.output
    process.stop.assert_called_once_with(10.0)
    workspace = mock_process_cls.launch.call_args[0][0]
    assert [p.name for p in workspace.packs] == ["my_bp", "my_rp"]


@patch("bedrockci.cli.run.ServerProcess")
def test_run_verbose_shows_all_output(mock_process_cls, runner, servers_root, make_install, behavior_pack, resource_pack):
    make_install()
    mock_process_cls.launch.return_value.next_line.side_effect = ["plain output line", None]

    result = runner.invoke(cli, ["run", "--rp", resource_pack, "--bp", behavior_pack, "--verbose"])

    assert result.exit_code == 0
    assert "plain output line" in result.output


# --- config ---


def test_config_set_persists_typed_value(runner):
    result = runner.invoke(cli, ["config", "set", "validation.deadline", "120"])
    assert result.exit_code == 0, result.output
    assert "Setting 'validation.deadline' updated." in result.output

    settings_module._settings_instance = None
    result = runner.invoke(cli, ["config", "get", "validation.deadline"])
    assert result.exit_code == 0
    assert result.output.strip().splitlines()[-1] == "120"


def test_config_set_keeps_plain_strings(runner):
    result = runner.invoke(cli, ["config", "set", "paths.workspaces", "/tmp/ws"])
    assert result.exit_code == 0
    assert settings_module.get_settings_instance().get("paths.workspaces") == "/tmp/ws"


def test_config_get_unknown_key(runner):
    result = runner.invoke(cli, ["config", "get", "no.such.key"])
    assert result.exit_code == 1
    assert "Setting 'no.such.key' not found." in result.output


def test_config_get_all(runner):
    result = runner.invoke(cli, ["config", "get"])
    assert result.exit_code == 0
    assert '"deadline": 60' in result.output


@patch("bedrockci.cli.settings.get_settings_instance")
def test_config_set_write_failure(mock_get_settings, runner):
    mock_get_settings.return_value.set.side_effect = ConfigurationError("read-only")

    result = runner.invoke(cli, ["config", "set", "validation.deadline", "5"])

    assert result.exit_code == 1
    assert "Could not save setting: read-only" in result.output


def test_version_option(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "BedrockCI" in result.output
