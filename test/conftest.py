import json
import logging
import os
import stat
import textwrap

import pytest

from bedrockci.config import settings as settings_module
from bedrockci.config.const import INSTALL_MARKER, SERVER_EXECUTABLE
from bedrockci.core.archive_store import InstalledServerInstance


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """
    Points the settings at a temporary data directory and drops the shared
    settings instance, so no test reads or writes the real user config.
    """
    test_data_dir = tmp_path / "test_data"
    test_data_dir.mkdir()
    monkeypatch.setenv("BEDROCKCI_DATA_DIR", str(test_data_dir))
    monkeypatch.delenv("BEDROCK_SERVER_PATH", raising=False)
    monkeypatch.setattr(settings_module, "_settings_instance", None)

    yield test_data_dir

    # The CLI group attaches handlers to the package logger.
    package_logger = logging.getLogger("bedrockci")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def make_pack(tmp_path):
    """Factory that writes a pack directory with a manifest."""

    def _make_pack(
        name,
        kind="data",
        uuid="11111111-2222-3333-4444-555555555555",
        version=(1, 0, 0),
        manifest=None,
    ):
        pack_dir = tmp_path / "packs" / name
        pack_dir.mkdir(parents=True)
        if manifest is None:
            manifest = {
                "format_version": 2,
                "header": {"name": name, "uuid": uuid, "version": list(version)},
                "modules": [{"type": kind, "uuid": "99999999-0000-0000-0000-000000000000", "version": [1, 0, 0]}],
            }
        with open(pack_dir / "manifest.json", "w", encoding="utf-8") as f:
            if isinstance(manifest, str):
                f.write(manifest)
            else:
                json.dump(manifest, f)
        return str(pack_dir)

    return _make_pack


@pytest.fixture
def behavior_pack(make_pack):
    return make_pack("my_bp", kind="data", uuid="aaaaaaaa-0000-0000-0000-000000000001")


@pytest.fixture
def resource_pack(make_pack):
    return make_pack("my_rp", kind="resources", uuid="bbbbbbbb-0000-0000-0000-000000000002")


# A fake bedrock_server that logs like the real one and honours "stop".
READY_SERVER = """\
echo "NO LOG FILE! - setting up server logging..."
echo "[2025-01-01 00:00:00:000 INFO] Starting Server"
echo "[2025-01-01 00:00:00:001 INFO] Level Name: Bedrock level"
echo "[2025-01-01 00:00:00:002 INFO] Server started."
"""

WAIT_FOR_STOP = """\
while read line; do
  if [ "$line" = "stop" ]; then
    echo "Quit correctly"
    exit 0
  fi
done
"""


@pytest.fixture
def make_install(tmp_path):
    """Factory that builds an installed server whose binary is a shell script."""

    def _make_install(script_body=READY_SERVER + WAIT_FOR_STOP, version="1.21.0.1", root=None):
        root = root or tmp_path / "servers"
        install_dir = os.path.join(str(root), version)
        os.makedirs(install_dir)

        executable = os.path.join(install_dir, SERVER_EXECUTABLE)
        with open(executable, "w", encoding="utf-8") as f:
            f.write("#!/bin/sh\n" + textwrap.dedent(script_body))
        os.chmod(executable, os.stat(executable).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        with open(os.path.join(install_dir, "server.properties"), "w", encoding="utf-8") as f:
            f.write("# Server properties\nserver-name=Dedicated Server\nlevel-name=Bedrock level\nserver-port=19132\n")
        with open(os.path.join(install_dir, "permissions.json"), "w", encoding="utf-8") as f:
            f.write("[]\n")
        os.makedirs(os.path.join(install_dir, "worlds", "Bedrock level"))
        with open(os.path.join(install_dir, INSTALL_MARKER), "w", encoding="utf-8") as f:
            json.dump({"version": version, "integrity": "0" * 64}, f)

        return InstalledServerInstance(version=version, path=install_dir, integrity="0" * 64)

    return _make_install
