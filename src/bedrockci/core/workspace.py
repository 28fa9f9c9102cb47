# bedrockci/core/workspace.py
"""
Disposable per-session server directories.

A :class:`SessionWorkspace` is a private copy of an installed server with the
packs under test wired into its world. Read-only server content is hard-linked
from the installation to keep setup fast; every file the server itself writes
is copied, so nothing a session does can reach back into the shared install.
"""
import logging
import os
import shutil
import socket
import tempfile
import threading
from typing import Dict, Iterable, List, Mapping, Optional

from bedrockci.config.const import DEFAULT_LEVEL_NAME, INSTALL_MARKER, SERVER_EXECUTABLE
from bedrockci.core.archive_store import InstalledServerInstance
from bedrockci.core.packs import PackReference, add_pack_to_world
from bedrockci.error import WorkspaceSetupError

logger = logging.getLogger(__name__)

SERVER_PROPERTIES = "server.properties"
EULA_FILE = "eula.txt"

# Files the server rewrites at runtime. They are always copied, never linked.
MUTABLE_FILES = frozenset(
    {
        SERVER_PROPERTIES,
        "allowlist.json",
        "whitelist.json",
        "permissions.json",
        "valid_known_packs.json",
    }
)
# Top-level entries never linked from the install. Worlds are copied separately.
EXCLUDED_ENTRIES = frozenset({INSTALL_MARKER, "worlds", "development_behavior_packs", "development_resource_packs"})

DEFAULT_PROPERTIES = {
    "content-log-console-output-enabled": "true",
}


def find_free_port() -> int:
    """Returns a UDP port that is currently free on this host."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("", 0))
        return sock.getsockname()[1]


def read_server_properties(server_properties_path: str) -> Dict[str, str]:
    """Parses a ``server.properties`` file into a dict, ignoring comments."""
    properties = {}
    if not os.path.isfile(server_properties_path):
        return properties
    with open(server_properties_path, "r", encoding="utf-8") as f:
        for line in f:
            stripped_line = line.strip()
            if not stripped_line or stripped_line.startswith("#") or "=" not in stripped_line:
                continue
            key, value = stripped_line.split("=", 1)
            properties.setdefault(key.strip(), value.strip())
    return properties


def modify_server_properties(server_properties_path: str, overrides: Mapping[str, str]) -> None:
    """
    Sets properties in a server.properties file, adding any that are missing.

    Comments, blank lines and the order of existing properties are preserved.

    Raises:
        WorkspaceSetupError: If a value contains control characters.
        OSError: If reading or writing the file fails.
    """
    for property_name, property_value in overrides.items():
        if any(ord(c) < 32 for c in str(property_value) if c != "\t"):
            raise WorkspaceSetupError(
                f"Property value for '{property_name}' contains invalid control characters."
            )

    lines: List[str] = []
    if os.path.isfile(server_properties_path):
        with open(server_properties_path, "r", encoding="utf-8") as f:
            lines = f.readlines()

    remaining = dict(overrides)
    output_lines = []
    for line in lines:
        stripped_line = line.strip()
        if not stripped_line or stripped_line.startswith("#") or "=" not in stripped_line:
            output_lines.append(line)
            continue
        key = stripped_line.split("=", 1)[0].strip()
        if key in remaining:
            output_lines.append(f"{key}={remaining.pop(key)}\n")
        else:
            output_lines.append(line)

    if output_lines and not output_lines[-1].endswith("\n"):
        output_lines[-1] += "\n"
    for key, value in remaining.items():
        logger.debug(f"Adding property '{key}={value}' to {server_properties_path}")
        output_lines.append(f"{key}={value}\n")

    with open(server_properties_path, "w", encoding="utf-8") as f:
        f.writelines(output_lines)


def _link_or_copy(src: str, dst: str) -> str:
    if os.path.basename(src) in MUTABLE_FILES:
        return shutil.copy2(src, dst)
    try:
        os.link(src, dst)
    except OSError:
        # Cross-device or unsupported filesystem.
        shutil.copy2(src, dst)
    return dst


def _ignore_excluded(install_root: str):
    def _ignore(directory: str, names: List[str]) -> Iterable[str]:
        if os.path.abspath(directory) != install_root:
            return ()
        return [name for name in names if name in EXCLUDED_ENTRIES]

    return _ignore


class SessionWorkspace:
    """An isolated working copy of a server with packs installed.

    Use :meth:`create` to build one. The workspace owns its directory and
    removes it in :meth:`destroy`; it can also be used as a context manager.
    """

    def __init__(
        self,
        path: str,
        instance: InstalledServerInstance,
        packs: List[PackReference],
        level_name: str = DEFAULT_LEVEL_NAME,
    ):
        self.path = path
        self.instance = instance
        self.packs = list(packs)
        self.level_name = level_name
        self._owner_lock = threading.Lock()
        self._destroyed = False

    @property
    def executable_path(self) -> str:
        return os.path.join(self.path, SERVER_EXECUTABLE)

    @property
    def world_dir(self) -> str:
        return os.path.join(self.path, "worlds", self.level_name)

    @classmethod
    def create(
        cls,
        instance: InstalledServerInstance,
        packs: List[PackReference],
        base_dir: Optional[str] = None,
        property_overrides: Optional[Mapping[str, str]] = None,
        link_packs: bool = False,
    ) -> "SessionWorkspace":
        """Builds a workspace for one validation run.

        Args:
            instance: The installed server to copy.
            packs: Packs to install, in activation order.
            base_dir: Parent directory for the workspace. Defaults to the
                system temporary directory.
            property_overrides: Extra ``server.properties`` values.
            link_packs: Symlink pack directories instead of copying them.

        Raises:
            WorkspaceSetupError: If any step fails. The partially built
                directory is removed before the error is raised.
        """
        if base_dir:
            os.makedirs(base_dir, exist_ok=True)
        path = tempfile.mkdtemp(prefix="bedrockci-", dir=base_dir)
        logger.info(f"Creating workspace {path} from server {instance.version}")

        try:
            install_root = os.path.abspath(instance.path)
            shutil.copytree(
                install_root,
                path,
                symlinks=True,
                ignore=_ignore_excluded(install_root),
                copy_function=_link_or_copy,
                dirs_exist_ok=True,
            )
            worlds_src = os.path.join(install_root, "worlds")
            if os.path.isdir(worlds_src):
                shutil.copytree(worlds_src, os.path.join(path, "worlds"), symlinks=True)

            properties_path = os.path.join(path, SERVER_PROPERTIES)
            overrides = dict(DEFAULT_PROPERTIES)
            overrides["server-port"] = str(find_free_port())
            overrides["server-portv6"] = str(find_free_port())
            overrides.update({k: str(v) for k, v in (property_overrides or {}).items()})
            modify_server_properties(properties_path, overrides)
            level_name = read_server_properties(properties_path).get("level-name") or DEFAULT_LEVEL_NAME

            workspace = cls(path, instance, packs, level_name=level_name)
            for index, pack in enumerate(packs):
                workspace._install_pack(index, pack, link_packs)

            with open(os.path.join(path, EULA_FILE), "w", encoding="utf-8") as f:
                f.write("eula=true\n")
        except WorkspaceSetupError:
            shutil.rmtree(path, ignore_errors=True)
            raise
        except (OSError, shutil.Error) as e:
            logger.error(f"Failed to build workspace {path}: {e}", exc_info=True)
            shutil.rmtree(path, ignore_errors=True)
            raise WorkspaceSetupError(f"Failed to build workspace: {e}") from e

        logger.debug(f"Workspace {path} ready with {len(packs)} pack(s).")
        return workspace

    def _install_pack(self, index: int, pack: PackReference, link: bool) -> None:
        packs_dir = os.path.join(self.path, pack.kind.packs_folder)
        os.makedirs(packs_dir, exist_ok=True)
        target = os.path.join(packs_dir, f"bedrockci_{index}_{pack.dir_name}")

        if link:
            logger.debug(f"Linking pack '{pack.label}' to {target}")
            os.symlink(os.path.realpath(pack.path), target, target_is_directory=True)
        else:
            logger.debug(f"Copying pack '{pack.label}' to {target}")
            shutil.copytree(pack.path, target)

        add_pack_to_world(self.world_dir, pack)

    def claim(self) -> None:
        """Marks the workspace as used by a running process.

        Raises:
            WorkspaceSetupError: If another process already holds it, or it
                has been destroyed.
        """
        if self._destroyed:
            raise WorkspaceSetupError(f"Workspace {self.path} has been destroyed.")
        if not self._owner_lock.acquire(blocking=False):
            raise WorkspaceSetupError(f"Workspace {self.path} is already in use by another process.")

    def release(self) -> None:
        if self._owner_lock.locked():
            self._owner_lock.release()

    def destroy(self) -> None:
        """Removes the workspace directory. Safe to call more than once."""
        self._destroyed = True
        if not os.path.exists(self.path):
            logger.debug(f"Workspace {self.path} already removed.")
            return
        try:
            shutil.rmtree(self.path)
            logger.info(f"Removed workspace {self.path}")
        except OSError as e:
            logger.warning(f"Could not remove workspace '{self.path}': {e}")

    def __enter__(self) -> "SessionWorkspace":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.destroy()
