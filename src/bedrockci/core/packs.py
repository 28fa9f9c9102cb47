# bedrockci/core/packs.py
"""
Reading pack manifests and registering packs in a world.

A pack is a directory containing a ``manifest.json`` whose ``header`` declares
the pack's UUID, version and name, and whose ``modules`` declare what kind of
pack it is (``resources`` for resource packs; ``data``/``script`` for behavior
packs). Worlds activate packs through ``world_behavior_packs.json`` and
``world_resource_packs.json``, lists of ``{"pack_id", "version"}`` entries.
"""
import enum
import json
import logging
import os
from dataclasses import dataclass
from typing import List, Tuple

from bedrockci.error import WorkspaceSetupError

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"


class PackKind(str, enum.Enum):
    RESOURCE = "resource"
    BEHAVIOR = "behavior"

    @property
    def packs_folder(self) -> str:
        """Folder in the server directory that holds packs of this kind."""
        return "resource_packs" if self is PackKind.RESOURCE else "behavior_packs"

    @property
    def world_packs_file(self) -> str:
        """World file that lists activated packs of this kind."""
        return "world_resource_packs.json" if self is PackKind.RESOURCE else "world_behavior_packs.json"


_MODULE_TYPES = {
    "resources": PackKind.RESOURCE,
    "data": PackKind.BEHAVIOR,
    "script": PackKind.BEHAVIOR,
    "javascript": PackKind.BEHAVIOR,
}


@dataclass(frozen=True)
class PackReference:
    """A pack on disk, described by its manifest."""

    path: str
    kind: PackKind
    uuid: str
    version: Tuple[int, int, int]
    name: str = ""

    @property
    def dir_name(self) -> str:
        return os.path.basename(os.path.normpath(self.path))

    @property
    def label(self) -> str:
        return self.name or self.dir_name

    @classmethod
    def from_directory(cls, pack_path: str) -> "PackReference":
        """Reads ``manifest.json`` in ``pack_path``.

        Raises:
            WorkspaceSetupError: If the directory or manifest is missing or
                the manifest does not declare a usable UUID, version and
                pack type.
        """
        pack_path = os.path.abspath(pack_path)
        if not os.path.isdir(pack_path):
            raise WorkspaceSetupError(f"Pack path does not exist or is not a directory: {pack_path}")

        manifest_file = os.path.join(pack_path, MANIFEST_FILE)
        if not os.path.isfile(manifest_file):
            raise WorkspaceSetupError(f"manifest.json not found in pack: {pack_path}")

        try:
            with open(manifest_file, "r", encoding="utf-8-sig") as f:
                manifest_data = json.load(f)
        except ValueError as e:
            raise WorkspaceSetupError(f"Invalid JSON in manifest '{manifest_file}': {e}") from e
        except OSError as e:
            raise WorkspaceSetupError(f"Cannot read manifest file '{manifest_file}': {e}") from e

        if not isinstance(manifest_data, dict):
            raise WorkspaceSetupError(f"Manifest content is not a JSON object: {manifest_file}")

        header = manifest_data.get("header")
        if not isinstance(header, dict):
            raise WorkspaceSetupError(f"Manifest missing or invalid 'header' object: {manifest_file}")

        uuid_val = header.get("uuid")
        version_val = header.get("version")
        name_val = header.get("name")
        if not (uuid_val and isinstance(uuid_val, str)):
            raise WorkspaceSetupError(f"Manifest header has no valid 'uuid': {manifest_file}")
        if not (
            isinstance(version_val, list)
            and len(version_val) == 3
            and all(isinstance(v, int) and not isinstance(v, bool) for v in version_val)
        ):
            raise WorkspaceSetupError(
                f"Manifest header 'version' must be [major, minor, patch], got {version_val!r}: {manifest_file}"
            )

        kind = _pack_kind(manifest_data.get("modules"), manifest_file)
        pack = cls(
            path=pack_path,
            kind=kind,
            uuid=uuid_val.lower(),
            version=tuple(version_val),
            name=name_val if isinstance(name_val, str) else "",
        )
        logger.debug(
            f"Read manifest: Kind='{pack.kind.value}', UUID='{pack.uuid}', Version='{list(pack.version)}', Name='{pack.name}'"
        )
        return pack


def _pack_kind(modules, manifest_file: str) -> PackKind:
    if not isinstance(modules, list) or not modules:
        raise WorkspaceSetupError(f"Manifest missing or invalid 'modules' array: {manifest_file}")

    kinds = set()
    for module in modules:
        if not isinstance(module, dict):
            raise WorkspaceSetupError(f"Manifest 'modules' entry is not an object: {manifest_file}")
        module_type = str(module.get("type", "")).lower()
        if module_type in _MODULE_TYPES:
            kinds.add(_MODULE_TYPES[module_type])

    if len(kinds) != 1:
        raise WorkspaceSetupError(
            f"Cannot determine pack type (resource or behavior) from 'modules': {manifest_file}"
        )
    return kinds.pop()


def load_packs(paths: List[str]) -> List[PackReference]:
    """Reads the manifests of several packs, preserving order."""
    return [PackReference.from_directory(path) for path in paths]


def add_pack_to_world(world_dir: str, pack: PackReference) -> None:
    """Appends ``pack`` to the world's activation list for its kind.

    An existing entry with the same UUID is replaced in place, keeping its
    position; new entries are appended, so the order in which packs are added
    is the order the server applies them.

    Raises:
        WorkspaceSetupError: If the world pack file cannot be read or written.
    """
    world_json_file_path = os.path.join(world_dir, pack.kind.world_packs_file)
    json_filename_basename = os.path.basename(world_json_file_path)
    entry = {"pack_id": pack.uuid, "version": list(pack.version)}

    packs_list = []
    try:
        if os.path.exists(world_json_file_path):
            with open(world_json_file_path, "r", encoding="utf-8") as f:
                content = f.read()
            if content.strip():
                loaded_packs = json.loads(content)
                if isinstance(loaded_packs, list):
                    packs_list = loaded_packs
                else:
                    logger.warning(f"'{json_filename_basename}' content not a list. Will overwrite.")
    except ValueError as e:
        logger.warning(f"Invalid JSON in '{json_filename_basename}'. Will overwrite. Error: {e}")
    except OSError as e:
        raise WorkspaceSetupError(f"Failed to read world pack JSON '{json_filename_basename}': {e}") from e

    for i, existing in enumerate(packs_list):
        if isinstance(existing, dict) and str(existing.get("pack_id", "")).lower() == pack.uuid:
            logger.info(f"Replacing pack '{pack.uuid}' in '{json_filename_basename}' with v{entry['version']}.")
            packs_list[i] = entry
            break
    else:
        logger.info(f"Adding pack '{pack.uuid}' v{entry['version']} to '{json_filename_basename}'.")
        packs_list.append(entry)

    try:
        os.makedirs(world_dir, exist_ok=True)
        with open(world_json_file_path, "w", encoding="utf-8") as f:
            json.dump(packs_list, f, indent=2)
    except OSError as e:
        raise WorkspaceSetupError(f"Failed to write world pack JSON '{json_filename_basename}': {e}") from e
