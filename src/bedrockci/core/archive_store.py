# bedrockci/core/archive_store.py
"""Local store of installed Bedrock Dedicated Server versions.

Layout of the installation root::

    <root>/
        1.21.84.1/
            bedrock_server
            ...
            .bedrockci-install.json   <- integrity marker, written last
        1.21.90.3/
            ...

A version directory only ever appears under its final name after it has been
fully extracted and marked: extraction happens in a hidden temporary directory
inside the root, which is then renamed into place. Directories without a valid
marker are treated as incomplete and are never reported as installed.
"""
import hashlib
import json
import logging
import os
import shutil
import stat
import tempfile
import threading
import zipfile
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from bedrockci.config.const import EULA_TEXT, INSTALL_MARKER, SERVER_EXECUTABLE
from bedrockci.core.downloader import (
    BedrockDownloader,
    ServerVersion,
    archive_url_for,
    parse_version,
    version_sort_key,
)
from bedrockci.error import (
    ArchiveCorrupt,
    CatalogUnavailable,
    DownloadFailed,
    EulaNotAccepted,
    MissingArgumentError,
)

logger = logging.getLogger(__name__)

_TEMP_PREFIX = ".tmp-"
_TRASH_PREFIX = ".old-"


@dataclass(frozen=True)
class InstalledServerInstance:
    """A fully extracted server version in the installation root."""

    version: str
    path: str
    integrity: str
    installed_at: str = ""

    @property
    def executable_path(self) -> str:
        return os.path.join(self.path, SERVER_EXECUTABLE)


class ArchiveStore:
    """Downloads, verifies and extracts server archives by version.

    Args:
        root: The installation root. Every operation that touches installed
            servers goes through this explicit handle.
        downloader: The catalog/archive client. Defaults to a
            :class:`~bedrockci.core.downloader.BedrockDownloader`.
    """

    def __init__(self, root: str, downloader: Optional[BedrockDownloader] = None):
        if not root:
            raise MissingArgumentError("Installation root cannot be empty.")
        self.root = os.path.abspath(root)
        self.downloader = downloader or BedrockDownloader()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # --- Remote catalog ---

    def list_remote_versions(self) -> List[ServerVersion]:
        """Lists versions available upstream.

        Raises:
            CatalogUnavailable: On any network or parse failure.
        """
        try:
            return list(self.downloader.list_catalog())
        except CatalogUnavailable:
            raise
        except Exception as e:
            logger.error(f"Unexpected error listing remote versions: {e}", exc_info=True)
            raise CatalogUnavailable(f"Failed to list remote versions: {e}") from e

    def latest_remote_version(self, preview: bool = False) -> ServerVersion:
        """Returns the newest upstream release (or preview) version."""
        candidates = [v for v in self.list_remote_versions() if v.preview == preview]
        if not candidates:
            channel = "preview" if preview else "release"
            raise CatalogUnavailable(f"No {channel} versions found in catalog.")
        return max(candidates)

    # --- Local installs ---

    def _version_dir(self, version: str) -> str:
        return os.path.join(self.root, version)

    def _read_marker(self, version_dir: str) -> Optional[dict]:
        marker_path = os.path.join(version_dir, INSTALL_MARKER)
        if not os.path.isfile(marker_path):
            return None
        try:
            with open(marker_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (ValueError, OSError) as e:
            logger.warning(f"Ignoring install with unreadable marker '{marker_path}': {e}")
            return None
        if not isinstance(data, dict) or not data.get("integrity"):
            logger.warning(f"Ignoring install with invalid marker '{marker_path}'.")
            return None
        return data

    def _instance_from_dir(self, version_dir: str) -> Optional[InstalledServerInstance]:
        marker = self._read_marker(version_dir)
        if marker is None:
            return None
        return InstalledServerInstance(
            version=os.path.basename(version_dir),
            path=version_dir,
            integrity=str(marker["integrity"]),
            installed_at=str(marker.get("installed_at", "")),
        )

    def list_installed(self) -> List[InstalledServerInstance]:
        """Lists complete installs under the root, oldest version first.

        Directories missing the integrity marker are skipped.
        """
        if not os.path.isdir(self.root):
            logger.debug(f"Installation root '{self.root}' does not exist yet.")
            return []

        instances = []
        for name in os.listdir(self.root):
            if name.startswith("."):
                continue
            version_dir = os.path.join(self.root, name)
            if not os.path.isdir(version_dir):
                continue
            instance = self._instance_from_dir(version_dir)
            if instance is None:
                logger.debug(f"Skipping incomplete install directory '{version_dir}'.")
                continue
            instances.append(instance)

        return sorted(instances, key=lambda i: version_sort_key(i.version))

    def get_installed(self, version: str) -> Optional[InstalledServerInstance]:
        """Returns the install for ``version``, or None if it is not complete."""
        version_dir = self._version_dir(version)
        if not os.path.isdir(version_dir):
            return None
        return self._instance_from_dir(version_dir)

    def latest_installed(self) -> Optional[InstalledServerInstance]:
        installed = self.list_installed()
        return installed[-1] if installed else None

    # --- Installation ---

    def _lock_for(self, version: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(version)
            if lock is None:
                lock = threading.Lock()
                self._locks[version] = lock
            return lock

    def ensure_installed(
        self,
        version: Union[ServerVersion, str],
        accept_eula: bool,
        force_reinstall: bool = False,
    ) -> InstalledServerInstance:
        """Returns the install for ``version``, downloading it if needed.

        Concurrent calls for the same version are serialized; the second caller
        receives the install produced by the first.

        Args:
            version: A catalog entry, or a dotted version string (resolved to
                the canonical release archive URL).
            accept_eula: Must be True before anything is downloaded.
            force_reinstall: Replace an existing install.

        Raises:
            EulaNotAccepted: If a download is needed and ``accept_eula`` is
                False. No network request is made.
            DownloadFailed: If the archive cannot be downloaded.
            ArchiveCorrupt: If the archive is not a valid server archive.
        """
        if isinstance(version, str):
            try:
                parse_version(version)
            except ValueError as e:
                raise MissingArgumentError(str(e)) from e
            version = ServerVersion(version=version, archive_url=archive_url_for(version))

        with self._lock_for(version.version):
            existing = self.get_installed(version.version)
            if existing is not None and not force_reinstall:
                logger.info(f"Server version {version.version} already installed at {existing.path}.")
                return existing

            if not accept_eula:
                logger.error(f"Refusing to download {version.version}: EULA not accepted.")
                raise EulaNotAccepted(
                    f"You must accept the EULA and Privacy Policy to download the server.\n{EULA_TEXT}"
                )

            return self._install(version, replace=existing is not None)

    def _install(self, version: ServerVersion, replace: bool) -> InstalledServerInstance:
        os.makedirs(self.root, exist_ok=True)
        final_dir = self._version_dir(version.version)
        temp_dir = None
        archive_path = None
        installed = False
        logger.info(f"Installing server version {version.version} into {final_dir}")

        try:
            temp_dir = tempfile.mkdtemp(prefix=f"{_TEMP_PREFIX}{version.version}-", dir=self.root)
            fd, archive_path = tempfile.mkstemp(
                prefix=f"{_TEMP_PREFIX}{version.version}-", suffix=".zip", dir=self.root
            )
            os.close(fd)
            digest = self._download_archive(version.archive_url, archive_path)
            self._extract_archive(archive_path, temp_dir)
            self._write_marker(temp_dir, version, digest)
            self._move_into_place(temp_dir, final_dir, replace)
            installed = True
        except OSError as e:
            logger.error(f"Filesystem error installing {version.version}: {e}", exc_info=True)
            raise ArchiveCorrupt(f"Failed to install server {version.version}: {e}") from e
        finally:
            if not installed and temp_dir is not None:
                shutil.rmtree(temp_dir, ignore_errors=True)
            if archive_path is not None and os.path.exists(archive_path):
                os.remove(archive_path)

        instance = self.get_installed(version.version)
        if instance is None:
            raise ArchiveCorrupt(f"Install of {version.version} did not produce a valid marker.")
        logger.info(f"Server version {version.version} installed successfully.")
        return instance

    def _download_archive(self, url: str, archive_path: str) -> str:
        """Streams ``url`` into ``archive_path`` and returns its sha256."""
        sha256 = hashlib.sha256()
        total = 0
        try:
            with open(archive_path, "wb") as f:
                for chunk in self.downloader.fetch_bytes(url):
                    f.write(chunk)
                    sha256.update(chunk)
                    total += len(chunk)
        except OSError as e:
            raise DownloadFailed(url, f"Failed to write archive ({e})") from e
        logger.debug(f"Downloaded {total} bytes from {url}")
        return sha256.hexdigest()

    def _extract_archive(self, archive_path: str, dest_dir: str) -> None:
        """Verifies ``archive_path`` is a server archive and extracts it."""
        if not zipfile.is_zipfile(archive_path):
            raise ArchiveCorrupt("Downloaded file is not a zip archive.")

        try:
            with zipfile.ZipFile(archive_path, "r") as zip_ref:
                bad_member = zip_ref.testzip()
                if bad_member is not None:
                    raise ArchiveCorrupt(f"Archive member failed CRC check: {bad_member}")
                names = zip_ref.namelist()
                _check_members(names, dest_dir)
                if SERVER_EXECUTABLE not in names:
                    raise ArchiveCorrupt(f"Archive does not contain '{SERVER_EXECUTABLE}'.")
                zip_ref.extractall(dest_dir)
        except zipfile.BadZipFile as e:
            raise ArchiveCorrupt(f"Invalid server archive: {e}") from e
        except (zlib.error, EOFError, RuntimeError, NotImplementedError) as e:
            logger.error(f"Archive {archive_path} is damaged: {e}", exc_info=True)
            raise ArchiveCorrupt(f"Damaged server archive: {e}") from e

        executable = os.path.join(dest_dir, SERVER_EXECUTABLE)
        mode = os.stat(executable).st_mode
        os.chmod(executable, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        logger.debug(f"Extracted {len(names)} archive entries into {dest_dir}")

    def _write_marker(self, dest_dir: str, version: ServerVersion, digest: str) -> None:
        marker = {
            "version": version.version,
            "archive_url": version.archive_url,
            "preview": version.preview,
            "integrity": digest,
            "installed_at": datetime.now(timezone.utc).isoformat(),
        }
        with open(os.path.join(dest_dir, INSTALL_MARKER), "w", encoding="utf-8") as f:
            json.dump(marker, f, indent=2, sort_keys=True)

    def _move_into_place(self, temp_dir: str, final_dir: str, replace: bool) -> None:
        if not replace:
            # A marker-less leftover from an interrupted run is not an install.
            if os.path.isdir(final_dir):
                logger.warning(f"Removing incomplete install directory '{final_dir}'.")
                shutil.rmtree(final_dir)
            os.rename(temp_dir, final_dir)
            return

        trash_dir = tempfile.mkdtemp(prefix=_TRASH_PREFIX, dir=self.root)
        os.rmdir(trash_dir)
        os.rename(final_dir, trash_dir)
        try:
            os.rename(temp_dir, final_dir)
        except OSError:
            os.rename(trash_dir, final_dir)
            raise
        shutil.rmtree(trash_dir, ignore_errors=True)

    def remove(self, version: str) -> None:
        """Deletes an installed version."""
        with self._lock_for(version):
            version_dir = self._version_dir(version)
            if not os.path.isdir(version_dir):
                logger.debug(f"Nothing to remove for version {version}.")
                return
            logger.info(f"Removing server version {version} from {version_dir}")
            shutil.rmtree(version_dir)


def _check_members(names: Iterable[str], dest_dir: str) -> None:
    """Rejects archive members that would be extracted outside ``dest_dir``."""
    base = os.path.realpath(dest_dir)
    for name in names:
        target = os.path.realpath(os.path.join(base, name))
        if target != base and not target.startswith(base + os.sep):
            raise ArchiveCorrupt(f"Archive member escapes destination: {name}")
