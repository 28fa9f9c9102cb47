# bedrockci/core/downloader.py
"""HTTP access to the Bedrock Dedicated Server catalog and archives.

The engine only needs two things from the network: "list the versions that are
available" and "give me the bytes of version V". :class:`BedrockDownloader`
provides both on top of a ``requests.Session``. Neither operation retries;
callers decide whether a failed network call is worth repeating.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import requests

from bedrockci.config.const import USER_AGENT
from bedrockci.error import CatalogUnavailable, DownloadFailed, MissingArgumentError

logger = logging.getLogger(__name__)

DOWNLOAD_PAGE_URL = "https://www.minecraft.net/en-us/download/server/bedrock"
ARCHIVE_URL_TEMPLATE = (
    "https://www.minecraft.net/bedrockdedicatedserver/{channel}/bedrock-server-{version}.zip"
)
_ARCHIVE_URL_RE = re.compile(
    r"https://www\.minecraft\.net/bedrockdedicatedserver/"
    r"(?P<channel>bin-linux(?:-preview)?)/bedrock-server-(?P<version>\d+(?:\.\d+)+)\.zip"
)
_VERSION_RE = re.compile(r"^\d+(?:\.\d+)+$")

CHUNK_SIZE = 1024 * 1024


def parse_version(version: str) -> Tuple[int, ...]:
    """Converts a dotted version string into a comparable tuple of ints.

    Raises:
        ValueError: If ``version`` is not a dotted numeric version.
    """
    if not version or not _VERSION_RE.match(version):
        raise ValueError(f"Invalid server version: '{version}'")
    return tuple(int(part) for part in version.split("."))


def version_sort_key(version: str) -> Tuple[int, ...]:
    """Sort key that orders well-formed versions numerically and others last."""
    try:
        return (0,) + parse_version(version)
    except ValueError:
        return (1,)


@dataclass(frozen=True, order=True)
class ServerVersion:
    """A resolved, downloadable server version."""

    sort_key: Tuple[int, ...] = field(init=False, repr=False, compare=True)
    version: str = field(compare=False)
    archive_url: str = field(compare=False)
    preview: bool = False

    def __post_init__(self):
        object.__setattr__(self, "sort_key", parse_version(self.version))

    def __str__(self) -> str:
        return f"{self.version}-preview" if self.preview else self.version


def archive_url_for(version: str, preview: bool = False) -> str:
    """Builds the canonical Linux archive URL for a version."""
    channel = "bin-linux-preview" if preview else "bin-linux"
    return ARCHIVE_URL_TEMPLATE.format(channel=channel, version=version)


class BedrockDownloader:
    """Fetches the server catalog and server archives over HTTP.

    Args:
        session: An optional ``requests.Session`` to reuse. One is created
            when omitted.
        timeout: Timeout in seconds for each HTTP request.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 30):
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.timeout = timeout

    def list_catalog(self) -> List[ServerVersion]:
        """Lists server versions advertised on the official download page.

        Returns:
            The advertised versions, release and preview, sorted ascending.

        Raises:
            CatalogUnavailable: If the page cannot be fetched or contains no
                recognizable archive links.
        """
        logger.debug(f"Fetching server catalog from {DOWNLOAD_PAGE_URL}")
        try:
            response = self.session.get(
                DOWNLOAD_PAGE_URL,
                headers={"Accept-Language": "en", "Accept-Encoding": "identity"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            html = response.text
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to fetch download page: {e}", exc_info=True)
            raise CatalogUnavailable(f"Failed to fetch download page content: {e}") from e

        versions = {}
        for match in _ARCHIVE_URL_RE.finditer(html):
            preview = match.group("channel").endswith("-preview")
            key = (match.group("version"), preview)
            if key not in versions:
                versions[key] = ServerVersion(
                    version=match.group("version"),
                    archive_url=match.group(0),
                    preview=preview,
                )

        if not versions:
            logger.error("No server archive links found on the download page.")
            raise CatalogUnavailable("Could not find any server versions on the download page.")

        catalog = sorted(versions.values())
        logger.info(f"Found {len(catalog)} server version(s) in catalog.")
        return catalog

    def fetch_bytes(self, url: str) -> Iterator[bytes]:
        """Streams the content at ``url`` in chunks.

        Raises:
            MissingArgumentError: If ``url`` is empty.
            DownloadFailed: On any network or HTTP error, including errors
                raised midway through the stream.
        """
        if not url:
            raise MissingArgumentError("url is empty.")

        logger.info(f"Downloading {url}")
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        yield chunk
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to download '{url}': {e}", exc_info=True)
            raise DownloadFailed(url, f"Failed to download server ({e})") from e
