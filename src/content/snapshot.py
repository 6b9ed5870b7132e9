"""Read-only access to the externally published content snapshot.

The published snapshot is the last exported document, placed wherever
the deployment serves it from: a URL (fetched with a cache-busting
query parameter) or a file on disk.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlencode, urlsplit, urlunsplit

from villacms.content.migration import migrate
from villacms.content.models import ContentDocument
from villacms.errors import InvalidFormatError, TransientIOError

if TYPE_CHECKING:
    from villacms.config import SnapshotConfig

logger = logging.getLogger(__name__)


def _decode(payload: bytes, origin: str) -> ContentDocument:
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidFormatError(f"Published snapshot at {origin} is not JSON: {exc}") from exc
    return migrate(data)


class SnapshotSource(ABC):
    """Somewhere the last published document can be read from."""

    @abstractmethod
    async def fetch(self) -> ContentDocument | None:
        """Return the migrated published document, or None if there is none.

        Raises:
            InvalidFormatError: The snapshot is not a valid document.
            TransientIOError: The snapshot could not be read.
        """


class HttpSnapshotSource(SnapshotSource):
    """Fetches the snapshot over HTTP via urllib."""

    def __init__(self, url: str, timeout: float = 10) -> None:
        self.url = url
        self.timeout = timeout

    def cache_busted_url(self, now_ms: int | None = None) -> str:
        """Append ``t=<epoch ms>`` so intermediaries never serve a stale copy."""
        stamp = now_ms if now_ms is not None else int(time.time() * 1000)
        parts = urlsplit(self.url)
        query = f"{parts.query}&" if parts.query else ""
        query += urlencode({"t": stamp})
        return urlunsplit(parts._replace(query=query))

    async def fetch(self) -> ContentDocument | None:
        url = self.cache_busted_url()
        payload = await asyncio.to_thread(self._get, url)
        return _decode(payload, self.url)

    def _get(self, url: str) -> bytes:
        req = urllib.request.Request(url, headers={"Accept": "application/json"})
        logger.debug("Fetching published snapshot from %s", url)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return resp.read()
        except urllib.error.HTTPError as exc:
            raise TransientIOError(f"Could not load {self.url}, status: {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise TransientIOError(f"Could not load {self.url}: {exc}") from exc


class FileSnapshotSource(SnapshotSource):
    """Reads an exported document from disk."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    async def fetch(self) -> ContentDocument | None:
        payload = await asyncio.to_thread(self._read)
        if payload is None:
            return None
        return _decode(payload, str(self.path))

    def _read(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            logger.debug("No published snapshot at %s", self.path)
            return None
        except OSError as exc:
            raise TransientIOError(f"Could not read {self.path}: {exc}") from exc


def snapshot_source_from_config(config: SnapshotConfig) -> SnapshotSource | None:
    """Build the configured snapshot source; a URL wins over a path."""
    if config.url:
        return HttpSnapshotSource(config.url, timeout=config.timeout)
    if config.path:
        return FileSnapshotSource(Path(config.path))
    return None
