"""Durable two-slot content store.

Holds at most one document in each of the ``live`` and ``draft`` slots.
Every write replaces the whole document; partial edits happen above this
layer.  Decoded documents pass through the migration engine on the way
out, so callers always receive current-schema documents.
"""

from __future__ import annotations

import asyncio
import errno
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from villacms.content.migration import migrate
from villacms.content.models import ContentDocument, Slot, serialize
from villacms.errors import CapacityExceededError, InvalidFormatError, TransientIOError

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 5_000_000

SLOT_FILENAMES = {
    Slot.LIVE: "live.json",
    Slot.DRAFT: "draft.json",
}

_CAPACITY_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC), errno.EFBIG}


class SlotStore(ABC):
    """Key-addressed persistence for the live and draft documents.

    Operations on one slot run in submission order.  There is no
    transactionality across slots.
    """

    def __init__(self, max_bytes: int | None = DEFAULT_MAX_BYTES) -> None:
        self.max_bytes = max_bytes
        self._locks = {slot: asyncio.Lock() for slot in Slot}

    # ── Backend hooks ────────────────────────────────────────────

    @abstractmethod
    async def _read(self, slot: Slot) -> str | None:
        """Return the stored payload, or None if the slot is empty."""

    @abstractmethod
    async def _write(self, slot: Slot, payload: str) -> None:
        """Atomically replace the slot's payload."""

    @abstractmethod
    async def _delete(self, slot: Slot) -> None:
        """Remove the slot's payload if present."""

    # ── Public API ───────────────────────────────────────────────

    async def get(self, slot: Slot) -> ContentDocument | None:
        """Return the migrated document in ``slot``, or None if empty.

        Raises:
            InvalidFormatError: The stored value is corrupt or not a document.
            TransientIOError: The backend could not be read.
        """
        async with self._locks[slot]:
            raw = await self._read(slot)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidFormatError(f"Corrupt {slot} slot: {exc}") from exc
        return migrate(data)

    async def put(self, slot: Slot, doc: ContentDocument) -> None:
        """Replace the document in ``slot``.

        Raises:
            CapacityExceededError: The payload is larger than the store allows.
            TransientIOError: Any other write failure.
        """
        payload = serialize(doc)
        size = len(payload.encode("utf-8"))
        if self.max_bytes is not None and size > self.max_bytes:
            raise CapacityExceededError(size, self.max_bytes)
        async with self._locks[slot]:
            await self._write(slot, payload)
        logger.debug("Wrote %d bytes to %s slot", size, slot)

    async def clear(self, slot: Slot) -> None:
        """Empty ``slot``; clearing an empty slot is a no-op."""
        async with self._locks[slot]:
            await self._delete(slot)
        logger.debug("Cleared %s slot", slot)


class FileSlotStore(SlotStore):
    """One JSON file per slot under a directory.

    Writes land in a temporary file that is then renamed over the
    target, so a reader never sees a partial document.
    """

    def __init__(self, directory: Path, max_bytes: int | None = DEFAULT_MAX_BYTES) -> None:
        super().__init__(max_bytes)
        self.directory = Path(directory)

    def path_for(self, slot: Slot) -> Path:
        return self.directory / SLOT_FILENAMES[slot]

    async def _read(self, slot: Slot) -> str | None:
        return await asyncio.to_thread(self._read_sync, self.path_for(slot))

    async def _write(self, slot: Slot, payload: str) -> None:
        await asyncio.to_thread(self._write_sync, self.path_for(slot), payload)

    async def _delete(self, slot: Slot) -> None:
        await asyncio.to_thread(self._delete_sync, self.path_for(slot))

    # ── Blocking helpers (run in a worker thread) ────────────────

    @staticmethod
    def _read_sync(path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise TransientIOError(f"Failed to read {path}: {exc}") from exc

    def _write_sync(self, path: Path, payload: str) -> None:
        temp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(payload, encoding="utf-8")
            temp_path.replace(path)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            if exc.errno in _CAPACITY_ERRNOS:
                raise CapacityExceededError(len(payload.encode("utf-8")), self.max_bytes) from exc
            raise TransientIOError(f"Failed to write {path}: {exc}") from exc

    @staticmethod
    def _delete_sync(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise TransientIOError(f"Failed to delete {path}: {exc}") from exc


class MemorySlotStore(SlotStore):
    """In-process slot store with the same semantics as the file store."""

    def __init__(self, max_bytes: int | None = DEFAULT_MAX_BYTES) -> None:
        super().__init__(max_bytes)
        self._payloads: dict[Slot, str] = {}

    async def _read(self, slot: Slot) -> str | None:
        return self._payloads.get(slot)

    async def _write(self, slot: Slot, payload: str) -> None:
        self._payloads[slot] = payload

    async def _delete(self, slot: Slot) -> None:
        self._payloads.pop(slot, None)

    def raw(self, slot: Slot) -> str | None:
        """Return the stored JSON payload without decoding it."""
        return self._payloads.get(slot)
