"""One-time absorption of content saved by the retired storage scheme.

The old scheme kept whole documents as JSON strings in a key-value
store (``villaContent`` for live, ``villaDraftContent`` for the draft)
and moved large image payloads into a second, more volatile key-value
store, leaving ``idb:<token>`` references behind in the document.

``LegacyAbsorber.absorb`` reads whatever is left of that, upgrades it
through the migration engine, writes it into empty slots, deletes the
consumed records and payloads, and sets a persisted marker so later
runs return immediately.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote, unquote

from pydantic import BaseModel, Field

from villacms.content.migration import collect_tokens, migrate, rehydrate
from villacms.content.models import ContentDocument, Slot
from villacms.content.store import SlotStore
from villacms.errors import ContentError, InvalidFormatError, TransientIOError

logger = logging.getLogger(__name__)

LEGACY_LIVE_KEY = "villaContent"
LEGACY_DRAFT_KEY = "villaDraftContent"
MIGRATION_MARKER_KEY = "legacy-migration-complete"

# Alias to avoid shadowing by KeyValueStore.keys
_list = list


class KeyValueStore(ABC):
    """Minimal asynchronous string key-value store."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def keys(self) -> _list[str]: ...


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def keys(self) -> _list[str]:
        return _list(self.data)


class FileKeyValueStore(KeyValueStore):
    """One file per key under a directory; keys are percent-encoded."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / quote(key, safe="")

    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set_sync, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    async def keys(self) -> _list[str]:
        return await asyncio.to_thread(self._keys_sync)

    def _get_sync(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise TransientIOError(f"Failed to read legacy key {key!r}: {exc}") from exc

    def _set_sync(self, key: str, value: str) -> None:
        path = self._path(key)
        temp_path = path.with_name(path.name + ".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(value, encoding="utf-8")
            temp_path.replace(path)
        except OSError as exc:
            raise TransientIOError(f"Failed to write key {key!r}: {exc}") from exc

    def _delete_sync(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise TransientIOError(f"Failed to delete key {key!r}: {exc}") from exc

    def _keys_sync(self) -> _list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(
            unquote(p.name) for p in self.directory.iterdir()
            if p.is_file() and not p.name.endswith(".tmp")
        )


class AbsorptionReport(BaseModel):
    """Summary of one absorption run."""

    skipped: bool = False
    migrated: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)
    dropped_photo_ids: list[str] = Field(default_factory=list)
    consumed_payloads: list[str] = Field(default_factory=list)


class LegacyAbsorber:
    """Moves legacy records into the slot store exactly once."""

    def __init__(
        self,
        slots: SlotStore,
        legacy: KeyValueStore,
        payloads: KeyValueStore,
        marker: KeyValueStore,
    ) -> None:
        self.slots = slots
        self.legacy = legacy
        self.payloads = payloads
        self.marker = marker

    async def is_complete(self) -> bool:
        return await self.marker.get(MIGRATION_MARKER_KEY) is not None

    async def absorb(self) -> AbsorptionReport:
        """Run the one-time upgrade.

        Raises:
            TransientIOError: A store could not be read or written; the
                marker stays unset so the next load retries.
        """
        if await self.is_complete():
            return AbsorptionReport(skipped=True)

        report = AbsorptionReport()
        consumed: set[str] = set()

        live = await self._current(Slot.LIVE)
        legacy_live = await self._absorb_record(
            LEGACY_LIVE_KEY, Slot.LIVE, live, report, consumed
        )
        draft_fallback = live or legacy_live
        await self._absorb_record(
            LEGACY_DRAFT_KEY, Slot.DRAFT, draft_fallback, report, consumed
        )

        for token in sorted(consumed):
            await self.payloads.delete(token)
        report.consumed_payloads = sorted(consumed)

        await self.marker.set(MIGRATION_MARKER_KEY, "1")
        logger.info(
            "Legacy absorption complete: %d migrated, %d rejected, %d photos dropped",
            len(report.migrated), len(report.rejected), len(report.dropped_photo_ids),
        )
        return report

    async def _current(self, slot: Slot) -> ContentDocument | None:
        try:
            return await self.slots.get(slot)
        except InvalidFormatError:
            logger.warning("Ignoring unreadable %s slot during legacy absorption", slot)
            return None

    async def _absorb_record(
        self,
        key: str,
        slot: Slot,
        fallback: ContentDocument | None,
        report: AbsorptionReport,
        consumed: set[str],
    ) -> ContentDocument | None:
        raw = await self.legacy.get(key)
        if raw is None:
            return None

        try:
            doc = migrate(json.loads(raw))
        except (json.JSONDecodeError, InvalidFormatError) as exc:
            logger.warning("Discarding legacy record %s: %s", key, exc)
            report.rejected.append(key)
            await self.legacy.delete(key)
            return None

        found: dict[str, str] = {}
        for token in sorted(collect_tokens(doc)):
            value = await self.payloads.get(token)
            if value is not None:
                found[token] = value

        result = rehydrate(doc, found, fallback)
        for miss in result.misses:
            logger.warning("Dropping legacy image: %s", miss)
        report.dropped_photo_ids.extend(result.dropped_photo_ids)
        consumed.update(result.consumed)

        if await self._current(slot) is None:
            await self.slots.put(slot, result.document)
            logger.info("Restored legacy %s into the %s slot", key, slot)
        else:
            logger.info("Skipping legacy %s: %s slot already populated", key, slot)
        await self.legacy.delete(key)
        report.migrated.append(key)
        return result.document


async def absorb_legacy(absorber: LegacyAbsorber | None) -> AbsorptionReport | None:
    """Run absorption if configured, logging rather than raising on failure."""
    if absorber is None:
        return None
    try:
        return await absorber.absorb()
    except ContentError as exc:
        logger.warning("Legacy absorption failed, will retry on next load: %s", exc)
        return None
