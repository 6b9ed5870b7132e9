"""Content session — resolves which document a viewer sees and owns edits.

A ``ContentSession`` is created when a viewer or editor enters and closed
when they leave.  It loads the live and draft documents (with fallbacks
down to the compiled-in content), tracks whether the draft differs from
live, and exposes update, publish, and discard.

Edits are write-behind: ``update`` changes the in-memory draft at once
and queues the durable write.  ``draft_state`` tells whether the latest
draft has reached the store, so UI state and durable state can be
checked independently.  Storage and network failures never escape the
session; they are logged and recorded in ``last_error``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlsplit

from villacms.content.defaults import initial_content
from villacms.content.exchange import export_document, import_document
from villacms.content.legacy import (
    FileKeyValueStore,
    LegacyAbsorber,
    absorb_legacy,
)
from villacms.content.models import ContentDocument, Slot, serialize
from villacms.content.snapshot import SnapshotSource, snapshot_source_from_config
from villacms.content.store import FileSlotStore, SlotStore
from villacms.errors import ContentError, InvalidFormatError, TransientIOError

if TYPE_CHECKING:
    from villacms.config import SiteConfig

logger = logging.getLogger(__name__)


class ViewerMode(StrEnum):
    PUBLIC = "public"
    EDITOR = "editor"
    PREVIEW = "preview"


class PersistState(StrEnum):
    """Durability of the in-memory draft."""

    PERSISTED = "persisted"
    PENDING = "pending"
    FAILED = "failed"


def parse_preview_flag(url: str) -> bool:
    """Return True if an entry URL asks for preview mode.

    Looks at the query string and, for hash-routed URLs such as
    ``/#/?preview=true``, at the query inside the fragment.
    """
    parts = urlsplit(url)
    queries = [parts.query]
    if "?" in parts.fragment:
        queries.append(parts.fragment.split("?", 1)[1])
    for query in queries:
        values = parse_qs(query).get("preview", [])
        if any(v.lower() == "true" for v in values):
            return True
    return False


class ContentSession:
    """Per-viewer session over the two-slot store."""

    def __init__(
        self,
        slots: SlotStore,
        *,
        snapshot: SnapshotSource | None = None,
        legacy: LegacyAbsorber | None = None,
        authenticated: bool = False,
        preview: bool = False,
        default_factory: Callable[[], ContentDocument] = initial_content,
    ) -> None:
        self.slots = slots
        self.snapshot = snapshot
        self.legacy = legacy
        self.authenticated = authenticated
        self.preview = preview
        self._default_factory = default_factory

        self.live: ContentDocument | None = None
        self.draft: ContentDocument | None = None
        self.dirty = False
        self.loading = False
        self.mode = ViewerMode.PUBLIC
        self.draft_state = PersistState.PERSISTED
        self.has_stored_draft = False
        self.last_error: ContentError | None = None

        self._generation = 0
        self._tail: asyncio.Task[Any] | None = None
        self._lock: asyncio.Lock | None = None
        self._closed = False

    async def __aenter__(self) -> ContentSession:
        await self.load()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── Views ────────────────────────────────────────────────────

    @property
    def effective(self) -> ContentDocument | None:
        """The document shown to the current viewer."""
        if self.mode is ViewerMode.PREVIEW:
            return self.draft
        return self.live

    # ── Load protocol ────────────────────────────────────────────

    async def load(self) -> None:
        """(Re)load both slots, falling back source by source."""
        await self.flush()
        self.loading = True
        try:
            await absorb_legacy(self.legacy)
            live = await self._load_live()
            draft = await self._read_slot(Slot.DRAFT)

            self.live = live
            self.has_stored_draft = draft is not None
            self.draft = draft if draft is not None else live.model_copy(deep=True)
            self.dirty = self._differs()
            self.draft_state = PersistState.PERSISTED
            self.mode = self._resolve_mode()
            logger.debug("Session loaded: mode=%s dirty=%s", self.mode, self.dirty)
        finally:
            self.loading = False

    reload = load

    async def _read_slot(self, slot: Slot) -> ContentDocument | None:
        try:
            return await self.slots.get(slot)
        except (InvalidFormatError, TransientIOError) as exc:
            logger.warning("Could not read %s slot, falling back: %s", slot, exc)
            return None

    async def _load_live(self) -> ContentDocument:
        doc = await self._read_slot(Slot.LIVE)
        if doc is not None:
            return doc
        if self.snapshot is not None:
            try:
                doc = await self.snapshot.fetch()
            except (InvalidFormatError, TransientIOError) as exc:
                logger.warning("Could not load published snapshot, using defaults: %s", exc)
            if doc is not None:
                return doc
        logger.info("No stored or published content found, using compiled-in content")
        return self._default_factory()

    def _resolve_mode(self) -> ViewerMode:
        if self.authenticated:
            return ViewerMode.EDITOR
        if self.preview and self.has_stored_draft:
            return ViewerMode.PREVIEW
        return ViewerMode.PUBLIC

    def _differs(self) -> bool:
        if self.draft is None:
            return False
        if self.live is None:
            return True
        return serialize(self.draft) != serialize(self.live)

    # ── Ordered write queue ──────────────────────────────────────

    def _enqueue(self, operation: Callable[[], Awaitable[Any]]) -> asyncio.Task[Any]:
        previous = self._tail

        async def run() -> Any:
            if previous is not None:
                await asyncio.wait([previous])
            return await operation()

        task = asyncio.get_running_loop().create_task(run())
        self._tail = task
        return task

    async def flush(self) -> None:
        """Wait until every queued write has finished."""
        if self._tail is not None:
            await asyncio.wait([self._tail])

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    # ── Update protocol ──────────────────────────────────────────

    def update(self, doc: ContentDocument) -> None:
        """Replace the draft now and persist it in the background.

        Must be called from a running event loop.  A failed write keeps
        the in-memory draft; see ``draft_state`` and ``last_error``.
        """
        if self._closed:
            raise RuntimeError("Session is closed")
        doc = doc.model_copy(deep=True)
        self.draft = doc
        self.dirty = self._differs()
        self._generation += 1
        generation = self._generation
        self.draft_state = PersistState.PENDING
        self._enqueue(lambda: self._persist_draft(doc, generation))

    async def _persist_draft(self, doc: ContentDocument, generation: int) -> None:
        try:
            await self.slots.put(Slot.DRAFT, doc)
        except ContentError as exc:
            self.last_error = exc
            if generation == self._generation:
                self.draft_state = PersistState.FAILED
            logger.error("Failed to save draft: %s", exc)
            return
        self.has_stored_draft = True
        if generation == self._generation:
            self.draft_state = PersistState.PERSISTED

    # ── Publish / discard ────────────────────────────────────────

    async def publish(self) -> bool:
        """Make the draft live and clear the draft slot.

        Returns False (with ``last_error`` set) if the store rejected it.
        """
        async with self._get_lock():
            if self.draft is None:
                await self.load()
            doc = self.draft
            generation = self._generation
            task = self._enqueue(lambda: self._commit(doc, generation))
            try:
                await task
            except ContentError as exc:
                self.last_error = exc
                logger.error("Failed to publish content: %s", exc)
                return False
            return True

    async def _commit(self, doc: ContentDocument, generation: int) -> None:
        await self.slots.put(Slot.LIVE, doc)
        self.live = doc.model_copy(deep=True)
        try:
            if generation == self._generation:
                await self.slots.clear(Slot.DRAFT)
                self.has_stored_draft = False
                self.draft_state = PersistState.PERSISTED
            else:
                logger.info("Draft changed while publishing; keeping the newer draft")
        finally:
            self.dirty = self._differs()
        logger.info("Published content (%d FAQs, %d gallery sections)", len(doc.faqs), len(doc.gallery))

    async def discard(self) -> bool:
        """Drop the stored draft and reload everything from the store."""
        async with self._get_lock():
            task = self._enqueue(lambda: self.slots.clear(Slot.DRAFT))
            try:
                await task
            except ContentError as exc:
                self.last_error = exc
                logger.error("Failed to discard draft: %s", exc)
                return False
            self.has_stored_draft = False
            await self.load()
            logger.info("Discarded local changes")
            return True

    # ── Export / import ──────────────────────────────────────────

    def export_bytes(self) -> bytes:
        """Export the draft for editors, the effective document otherwise."""
        doc = self.draft if self.mode is ViewerMode.EDITOR else self.effective
        if doc is None:
            raise RuntimeError("Session has not been loaded")
        return export_document(doc)

    def import_bytes(self, data: bytes | str) -> ContentDocument:
        """Import an uploaded file as the new draft.

        Raises:
            InvalidFormatError: The file is not a valid content document.
        """
        doc = import_document(data)
        self.update(doc)
        return doc

    # ── Lifecycle ────────────────────────────────────────────────

    async def close(self) -> None:
        """Finish queued writes and refuse further edits."""
        await self.flush()
        self._closed = True


def session_from_config(
    config: SiteConfig,
    *,
    authenticated: bool = False,
    preview: bool = False,
) -> ContentSession:
    """Wire a session to the file-backed stores named in the config."""
    slots = FileSlotStore(
        Path(config.storage.directory),
        max_bytes=config.storage.max_document_bytes,
    )
    legacy = None
    if config.legacy.directory:
        root = Path(config.legacy.directory)
        legacy = LegacyAbsorber(
            slots,
            legacy=FileKeyValueStore(root / "legacy"),
            payloads=FileKeyValueStore(root / "payloads"),
            marker=FileKeyValueStore(root / "meta"),
        )
    return ContentSession(
        slots,
        snapshot=snapshot_source_from_config(config.snapshot),
        legacy=legacy,
        authenticated=authenticated,
        preview=preview,
    )
