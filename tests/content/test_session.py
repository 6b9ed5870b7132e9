"""Tests for the content session controller."""

import asyncio
import json
from pathlib import Path

import pytest
from villacms.config import SiteConfig
from villacms.content.defaults import initial_content
from villacms.content.editing import add_faq, set_text
from villacms.content.legacy import LEGACY_LIVE_KEY, FileKeyValueStore
from villacms.content.models import ContentDocument, Slot
from villacms.content.session import (
    ContentSession,
    PersistState,
    ViewerMode,
    parse_preview_flag,
    session_from_config,
)
from villacms.content.snapshot import FileSnapshotSource, HttpSnapshotSource, SnapshotSource
from villacms.content.store import MemorySlotStore
from villacms.errors import CapacityExceededError, InvalidFormatError, TransientIOError


def _doc(hero: str) -> ContentDocument:
    return set_text(initial_content(), hero_title=hero)


class StaticSnapshot(SnapshotSource):
    def __init__(self, doc: ContentDocument | None = None, error: Exception | None = None):
        self.doc = doc
        self.error = error
        self.calls = 0

    async def fetch(self) -> ContentDocument | None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.doc


class RecordingSlotStore(MemorySlotStore):
    """Memory store that yields to the loop on every write and records them."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.writes: list[tuple[Slot, str]] = []

    async def _write(self, slot: Slot, payload: str) -> None:
        await asyncio.sleep(0)
        self.writes.append((slot, json.loads(payload)["textContent"]["heroTitle"]))
        await super()._write(slot, payload)


class FailingClearSlotStore(MemorySlotStore):
    """Memory store whose slot deletes always fail."""

    async def _delete(self, slot: Slot) -> None:
        raise TransientIOError(f"Failed to delete {slot}: disk busy")


def _stored_hero(store: MemorySlotStore, slot: Slot) -> str | None:
    raw = store.raw(slot)
    return None if raw is None else json.loads(raw)["textContent"]["heroTitle"]


class TestLoad:
    def test_empty_store_uses_compiled_in_content(self):
        session = ContentSession(MemorySlotStore())
        asyncio.run(session.load())
        assert session.live == initial_content()
        assert session.draft == session.live
        assert session.dirty is False
        assert session.has_stored_draft is False
        assert session.loading is False

    def test_live_slot_wins_over_snapshot(self):
        store = MemorySlotStore()
        asyncio.run(store.put(Slot.LIVE, _doc("Stored")))
        snapshot = StaticSnapshot(_doc("Published"))
        session = ContentSession(store, snapshot=snapshot)
        asyncio.run(session.load())
        assert session.live.text.hero_title == "Stored"
        assert snapshot.calls == 0

    def test_snapshot_used_when_live_empty(self):
        session = ContentSession(MemorySlotStore(), snapshot=StaticSnapshot(_doc("Published")))
        asyncio.run(session.load())
        assert session.live.text.hero_title == "Published"

    def test_missing_snapshot_falls_back_to_default(self):
        session = ContentSession(MemorySlotStore(), snapshot=StaticSnapshot(None))
        asyncio.run(session.load())
        assert session.live == initial_content()

    @pytest.mark.parametrize(
        "error",
        [TransientIOError("Could not load snapshot, status: 404"), InvalidFormatError("bad")],
    )
    def test_failing_snapshot_falls_back_to_default(self, error, caplog):
        session = ContentSession(MemorySlotStore(), snapshot=StaticSnapshot(error=error))
        asyncio.run(session.load())
        assert session.live == initial_content()
        assert "using defaults" in caplog.text

    def test_corrupt_live_slot_falls_through(self):
        store = MemorySlotStore()
        store._payloads[Slot.LIVE] = "{not json"
        session = ContentSession(store, snapshot=StaticSnapshot(_doc("Published")))
        asyncio.run(session.load())
        assert session.live.text.hero_title == "Published"

    def test_corrupt_draft_slot_copies_live(self):
        store = MemorySlotStore()
        asyncio.run(store.put(Slot.LIVE, _doc("Live")))
        store._payloads[Slot.DRAFT] = json.dumps({"faqs": []})
        session = ContentSession(store)
        asyncio.run(session.load())
        assert session.draft == session.live
        assert session.has_stored_draft is False

    def test_stored_draft_makes_session_dirty(self):
        store = MemorySlotStore()
        asyncio.run(store.put(Slot.LIVE, _doc("Live")))
        asyncio.run(store.put(Slot.DRAFT, _doc("Draft")))
        session = ContentSession(store, authenticated=True)
        asyncio.run(session.load())
        assert session.dirty is True
        assert session.draft.text.hero_title == "Draft"

    def test_interrupted_publish_reads_as_clean(self):
        store = MemorySlotStore()
        asyncio.run(store.put(Slot.LIVE, _doc("Same")))
        asyncio.run(store.put(Slot.DRAFT, _doc("Same")))
        session = ContentSession(store, authenticated=True)
        asyncio.run(session.load())
        assert session.has_stored_draft is True
        assert session.dirty is False

    def test_context_manager_loads_and_closes(self):
        async def scenario():
            async with ContentSession(MemorySlotStore()) as session:
                assert session.live is not None
            return session

        session = asyncio.run(scenario())
        with pytest.raises(RuntimeError):
            session.update(initial_content())


class TestModes:
    def _store_with_draft(self) -> MemorySlotStore:
        store = MemorySlotStore()
        asyncio.run(store.put(Slot.LIVE, _doc("Live")))
        asyncio.run(store.put(Slot.DRAFT, _doc("Draft")))
        return store

    def test_public_sees_live(self):
        session = ContentSession(self._store_with_draft())
        asyncio.run(session.load())
        assert session.mode is ViewerMode.PUBLIC
        assert session.effective.text.hero_title == "Live"

    def test_preview_sees_draft(self):
        session = ContentSession(self._store_with_draft(), preview=True)
        asyncio.run(session.load())
        assert session.mode is ViewerMode.PREVIEW
        assert session.effective.text.hero_title == "Draft"

    def test_preview_without_stored_draft_is_public(self):
        store = MemorySlotStore()
        asyncio.run(store.put(Slot.LIVE, _doc("Live")))
        session = ContentSession(store, preview=True)
        asyncio.run(session.load())
        assert session.mode is ViewerMode.PUBLIC

    def test_editor(self):
        session = ContentSession(self._store_with_draft(), authenticated=True, preview=True)
        asyncio.run(session.load())
        assert session.mode is ViewerMode.EDITOR
        assert session.effective.text.hero_title == "Live"

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://villa.example/?preview=true", True),
            ("https://villa.example/#/?preview=true", True),
            ("https://villa.example/?preview=TRUE", True),
            ("https://villa.example/?preview=false", False),
            ("https://villa.example/#/gallery", False),
            ("https://villa.example/", False),
        ],
    )
    def test_parse_preview_flag(self, url, expected):
        assert parse_preview_flag(url) is expected


class TestUpdateAndPublish:
    def test_edit_then_publish(self):
        store = MemorySlotStore()

        async def scenario():
            session = ContentSession(store, authenticated=True)
            await session.load()

            session.update(_doc("Edited"))
            assert session.draft.text.hero_title == "Edited"
            assert session.dirty is True
            assert session.draft_state is PersistState.PENDING

            await session.flush()
            assert session.draft_state is PersistState.PERSISTED
            assert session.has_stored_draft is True
            assert _stored_hero(store, Slot.DRAFT) == "Edited"

            assert await session.publish() is True
            assert session.dirty is False
            assert session.live.text.hero_title == "Edited"
            assert _stored_hero(store, Slot.LIVE) == "Edited"
            assert store.raw(Slot.DRAFT) is None
            await session.close()

        asyncio.run(scenario())

    def test_update_back_to_live_is_clean(self):
        async def scenario():
            session = ContentSession(MemorySlotStore(), authenticated=True)
            await session.load()
            original = session.live
            session.update(_doc("Changed"))
            session.update(original)
            await session.flush()
            return session

        assert asyncio.run(scenario()).dirty is False

    def test_update_does_not_alias_caller_document(self):
        async def scenario():
            session = ContentSession(MemorySlotStore(), authenticated=True)
            await session.load()
            doc = _doc("Edited")
            session.update(doc)
            doc.faqs.clear()
            await session.flush()
            return session

        assert len(asyncio.run(scenario()).draft.faqs) == 1

    def test_writes_reach_store_in_call_order(self):
        store = RecordingSlotStore()

        async def scenario():
            session = ContentSession(store, authenticated=True)
            await session.load()
            for hero in ("one", "two", "three"):
                session.update(_doc(hero))
            await session.flush()

        asyncio.run(scenario())
        assert store.writes == [(Slot.DRAFT, "one"), (Slot.DRAFT, "two"), (Slot.DRAFT, "three")]
        assert _stored_hero(store, Slot.DRAFT) == "three"

    def test_capacity_failure_keeps_in_memory_draft(self):
        store = MemorySlotStore(max_bytes=20_000)

        async def scenario():
            session = ContentSession(store, authenticated=True)
            await session.load()
            session.update(_doc("x" * 50_000))
            await session.flush()
            return session

        session = asyncio.run(scenario())
        assert session.draft_state is PersistState.FAILED
        assert isinstance(session.last_error, CapacityExceededError)
        assert session.draft.text.hero_title == "x" * 50_000
        assert session.dirty is True
        assert store.raw(Slot.DRAFT) is None

    def test_later_successful_write_clears_failed_state(self):
        store = MemorySlotStore(max_bytes=20_000)

        async def scenario():
            session = ContentSession(store, authenticated=True)
            await session.load()
            session.update(_doc("x" * 50_000))
            session.update(_doc("Small"))
            await session.flush()
            return session

        session = asyncio.run(scenario())
        assert session.draft_state is PersistState.PERSISTED
        assert _stored_hero(store, Slot.DRAFT) == "Small"

    def test_failed_publish_leaves_slots_untouched(self):
        store = MemorySlotStore()
        asyncio.run(store.put(Slot.LIVE, _doc("Live")))
        asyncio.run(store.put(Slot.DRAFT, _doc("Draft")))
        store.max_bytes = 10

        async def scenario():
            session = ContentSession(store, authenticated=True)
            await session.load()
            return session, await session.publish()

        session, ok = asyncio.run(scenario())
        assert ok is False
        assert isinstance(session.last_error, CapacityExceededError)
        assert session.dirty is True
        assert _stored_hero(store, Slot.LIVE) == "Live"
        assert _stored_hero(store, Slot.DRAFT) == "Draft"

    def test_draft_clear_failure_after_live_write_reads_clean(self):
        store = FailingClearSlotStore()

        async def scenario():
            session = ContentSession(store, authenticated=True)
            await session.load()
            session.update(_doc("New"))
            await session.flush()
            return session, await session.publish()

        session, ok = asyncio.run(scenario())
        assert ok is False
        assert isinstance(session.last_error, TransientIOError)
        assert session.live == session.draft
        assert session.dirty is False
        assert session.has_stored_draft is True
        assert _stored_hero(store, Slot.LIVE) == "New"

        reloaded = ContentSession(store, authenticated=True)
        asyncio.run(reloaded.load())
        assert reloaded.dirty is False

    def test_update_before_load_is_dirty(self):
        store = MemorySlotStore()

        async def scenario():
            session = ContentSession(store, authenticated=True)
            session.update(_doc("New"))
            states = [session.dirty]
            await session.flush()
            states.append(session.dirty)
            await session.load()
            states.append(session.dirty)
            return session, states

        session, states = asyncio.run(scenario())
        assert states == [True, True, True]
        assert _stored_hero(store, Slot.DRAFT) == "New"
        assert session.live.text.hero_title == "Villa Luar"
        assert session.draft.text.hero_title == "New"

    def test_update_during_publish_keeps_newer_draft(self):
        store = RecordingSlotStore()

        async def scenario():
            session = ContentSession(store, authenticated=True)
            await session.load()
            session.update(_doc("First"))
            await session.flush()

            publishing = asyncio.create_task(session.publish())
            await asyncio.sleep(0)
            session.update(_doc("Second"))
            ok = await publishing
            await session.flush()
            return session, ok

        session, ok = asyncio.run(scenario())
        assert ok is True
        assert _stored_hero(store, Slot.LIVE) == "First"
        assert _stored_hero(store, Slot.DRAFT) == "Second"
        assert session.live.text.hero_title == "First"
        assert session.draft.text.hero_title == "Second"
        assert session.dirty is True

    def test_publish_without_changes(self):
        store = MemorySlotStore()

        async def scenario():
            session = ContentSession(store, authenticated=True)
            await session.load()
            return await session.publish()

        assert asyncio.run(scenario()) is True
        assert store.raw(Slot.LIVE) is not None

    def test_closed_session_rejects_updates(self):
        session = ContentSession(MemorySlotStore(), authenticated=True)
        asyncio.run(session.load())
        asyncio.run(session.close())
        with pytest.raises(RuntimeError, match="closed"):
            session.update(_doc("Late"))


class TestDiscard:
    def test_discard_restores_live(self):
        store = MemorySlotStore()
        asyncio.run(store.put(Slot.LIVE, _doc("Live")))

        async def scenario():
            session = ContentSession(store, authenticated=True)
            await session.load()
            session.update(_doc("Scratch"))
            ok = await session.discard()
            return session, ok

        session, ok = asyncio.run(scenario())
        assert ok is True
        assert session.draft.text.hero_title == "Live"
        assert session.dirty is False
        assert session.has_stored_draft is False
        assert store.raw(Slot.DRAFT) is None

    def test_discard_with_nothing_stored(self):
        async def scenario():
            session = ContentSession(MemorySlotStore(), authenticated=True)
            await session.load()
            return session, await session.discard()

        session, ok = asyncio.run(scenario())
        assert ok is True
        assert session.draft == initial_content()


class TestExchange:
    def test_export_editor_gets_draft(self):
        store = MemorySlotStore()
        asyncio.run(store.put(Slot.LIVE, _doc("Live")))
        asyncio.run(store.put(Slot.DRAFT, _doc("Draft")))
        session = ContentSession(store, authenticated=True)
        asyncio.run(session.load())
        exported = json.loads(session.export_bytes())
        assert exported["textContent"]["heroTitle"] == "Draft"

    def test_export_public_gets_live(self):
        store = MemorySlotStore()
        asyncio.run(store.put(Slot.LIVE, _doc("Live")))
        asyncio.run(store.put(Slot.DRAFT, _doc("Draft")))
        session = ContentSession(store)
        asyncio.run(session.load())
        assert json.loads(session.export_bytes())["textContent"]["heroTitle"] == "Live"

    def test_export_before_load(self):
        with pytest.raises(RuntimeError):
            ContentSession(MemorySlotStore()).export_bytes()

    def test_import_replaces_draft(self):
        store = MemorySlotStore()
        payload = add_faq(_doc("Imported"), "Wifi?", "Yes.").model_dump_json(by_alias=True)

        async def scenario():
            session = ContentSession(store, authenticated=True)
            await session.load()
            session.import_bytes(payload.encode("utf-8"))
            await session.flush()
            return session

        session = asyncio.run(scenario())
        assert session.draft.text.hero_title == "Imported"
        assert len(session.draft.faqs) == 2
        assert session.dirty is True
        assert _stored_hero(store, Slot.DRAFT) == "Imported"

    def test_invalid_import_leaves_draft(self):
        async def scenario():
            session = ContentSession(MemorySlotStore(), authenticated=True)
            await session.load()
            with pytest.raises(InvalidFormatError):
                session.import_bytes(b'{"faqs": []}')
            return session

        session = asyncio.run(scenario())
        assert session.draft == initial_content()
        assert session.dirty is False


class TestFileBacked:
    def test_draft_survives_new_session(self, tmp_path: Path):
        config = SiteConfig.model_validate({"storage": {"directory": str(tmp_path / "store")}})

        async def edit():
            async with session_from_config(config, authenticated=True) as session:
                session.update(_doc("Persisted"))

        async def reopen():
            async with session_from_config(config, authenticated=True) as session:
                return session.draft.text.hero_title, session.dirty

        asyncio.run(edit())
        assert asyncio.run(reopen()) == ("Persisted", True)

    def test_session_from_config_wires_sources(self, tmp_path: Path):
        config = SiteConfig.model_validate(
            {
                "storage": {"directory": str(tmp_path / "store"), "max_document_bytes": 123},
                "snapshot": {"url": "https://villa.example/villa-content.json"},
                "legacy": {"directory": str(tmp_path / "legacy")},
            }
        )
        session = session_from_config(config, preview=True)
        assert session.slots.max_bytes == 123
        assert isinstance(session.snapshot, HttpSnapshotSource)
        assert session.legacy is not None
        assert session.preview is True

    def test_session_from_config_defaults(self, tmp_path: Path):
        config = SiteConfig.model_validate({"storage": {"directory": str(tmp_path)}})
        session = session_from_config(config)
        assert session.snapshot is None
        assert session.legacy is None

    def test_legacy_absorbed_on_load(self, tmp_path: Path):
        legacy_root = tmp_path / "legacy"
        record = {
            "photos": [{"id": "a", "url": "data:a"}],
            "faqs": [],
            "textContent": {
                "heroTitle": "Legacy",
                "considerationsTitle": "",
                "considerationsText": "",
            },
        }
        asyncio.run(
            FileKeyValueStore(legacy_root / "legacy").set(LEGACY_LIVE_KEY, json.dumps(record))
        )
        config = SiteConfig.model_validate(
            {
                "storage": {"directory": str(tmp_path / "store")},
                "legacy": {"directory": str(legacy_root)},
            }
        )

        async def scenario():
            async with session_from_config(config) as session:
                return session.live

        live = asyncio.run(scenario())
        assert live.text.hero_title == "Legacy"
        assert [p.id for p in live.iter_photos()] == ["a"]
        assert (tmp_path / "store" / "live.json").exists()

    def test_file_snapshot_fallback(self, tmp_path: Path):
        published = tmp_path / "villa-content.json"
        published.write_bytes(_doc("Published").model_dump_json(by_alias=True).encode("utf-8"))
        session = ContentSession(MemorySlotStore(), snapshot=FileSnapshotSource(published))
        asyncio.run(session.load())
        assert session.live.text.hero_title == "Published"
