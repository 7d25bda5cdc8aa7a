"""Tests for convodoc.store — MemoryStore, JsonFileStore and create_store."""

from __future__ import annotations

import json
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from convodoc.config import StoreConfig
from convodoc.exceptions import ConfigError, StoreError
from convodoc.store import JsonFileStore, MemoryStore, create_store
from convodoc.store.base import BaseStore
from convodoc.types import ProcessingStatus, Proposal, RunStatus, UpdateType

if TYPE_CHECKING:
    from pathlib import Path


def _proposal(page: str = "docs/setup.md") -> Proposal:
    return Proposal(update_type=UpdateType.INSERT, page=page, reasoning="because")


class TestMessages:
    async def test_is_base_store(self):
        assert isinstance(MemoryStore(), BaseStore)

    async def test_add_assigns_ids_and_dedups(self, make_message):
        store = MemoryStore()
        assert await store.add_messages([make_message(1), make_message(2)]) == 2
        assert await store.add_messages([make_message(1), make_message(3)]) == 1
        first = await store.get_message(1)
        assert first is not None
        assert first.message_id == "s1-1"
        assert first.processing_status == ProcessingStatus.PENDING

    async def test_same_message_id_in_other_stream_is_not_duplicate(self, make_message):
        store = MemoryStore()
        await store.add_messages([make_message(1, message_id="m")])
        assert await store.add_messages([make_message(1, stream_id="s2", message_id="m")]) == 1

    async def test_pending_stream_ids_exclude_and_only(self, make_message):
        store = MemoryStore()
        await store.add_messages(
            [
                make_message(1, stream_id="a"),
                make_message(1, stream_id="b"),
                make_message(1, stream_id="pipeline-test"),
            ]
        )
        assert await store.pending_stream_ids() == ["a", "b", "pipeline-test"]
        assert await store.pending_stream_ids(exclude="pipeline-test") == ["a", "b"]
        assert await store.pending_stream_ids(exclude="pipeline-test", only="a") == ["a"]
        assert await store.pending_stream_ids(
            exclude="pipeline-test", only="pipeline-test"
        ) == ["pipeline-test"]
        assert await store.pending_stream_ids(only="missing") == []

    async def test_find_pending_bounds(self, make_message, t0):
        store = MemoryStore()
        await store.add_messages([make_message(m) for m in (0, 10, 20, 30)])
        found = await store.find_pending(
            "s1", after=t0, until=t0 + timedelta(minutes=20)
        )
        assert [m.message_id for m in found] == ["s1-10", "s1-20"]

        inclusive = await store.find_pending("s1", after=t0, until=t0, inclusive_start=True)
        assert [m.message_id for m in inclusive] == ["s1-0"]

        limited = await store.find_pending("s1", after=t0 - timedelta(minutes=1), limit=3)
        assert len(limited) == 3

    async def test_completed_messages_are_not_pending(self, make_message, t0):
        store = MemoryStore()
        await store.add_messages([make_message(1), make_message(2)])
        assert await store.mark_completed([1]) == 1
        earliest = await store.earliest_pending("s1")
        assert earliest is not None
        assert earliest.id == 2
        assert await store.count_pending("s1") == 1
        assert (await store.earliest_message("s1")).id == 1  # type: ignore[union-attr]

    async def test_mark_completed_unknown_id_raises(self, make_message):
        store = MemoryStore()
        await store.add_messages([make_message(1)])
        with pytest.raises(StoreError, match="Unknown message ids"):
            await store.mark_completed([1, 99])
        assert await store.count_pending("s1") == 1

    async def test_find_messages_any_status_keeps_latest(self, make_message, t0):
        store = MemoryStore()
        await store.add_messages([make_message(m) for m in range(5)])
        await store.mark_completed([1, 2])
        msgs = await store.find_messages(
            "s1", t0 - timedelta(minutes=1), t0 + timedelta(minutes=4), limit=3
        )
        assert [m.message_id for m in msgs] == ["s1-2", "s1-3", "s1-4"]


class TestWatermarks:
    async def test_create_and_get(self, t0):
        store = MemoryStore()
        wm = await store.create_watermark("s1", t0)
        assert wm.watermark_time == t0
        assert await store.get_watermark("s1") == wm

    async def test_create_twice_raises(self, t0):
        store = MemoryStore()
        await store.create_watermark("s1", t0)
        with pytest.raises(StoreError, match="already exists"):
            await store.create_watermark("s1", t0)

    async def test_advance_is_monotonic(self, t0):
        store = MemoryStore()
        await store.create_watermark("s1", t0)
        later = t0 + timedelta(hours=1)
        wm = await store.advance_watermark("s1", later, processed_at=t0)
        assert wm.watermark_time == later
        assert wm.last_processed_batch == t0
        with pytest.raises(StoreError, match="backwards"):
            await store.advance_watermark("s1", t0)
        assert (await store.get_watermark("s1")).watermark_time == later  # type: ignore[union-attr]

    async def test_advance_without_watermark_raises(self, t0):
        with pytest.raises(StoreError, match="No watermark"):
            await MemoryStore().advance_watermark("s1", t0)


class TestCommitBatch:
    async def test_completes_messages_and_advances(self, make_message, t0):
        store = MemoryStore()
        await store.add_messages([make_message(1), make_message(2)])
        await store.create_watermark("s1", t0)
        await store.commit_batch("s1", [1, 2], t0 + timedelta(minutes=2))
        assert await store.count_pending("s1") == 0
        assert (await store.get_watermark("s1")).watermark_time == t0 + timedelta(minutes=2)  # type: ignore[union-attr]

    async def test_failure_rolls_back_messages(self, make_message, t0):
        store = MemoryStore()
        await store.add_messages([make_message(1)])
        await store.create_watermark("s1", t0 + timedelta(hours=1))
        with pytest.raises(StoreError):
            await store.commit_batch("s1", [1], t0)
        assert await store.count_pending("s1") == 1
        assert (await store.get_watermark("s1")).watermark_time == t0 + timedelta(hours=1)  # type: ignore[union-attr]

    async def test_saves_proposals_with_the_batch(self, make_message, t0):
        store = MemoryStore()
        await store.add_messages([make_message(1)])
        await store.create_watermark("s1", t0)
        saved = await store.commit_batch(
            "s1",
            [1],
            t0 + timedelta(minutes=1),
            batch_id="s1_1",
            proposals_by_thread={"t1": [_proposal(), _proposal("b.md")]},
        )
        assert saved == 2
        stored = await store.list_proposals("s1")
        assert [p.batch_id for p in stored] == ["s1_1", "s1_1"]

    async def test_failure_rolls_back_proposals(self, make_message, t0):
        store = MemoryStore()
        await store.add_messages([make_message(1)])
        await store.create_watermark("s1", t0 + timedelta(hours=1))
        with pytest.raises(StoreError):
            await store.commit_batch(
                "s1", [1], t0, batch_id="s1_1", proposals_by_thread={"t1": [_proposal()]}
            )
        assert await store.list_proposals() == []
        assert await store.save_proposals("b2", "s1", {"t2": [_proposal()]}) == 1
        assert (await store.list_proposals())[0].id == 1

    async def test_json_store_persists_committed_proposals(self, tmp_path: Path, make_message, t0):
        path = tmp_path / "state.json"
        store = JsonFileStore(path)
        await store.add_messages([make_message(1)])
        await store.create_watermark("s1", t0)
        await store.commit_batch(
            "s1",
            [1],
            t0 + timedelta(minutes=1),
            batch_id="s1_1",
            proposals_by_thread={"t1": [_proposal()]},
        )
        reloaded = JsonFileStore(path)
        assert len(await reloaded.list_proposals("s1")) == 1
        assert await reloaded.count_pending("s1") == 0


class TestProposalsAndRuns:
    async def test_save_and_list_proposals(self):
        store = MemoryStore()
        saved = await store.save_proposals(
            "b1", "s1", {"t1": [_proposal(), _proposal("b.md")], "t2": []}
        )
        assert saved == 2
        await store.save_proposals("b2", "s2", {"t3": [_proposal()]})
        assert len(await store.list_proposals()) == 3
        only = await store.list_proposals("s1")
        assert [p.thread_id for p in only] == ["t1", "t1"]
        assert only[0].id != only[1].id

    async def test_run_log_lifecycle(self):
        store = MemoryStore()
        run_id = await store.create_run_log("default", "b1", "default-v1", 3)
        await store.update_run_log(run_id, status=RunStatus.COMPLETED, output_threads=2)
        [run] = await store.list_run_logs()
        assert run.status == RunStatus.COMPLETED
        assert run.output_threads == 2
        assert run.input_messages == 3

    async def test_update_run_log_rejects_unknown_field(self):
        store = MemoryStore()
        run_id = await store.create_run_log("default", "b1", "p", 0)
        with pytest.raises(StoreError, match="Unknown run log fields"):
            await store.update_run_log(run_id, bogus=1)

    async def test_update_missing_run_log_raises(self):
        with pytest.raises(StoreError, match="not found"):
            await MemoryStore().update_run_log(42, status=RunStatus.FAILED)

    async def test_import_watermark(self, t0):
        store = MemoryStore()
        assert await store.get_import_watermark("s1", "a.csv") is None
        await store.set_import_watermark("s1", "a.csv", t0)
        assert await store.get_import_watermark("s1", "a.csv") == t0
        assert await store.get_import_watermark("s2", "a.csv") is None


class TestJsonFileStore:
    async def test_state_survives_reload(self, tmp_path: Path, make_message, t0):
        path = tmp_path / "state.json"
        store = JsonFileStore(path)
        await store.add_messages([make_message(1, content="x"), make_message(2)])
        await store.create_watermark("s1", t0)
        await store.commit_batch("s1", [1], t0 + timedelta(minutes=1), processed_at=t0)
        await store.save_proposals("b1", "s1", {"t1": [_proposal()]})
        run_id = await store.create_run_log("default", "b1", "p", 1)
        await store.update_run_log(run_id, status=RunStatus.COMPLETED, steps=[{"stepName": "f"}])
        await store.set_import_watermark("s1", "a.csv", t0)

        reloaded = JsonFileStore(path)
        assert await reloaded.count_pending("s1") == 1
        msg = await reloaded.get_message(1)
        assert msg is not None
        assert msg.content == "x"
        assert msg.processing_status == ProcessingStatus.COMPLETED
        wm = await reloaded.get_watermark("s1")
        assert wm is not None
        assert wm.watermark_time == t0 + timedelta(minutes=1)
        assert wm.last_processed_batch == t0
        [stored] = await reloaded.list_proposals()
        assert stored.proposal == _proposal()
        [run] = await reloaded.list_run_logs()
        assert run.status == RunStatus.COMPLETED
        assert run.steps == [{"stepName": "f"}]
        assert await reloaded.get_import_watermark("s1", "a.csv") == t0

    async def test_ids_continue_after_reload(self, tmp_path: Path, make_message):
        path = tmp_path / "state.json"
        await JsonFileStore(path).add_messages([make_message(1)])
        reloaded = JsonFileStore(path)
        await reloaded.add_messages([make_message(2)])
        assert (await reloaded.get_message(2)) is not None

    async def test_no_temp_file_left_behind(self, tmp_path: Path, make_message):
        path = tmp_path / "state.json"
        await JsonFileStore(path).add_messages([make_message(1)])
        assert path.exists()
        assert not (tmp_path / "state.json.tmp").exists()
        assert json.loads(path.read_text())["schema_version"] == "1"

    async def test_corrupt_file_raises(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(StoreError, match="Failed to load"):
            JsonFileStore(path)

    async def test_missing_fields_raise(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"messages": [{"id": 1}]}))
        with pytest.raises(StoreError):
            JsonFileStore(path)


class TestCreateStore:
    async def test_memory(self, tmp_path: Path):
        assert type(create_store(StoreConfig(backend="memory"), tmp_path)) is MemoryStore

    async def test_json(self, tmp_path: Path):
        store = create_store(StoreConfig(backend="json", filename="s.json"), tmp_path)
        assert isinstance(store, JsonFileStore)
        assert store.path == tmp_path / "s.json"

    async def test_unknown_backend(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Unknown store backend"):
            create_store(StoreConfig(backend="sqlite"), tmp_path)
