"""In-process store keeping everything in dictionaries."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from convodoc.exceptions import StoreError
from convodoc.store.base import BaseStore
from convodoc.types import (
    ProcessingStatus,
    ProcessingWatermark,
    RunLog,
    RunStatus,
    StoredProposal,
    UnifiedMessage,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from convodoc.types import Proposal

__all__ = ["MemoryStore"]

logger = logging.getLogger(__name__)

_RUN_LOG_FIELDS = frozenset(f.name for f in dataclasses.fields(RunLog)) - {"id"}


def _sort_key(msg: UnifiedMessage) -> tuple[datetime, int]:
    return (msg.timestamp, msg.id)


class MemoryStore(BaseStore):
    """Dictionary-backed store.

    Subclasses that need durability override :meth:`_persist`, which is
    awaited once after every mutating operation.
    """

    def __init__(self) -> None:
        self._messages: dict[int, UnifiedMessage] = {}
        self._message_keys: dict[tuple[str, str], int] = {}
        self._watermarks: dict[str, ProcessingWatermark] = {}
        self._proposals: list[StoredProposal] = []
        self._run_logs: dict[int, RunLog] = {}
        self._import_watermarks: dict[tuple[str, str], datetime] = {}
        self._next_message_id = 1
        self._next_proposal_id = 1
        self._next_run_id = 1
        self._lock = asyncio.Lock()

    async def _persist(self) -> None:
        """Hook called after each write. No-op in memory."""

    # -- messages ---------------------------------------------------------

    async def add_messages(self, messages: Iterable[UnifiedMessage]) -> int:
        added = 0
        async with self._lock:
            for msg in messages:
                key = (msg.stream_id, msg.message_id)
                if key in self._message_keys:
                    logger.debug("Skipping duplicate message %s/%s", *key)
                    continue
                stored = dataclasses.replace(msg, id=self._next_message_id)
                self._messages[stored.id] = stored
                self._message_keys[key] = stored.id
                self._next_message_id += 1
                added += 1
            if added:
                await self._persist()
        logger.debug("Added %d messages", added)
        return added

    async def get_message(self, message_id: int) -> UnifiedMessage | None:
        return self._messages.get(message_id)

    def _stream_messages(self, stream_id: str, *, pending_only: bool) -> list[UnifiedMessage]:
        msgs = [
            m
            for m in self._messages.values()
            if m.stream_id == stream_id
            and (not pending_only or m.processing_status == ProcessingStatus.PENDING)
        ]
        msgs.sort(key=_sort_key)
        return msgs

    async def pending_stream_ids(
        self,
        exclude: str | None = None,
        only: str | None = None,
    ) -> list[str]:
        streams = {
            m.stream_id
            for m in self._messages.values()
            if m.processing_status == ProcessingStatus.PENDING
        }
        if only is not None:
            streams &= {only}
        if exclude is not None and exclude != only:
            streams.discard(exclude)
        return sorted(streams)

    async def earliest_pending(
        self,
        stream_id: str,
        after: datetime | None = None,
    ) -> UnifiedMessage | None:
        for msg in self._stream_messages(stream_id, pending_only=True):
            if after is None or msg.timestamp > after:
                return msg
        return None

    async def earliest_message(self, stream_id: str) -> UnifiedMessage | None:
        msgs = self._stream_messages(stream_id, pending_only=False)
        return msgs[0] if msgs else None

    async def find_pending(
        self,
        stream_id: str,
        after: datetime,
        until: datetime | None = None,
        limit: int | None = None,
        inclusive_start: bool = False,
    ) -> list[UnifiedMessage]:
        result = []
        for msg in self._stream_messages(stream_id, pending_only=True):
            if msg.timestamp < after or (msg.timestamp == after and not inclusive_start):
                continue
            if until is not None and msg.timestamp > until:
                break
            result.append(msg)
            if limit is not None and len(result) >= limit:
                break
        return result

    async def count_pending(
        self,
        stream_id: str,
        after: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        return sum(
            1
            for m in self._stream_messages(stream_id, pending_only=True)
            if (after is None or m.timestamp > after) and (until is None or m.timestamp <= until)
        )

    async def find_messages(
        self,
        stream_id: str,
        start: datetime,
        end: datetime,
        limit: int | None = None,
    ) -> list[UnifiedMessage]:
        msgs = [
            m
            for m in self._stream_messages(stream_id, pending_only=False)
            if start < m.timestamp <= end
        ]
        if limit is not None and len(msgs) > limit:
            # keep the messages closest to ``end``
            msgs = msgs[-limit:]
        return msgs

    def _complete(self, message_ids: Iterable[int]) -> int:
        ids = list(message_ids)
        missing = [mid for mid in ids if mid not in self._messages]
        if missing:
            raise StoreError(f"Unknown message ids: {missing}")
        changed = 0
        for mid in ids:
            msg = self._messages[mid]
            if msg.processing_status != ProcessingStatus.COMPLETED:
                self._messages[mid] = dataclasses.replace(
                    msg, processing_status=ProcessingStatus.COMPLETED
                )
                changed += 1
        return changed

    async def mark_completed(self, message_ids: Iterable[int]) -> int:
        async with self._lock:
            changed = self._complete(list(message_ids))
            await self._persist()
        return changed

    # -- watermarks -------------------------------------------------------

    async def get_watermark(self, stream_id: str) -> ProcessingWatermark | None:
        return self._watermarks.get(stream_id)

    async def create_watermark(
        self,
        stream_id: str,
        watermark_time: datetime,
    ) -> ProcessingWatermark:
        async with self._lock:
            if stream_id in self._watermarks:
                raise StoreError(f"Watermark already exists for stream {stream_id!r}")
            wm = ProcessingWatermark(stream_id=stream_id, watermark_time=watermark_time)
            self._watermarks[stream_id] = wm
            await self._persist()
        logger.info("Initialised watermark for %s at %s", stream_id, watermark_time.isoformat())
        return wm

    def _advance(
        self,
        stream_id: str,
        watermark_time: datetime,
        processed_at: datetime | None,
    ) -> ProcessingWatermark:
        current = self._watermarks.get(stream_id)
        if current is None:
            raise StoreError(f"No watermark for stream {stream_id!r}")
        if watermark_time < current.watermark_time:
            raise StoreError(
                f"Refusing to move watermark for {stream_id!r} backwards "
                f"({current.watermark_time.isoformat()} -> {watermark_time.isoformat()})"
            )
        wm = ProcessingWatermark(
            stream_id=stream_id,
            watermark_time=watermark_time,
            last_processed_batch=processed_at or datetime.now(UTC),
        )
        self._watermarks[stream_id] = wm
        return wm

    async def advance_watermark(
        self,
        stream_id: str,
        watermark_time: datetime,
        processed_at: datetime | None = None,
    ) -> ProcessingWatermark:
        async with self._lock:
            wm = self._advance(stream_id, watermark_time, processed_at)
            await self._persist()
        return wm

    async def list_watermarks(self) -> list[ProcessingWatermark]:
        return [self._watermarks[k] for k in sorted(self._watermarks)]

    async def commit_batch(
        self,
        stream_id: str,
        message_ids: Sequence[int],
        watermark_time: datetime,
        processed_at: datetime | None = None,
        *,
        batch_id: str = "",
        proposals_by_thread: dict[str, list[Proposal]] | None = None,
    ) -> int:
        async with self._lock:
            snapshot_msgs = dict(self._messages)
            snapshot_wm = dict(self._watermarks)
            snapshot_proposals = list(self._proposals)
            snapshot_next_proposal = self._next_proposal_id
            try:
                saved = self._append_proposals(batch_id, stream_id, proposals_by_thread or {})
                self._complete(message_ids)
                self._advance(stream_id, watermark_time, processed_at)
                await self._persist()
            except StoreError:
                self._messages = snapshot_msgs
                self._watermarks = snapshot_wm
                self._proposals = snapshot_proposals
                self._next_proposal_id = snapshot_next_proposal
                raise
        logger.debug(
            "Committed %d messages and %d proposals for %s, watermark %s",
            len(message_ids),
            saved,
            stream_id,
            watermark_time.isoformat(),
        )
        return saved

    # -- proposals --------------------------------------------------------

    def _append_proposals(
        self,
        batch_id: str,
        stream_id: str,
        proposals_by_thread: dict[str, list[Proposal]],
    ) -> int:
        now = datetime.now(UTC)
        saved = 0
        for thread_id, proposals in proposals_by_thread.items():
            for proposal in proposals:
                self._proposals.append(
                    StoredProposal(
                        id=self._next_proposal_id,
                        batch_id=batch_id,
                        stream_id=stream_id,
                        thread_id=thread_id,
                        proposal=proposal,
                        created_at=now,
                    )
                )
                self._next_proposal_id += 1
                saved += 1
        return saved

    async def save_proposals(
        self,
        batch_id: str,
        stream_id: str,
        proposals_by_thread: dict[str, list[Proposal]],
    ) -> int:
        async with self._lock:
            saved = self._append_proposals(batch_id, stream_id, proposals_by_thread)
            if saved:
                await self._persist()
        return saved

    async def list_proposals(self, stream_id: str | None = None) -> list[StoredProposal]:
        return [p for p in self._proposals if stream_id is None or p.stream_id == stream_id]

    # -- run logs ---------------------------------------------------------

    async def create_run_log(
        self,
        instance_id: str,
        batch_id: str,
        pipeline_id: str,
        input_messages: int,
    ) -> int:
        async with self._lock:
            run = RunLog(
                id=self._next_run_id,
                instance_id=instance_id,
                batch_id=batch_id,
                pipeline_id=pipeline_id,
                status=RunStatus.RUNNING,
                input_messages=input_messages,
                created_at=datetime.now(UTC),
            )
            self._run_logs[run.id] = run
            self._next_run_id += 1
            await self._persist()
        return run.id

    async def update_run_log(self, run_id: int, **fields: Any) -> None:
        unknown = set(fields) - _RUN_LOG_FIELDS
        if unknown:
            raise StoreError(f"Unknown run log fields: {sorted(unknown)}")
        async with self._lock:
            run = self._run_logs.get(run_id)
            if run is None:
                raise StoreError(f"Run log {run_id} not found")
            for name, value in fields.items():
                setattr(run, name, value)
            await self._persist()

    async def list_run_logs(self, limit: int = 20) -> list[RunLog]:
        runs = sorted(self._run_logs.values(), key=lambda r: r.id, reverse=True)
        return runs[:limit]

    # -- import watermarks ------------------------------------------------

    async def get_import_watermark(self, stream_id: str, resource_id: str) -> datetime | None:
        return self._import_watermarks.get((stream_id, resource_id))

    async def set_import_watermark(
        self,
        stream_id: str,
        resource_id: str,
        last_imported: datetime,
    ) -> None:
        async with self._lock:
            self._import_watermarks[(stream_id, resource_id)] = last_imported
            await self._persist()
