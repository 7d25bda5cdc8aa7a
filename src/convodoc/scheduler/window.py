"""Batch window selection.

A stream's watermark is the exclusive lower bound of its next batch. The
next window starts at the watermark and ends ``window_hours`` after the
oldest PENDING message past it, never later than now. Windows with more
than ``max_batch_size`` messages are cut short at the last included
message's timestamp.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from convodoc.types import BatchWindow

if TYPE_CHECKING:
    from collections.abc import Callable

    from convodoc.store.base import BaseStore
    from convodoc.types import ProcessingWatermark

__all__ = ["WATERMARK_EPSILON", "BatchWindowSelector", "utc_now"]

logger = logging.getLogger(__name__)

# Smallest step of a datetime; places a fresh watermark just before the first message
WATERMARK_EPSILON = timedelta(microseconds=1)


def utc_now() -> datetime:
    return datetime.now(UTC)


class BatchWindowSelector:
    """Compute the next batch for a stream from the message store.

    Args:
        store: Message and watermark store.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(self, store: BaseStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def ensure_watermark(self, stream_id: str) -> ProcessingWatermark | None:
        """Return the stream's watermark, creating it on first sight.

        A new watermark sits just before the oldest PENDING message so the
        first window includes it. Returns ``None`` when the stream has no
        watermark and nothing pending.
        """
        watermark = await self._store.get_watermark(stream_id)
        if watermark is not None:
            return watermark
        first = await self._store.earliest_pending(stream_id)
        if first is None:
            return None
        return await self._store.create_watermark(stream_id, first.timestamp - WATERMARK_EPSILON)

    async def select_next_window(
        self,
        stream_id: str,
        watermark: ProcessingWatermark,
        window_hours: float,
        max_batch_size: int,
    ) -> BatchWindow:
        """Return the next batch of PENDING messages after ``watermark``.

        Every returned message satisfies ``batch_start < timestamp <= batch_end``
        and there are at most ``max_batch_size`` of them. An empty window
        means there is nothing to process yet.
        """
        start = watermark.watermark_time

        # Messages tied with a truncated batch's last timestamp are left
        # exactly at the watermark; pick those up first.
        stranded = await self._store.find_pending(
            stream_id, after=start, until=start, limit=max_batch_size + 1, inclusive_start=True
        )
        if stranded:
            logger.debug("Stream %s: %d messages at watermark", stream_id, len(stranded))
            return BatchWindow(
                stream_id=stream_id,
                batch_start=start - WATERMARK_EPSILON,
                batch_end=start,
                messages=tuple(stranded[:max_batch_size]),
                truncated=len(stranded) > max_batch_size,
            )

        empty = BatchWindow(stream_id=stream_id, batch_start=start, batch_end=start)
        anchor = await self._store.earliest_pending(stream_id, after=start)
        if anchor is None:
            late = await self._store.count_pending(stream_id, until=start)
            if late:
                logger.warning(
                    "Stream %s has %d PENDING messages at or before its watermark %s; "
                    "they will not be processed",
                    stream_id,
                    late,
                    start.isoformat(),
                )
            return empty

        end = min(anchor.timestamp + timedelta(hours=window_hours), self._clock())
        if end <= start or anchor.timestamp > end:
            return empty

        messages = await self._store.find_pending(
            stream_id, after=start, until=end, limit=max_batch_size + 1
        )
        truncated = len(messages) > max_batch_size
        if truncated:
            messages = messages[:max_batch_size]
            end = messages[-1].timestamp
            logger.info(
                "Stream %s: window truncated to %d messages, ends at %s",
                stream_id,
                max_batch_size,
                end.isoformat(),
            )

        return BatchWindow(
            stream_id=stream_id,
            batch_start=start,
            batch_end=end,
            messages=tuple(messages),
            truncated=truncated,
        )
