"""Stream batch processor.

Walks every stream with PENDING messages, runs each window through the
pipeline orchestrator and commits the batch (messages COMPLETED, watermark
advanced) only when the run reports success. A failed run leaves the
stream untouched so the same messages are retried on the next call.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from convodoc.exceptions import CommitError, ConvodocError, StoreError
from convodoc.pipeline.context import create_pipeline_context
from convodoc.scheduler.window import BatchWindowSelector, utc_now

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from convodoc.config import DomainConfig, SchedulerConfig
    from convodoc.llm.base import BaseLLMHandler
    from convodoc.pipeline.context import PipelineContext
    from convodoc.pipeline.orchestrator import PipelineOrchestrator
    from convodoc.prompts.registry import PromptRegistry
    from convodoc.rag.base import BaseRagService
    from convodoc.store.base import BaseStore
    from convodoc.types import BatchWindow

__all__ = ["BatchProcessor", "make_batch_id"]

logger = logging.getLogger(__name__)


def make_batch_id(stream_id: str, batch_start: datetime) -> str:
    return f"{stream_id[:10]}_{int(batch_start.timestamp() * 1000)}"


class BatchProcessor:
    """Incremental per-stream scheduler.

    At most one :meth:`process_batch` call runs per instance; a concurrent
    call returns 0 immediately without touching the store.
    """

    def __init__(
        self,
        store: BaseStore,
        orchestrator: PipelineOrchestrator,
        config: SchedulerConfig,
        domain: DomainConfig,
        *,
        prompts: PromptRegistry | None = None,
        llm_handler: BaseLLMHandler | None = None,
        rag_service: BaseRagService | None = None,
        instance_id: str = "default",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._config = config
        self._domain = domain
        self._prompts = prompts
        self._llm_handler = llm_handler
        self._rag_service = rag_service
        self._instance_id = instance_id
        self._clock = clock
        self._selector = BatchWindowSelector(store, clock)
        self._running = False

    @property
    def is_processing(self) -> bool:
        return self._running

    async def process_batch(self, stream_id_filter: str | None = None) -> int:
        """Process every pending window of every candidate stream.

        Args:
            stream_id_filter: Restrict processing to this stream. The test
                stream is skipped unless named here.

        Returns:
            Number of messages committed across all streams.
        """
        if self._running:
            logger.warning("Batch processing already running, skipping")
            return 0
        self._running = True
        try:
            return await self._process_all(stream_id_filter)
        finally:
            self._running = False
            logger.debug("Processing flag cleared")

    async def _process_all(self, stream_id_filter: str | None) -> int:
        logger.info(
            "Starting batch processing%s",
            f" (filtered to stream {stream_id_filter})" if stream_id_filter else "",
        )
        try:
            streams = await self._store.pending_stream_ids(
                exclude=self._config.test_stream_id, only=stream_id_filter
            )
        except ConvodocError as e:
            logger.error("Failed to list streams with pending messages: %s", e)
            return 0

        if not streams:
            logger.debug("No pending messages found across any streams")
            return 0
        logger.info("Found %d streams with pending messages", len(streams))

        total = 0
        for stream_id in streams:
            try:
                total += await self._process_stream(stream_id)
            except ConvodocError as e:
                logger.error("Stream %s aborted: %s", stream_id, e)
            except Exception:
                logger.exception("Unexpected error while processing stream %s", stream_id)

        logger.info("Batch processing complete: %d messages processed", total)
        return total

    async def _process_stream(self, stream_id: str) -> int:
        watermark = await self._selector.ensure_watermark(stream_id)
        if watermark is None:
            return 0

        processed = 0
        while True:
            window = await self._selector.select_next_window(
                stream_id,
                watermark,
                self._config.window_hours,
                self._config.max_batch_size,
            )
            if window.is_empty:
                break

            batch_id = make_batch_id(stream_id, window.batch_start)
            logger.info(
                "Stream %s: batch %s with %d messages (%s -> %s)",
                stream_id,
                batch_id,
                len(window.messages),
                window.batch_start.isoformat(),
                window.batch_end.isoformat(),
            )
            context = await self._build_context(window, batch_id)
            result = await self._orchestrator.execute(context)
            if not result.success:
                logger.warning(
                    "Pipeline failed for batch %s (%d errors); watermark not advanced, "
                    "messages will be retried",
                    batch_id,
                    len(result.errors),
                )
                break

            try:
                await self._commit(window, batch_id, context)
            except CommitError as e:
                logger.error("Commit failed for batch %s: %s", batch_id, e)
                break

            processed += len(window.messages)
            logger.info(
                "Stream %s: batch %s committed (%d threads, %d proposals), watermark %s",
                stream_id,
                batch_id,
                result.threads_created,
                result.proposals_generated,
                window.batch_end.isoformat(),
            )
            refreshed = await self._store.get_watermark(stream_id)
            if refreshed is None:
                raise StoreError(f"Watermark for stream {stream_id!r} disappeared")
            watermark = refreshed

        logger.info("Stream %s processing complete: %d messages", stream_id, processed)
        return processed

    async def _build_context(self, window: BatchWindow, batch_id: str) -> PipelineContext:
        context_start = window.batch_start - timedelta(hours=self._config.context_window_hours)
        context_messages = await self._store.find_messages(
            window.stream_id,
            context_start,
            window.batch_start,
            limit=self._config.context_limit,
        )
        logger.debug(
            "Stream %s: fetched %d context messages", window.stream_id, len(context_messages)
        )
        return create_pipeline_context(
            instance_id=self._instance_id,
            batch_id=batch_id,
            stream_id=window.stream_id,
            messages=window.messages,
            context_messages=context_messages,
            domain=self._domain,
            prompts=self._prompts,
            llm_handler=self._llm_handler,
            rag_service=self._rag_service,
            store=self._store,
        )

    async def _commit(self, window: BatchWindow, batch_id: str, context: PipelineContext) -> None:
        """Store proposals, complete messages and advance the watermark in one commit."""
        try:
            saved = await self._store.commit_batch(
                window.stream_id,
                [m.id for m in window.messages],
                window.batch_end,
                processed_at=self._clock(),
                batch_id=batch_id,
                proposals_by_thread=context.proposals,
            )
        except StoreError as e:
            raise CommitError(f"Failed to commit batch {batch_id}: {e}") from e
        logger.debug("Saved %d proposals for batch %s", saved, batch_id)
