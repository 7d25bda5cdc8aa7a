"""Abstract base class for the persistence collaborator."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from convodoc.types import (
        ProcessingWatermark,
        Proposal,
        RunLog,
        StoredProposal,
        UnifiedMessage,
    )

__all__ = ["BaseStore"]

logger = logging.getLogger(__name__)


class BaseStore(ABC):
    """Base class for message, watermark, proposal and run-log storage.

    All methods are coroutines. Writes must be visible to the next read in
    the same process. Watermarks and message status are mutated only by
    the batch scheduler; pipeline steps never write to the store directly
    apart from run logs.
    """

    # -- messages ---------------------------------------------------------

    @abstractmethod
    async def add_messages(self, messages: Iterable[UnifiedMessage]) -> int:
        """Insert new messages, skipping any ``(stream_id, message_id)`` already stored.

        Returns:
            Number of messages actually inserted.

        Raises:
            StoreError: If storage fails.
        """

    @abstractmethod
    async def get_message(self, message_id: int) -> UnifiedMessage | None:
        """Get a message by its store-assigned id."""

    @abstractmethod
    async def pending_stream_ids(
        self,
        exclude: str | None = None,
        only: str | None = None,
    ) -> list[str]:
        """Return distinct stream ids with at least one PENDING message, sorted.

        Args:
            exclude: Stream id to leave out.
            only: If given, return at most this single stream id.
        """

    @abstractmethod
    async def earliest_pending(
        self,
        stream_id: str,
        after: datetime | None = None,
    ) -> UnifiedMessage | None:
        """Return the oldest PENDING message of a stream, optionally strictly after ``after``."""

    @abstractmethod
    async def earliest_message(self, stream_id: str) -> UnifiedMessage | None:
        """Return the oldest message of a stream regardless of status."""

    @abstractmethod
    async def find_pending(
        self,
        stream_id: str,
        after: datetime,
        until: datetime | None = None,
        limit: int | None = None,
        inclusive_start: bool = False,
    ) -> list[UnifiedMessage]:
        """Return PENDING messages in ``(after, until]`` ordered by timestamp then id.

        Args:
            stream_id: Stream to query.
            after: Lower bound, exclusive unless ``inclusive_start``.
            until: Inclusive upper bound, or ``None`` for no bound.
            limit: Maximum number of messages returned.
            inclusive_start: Treat ``after`` as inclusive.
        """

    @abstractmethod
    async def count_pending(
        self,
        stream_id: str,
        after: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        """Count PENDING messages of a stream in ``(after, until]``."""

    @abstractmethod
    async def find_messages(
        self,
        stream_id: str,
        start: datetime,
        end: datetime,
        limit: int | None = None,
    ) -> list[UnifiedMessage]:
        """Return messages of any status in ``(start, end]`` ordered by timestamp."""

    @abstractmethod
    async def mark_completed(self, message_ids: Iterable[int]) -> int:
        """Mark messages COMPLETED. Returns how many changed status."""

    # -- watermarks -------------------------------------------------------

    @abstractmethod
    async def get_watermark(self, stream_id: str) -> ProcessingWatermark | None:
        """Return the stream's watermark, or ``None`` if never initialised."""

    @abstractmethod
    async def create_watermark(
        self,
        stream_id: str,
        watermark_time: datetime,
    ) -> ProcessingWatermark:
        """Create a watermark for a stream that has none.

        Raises:
            StoreError: If a watermark already exists.
        """

    @abstractmethod
    async def advance_watermark(
        self,
        stream_id: str,
        watermark_time: datetime,
        processed_at: datetime | None = None,
    ) -> ProcessingWatermark:
        """Move a stream's watermark forward.

        Raises:
            StoreError: If the watermark is missing or ``watermark_time``
                is earlier than the current value.
        """

    @abstractmethod
    async def list_watermarks(self) -> list[ProcessingWatermark]:
        """Return all watermarks sorted by stream id."""

    @abstractmethod
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
        """Complete a batch: store its proposals, mark its messages COMPLETED
        and advance the watermark.

        Implementations make all three visible together or not at all.
        Returns the number of proposals saved.

        Raises:
            StoreError: If any write fails.
        """

    # -- proposals --------------------------------------------------------

    @abstractmethod
    async def save_proposals(
        self,
        batch_id: str,
        stream_id: str,
        proposals_by_thread: dict[str, list[Proposal]],
    ) -> int:
        """Persist a batch's proposals. Returns the number saved."""

    @abstractmethod
    async def list_proposals(self, stream_id: str | None = None) -> list[StoredProposal]:
        """Return stored proposals, oldest first."""

    # -- run logs ---------------------------------------------------------

    @abstractmethod
    async def create_run_log(
        self,
        instance_id: str,
        batch_id: str,
        pipeline_id: str,
        input_messages: int,
    ) -> int:
        """Create a run log in ``running`` status. Returns its id."""

    @abstractmethod
    async def update_run_log(self, run_id: int, **fields: Any) -> None:
        """Overwrite fields of an existing run log.

        Raises:
            StoreError: If the run log does not exist or a field is unknown.
        """

    @abstractmethod
    async def list_run_logs(self, limit: int = 20) -> list[RunLog]:
        """Return the most recent run logs, newest first."""

    # -- import watermarks ------------------------------------------------

    @abstractmethod
    async def get_import_watermark(self, stream_id: str, resource_id: str) -> datetime | None:
        """Return the newest imported timestamp for a source resource."""

    @abstractmethod
    async def set_import_watermark(
        self,
        stream_id: str,
        resource_id: str,
        last_imported: datetime,
    ) -> None:
        """Record the newest imported timestamp for a source resource."""

    async def close(self) -> None:  # noqa: B027
        """Release resources. Default is a no-op."""
