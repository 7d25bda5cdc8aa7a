"""CSV message import.

Each row becomes a PENDING :class:`~convodoc.types.UnifiedMessage`. The
store keeps an import watermark per ``(stream_id, file name)``; rows at
or before it are skipped on re-import, and rows the store already holds
are de-duplicated on ``message_id``.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from convodoc.exceptions import IngestError, StoreError
from convodoc.types import UnifiedMessage

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from convodoc.store.base import BaseStore

__all__ = ["ColumnMapping", "CsvFileIngester", "IngestReport", "RowError", "parse_timestamp"]

logger = logging.getLogger(__name__)

MAX_FILE_SIZE: int = 50 * 1024 * 1024  # 50 MB


@dataclass(frozen=True)
class ColumnMapping:
    """CSV header names for each message field. Only ``content`` is required."""

    content: str = "content"
    timestamp: str = "timestamp"
    author: str = "author"
    channel: str = ""
    message_id: str = "message_id"
    reply_to: str = ""


@dataclass(frozen=True)
class RowError:
    row: int
    error: str


@dataclass
class IngestReport:
    file_name: str
    stream_id: str
    total_rows: int = 0
    imported: int = 0
    duplicates: int = 0
    skipped_before_watermark: int = 0
    errors: list[RowError] = field(default_factory=list)

    @property
    def failed_rows(self) -> int:
        return len(self.errors)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 string or a Unix epoch (seconds or milliseconds).

    Naive values are taken as UTC.

    Raises:
        ValueError: If the value is not a recognised timestamp.
    """
    value = value.strip()
    try:
        number = float(value)
    except ValueError:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    if number > 1e11:
        number /= 1000
    return datetime.fromtimestamp(number, tz=UTC)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class CsvFileIngester:
    """Import CSV files into a stream of the message store.

    Args:
        store: Destination store.
        mapping: Column names to read.
        clock: Timestamp for rows without one.
    """

    def __init__(
        self,
        store: BaseStore,
        mapping: ColumnMapping | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._mapping = mapping or ColumnMapping()
        self._clock = clock

    def _parse_row(
        self, row: dict[str, str], row_number: int, file_name: str, stream_id: str
    ) -> UnifiedMessage:
        m = self._mapping
        content = (row.get(m.content) or "").strip()
        if not content:
            raise ValueError(f"Missing content field: {m.content}")

        raw_ts = row.get(m.timestamp) if m.timestamp else None
        if raw_ts and raw_ts.strip():
            try:
                timestamp = parse_timestamp(raw_ts)
            except ValueError as e:
                raise ValueError(f"Invalid timestamp: {raw_ts}") from e
        else:
            timestamp = self._clock()

        def column(name: str, default: str = "") -> str:
            if not name:
                return default
            return (row.get(name) or "").strip() or default

        return UnifiedMessage(
            stream_id=stream_id,
            message_id=column(m.message_id, f"{file_name}-row-{row_number}"),
            timestamp=timestamp,
            author=column(m.author, "unknown"),
            content=content,
            channel=column(m.channel),
            reply_to_id=column(m.reply_to),
        )

    def _read_rows(self, path: Path) -> list[dict[str, str]]:
        if not path.is_file():
            raise IngestError(f"CSV file not found: {path}")
        if path.stat().st_size > MAX_FILE_SIZE:
            raise IngestError(f"CSV file too large ({path.stat().st_size} bytes): {path.name}")
        try:
            with path.open(newline="", encoding="utf-8-sig") as fh:
                reader = csv.DictReader(fh, skipinitialspace=True)
                if reader.fieldnames is None:
                    return []
                if self._mapping.content not in reader.fieldnames:
                    raise IngestError(
                        f"{path.name} has no '{self._mapping.content}' column "
                        f"(columns: {', '.join(reader.fieldnames)})"
                    )
                return [
                    r for r in reader if any(isinstance(v, str) and v.strip() for v in r.values())
                ]
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise IngestError(f"Cannot read CSV file {path.name}: {e}") from e

    async def ingest_file(self, path: Path, stream_id: str) -> IngestReport:
        """Import one CSV file into ``stream_id``.

        Invalid rows are reported and skipped; the rest are imported.

        Raises:
            IngestError: If the file cannot be read or stored.
        """
        rows = self._read_rows(path)
        report = IngestReport(file_name=path.name, stream_id=stream_id, total_rows=len(rows))

        messages: list[UnifiedMessage] = []
        for i, row in enumerate(rows, start=1):
            try:
                messages.append(self._parse_row(row, i, path.name, stream_id))
            except ValueError as e:
                report.errors.append(RowError(row=i, error=str(e)))

        try:
            last_imported = await self._store.get_import_watermark(stream_id, path.name)
            if last_imported is not None:
                fresh = [m for m in messages if m.timestamp > last_imported]
                report.skipped_before_watermark = len(messages) - len(fresh)
                messages = fresh

            inserted = await self._store.add_messages(messages)
            report.imported = inserted
            report.duplicates = len(messages) - inserted
            if messages:
                await self._store.set_import_watermark(
                    stream_id, path.name, max(m.timestamp for m in messages)
                )
        except StoreError as e:
            raise IngestError(f"Failed to store messages from {path.name}: {e}") from e

        logger.info(
            "Imported %s into %s: %d new, %d duplicate, %d before watermark, %d invalid",
            path.name,
            stream_id,
            report.imported,
            report.duplicates,
            report.skipped_before_watermark,
            report.failed_rows,
        )
        return report

    async def ingest_directory(self, directory: Path, stream_id: str) -> list[IngestReport]:
        """Import every ``*.csv`` in ``directory``; a failing file is logged and skipped."""
        reports: list[IngestReport] = []
        for path in sorted(directory.glob("*.csv")):
            try:
                reports.append(await self.ingest_file(path, stream_id))
            except IngestError as e:
                logger.error("Skipping %s: %s", path.name, e)
        return reports
