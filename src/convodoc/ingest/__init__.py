"""Message import from external sources."""

from convodoc.ingest.csv_file import ColumnMapping, CsvFileIngester, IngestReport, RowError

__all__ = ["ColumnMapping", "CsvFileIngester", "IngestReport", "RowError"]
