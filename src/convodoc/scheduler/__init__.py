"""Incremental per-stream batch scheduling."""

from convodoc.scheduler.processor import BatchProcessor, make_batch_id
from convodoc.scheduler.window import WATERMARK_EPSILON, BatchWindowSelector

__all__ = ["WATERMARK_EPSILON", "BatchProcessor", "BatchWindowSelector", "make_batch_id"]
