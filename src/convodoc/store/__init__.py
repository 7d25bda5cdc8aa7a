"""Persistence for messages, watermarks, proposals and run logs."""

from __future__ import annotations

from typing import TYPE_CHECKING

from convodoc.exceptions import ConfigError
from convodoc.store.base import BaseStore
from convodoc.store.json_file import JsonFileStore
from convodoc.store.memory import MemoryStore

if TYPE_CHECKING:
    from pathlib import Path

    from convodoc.config import StoreConfig

__all__ = ["BaseStore", "JsonFileStore", "MemoryStore", "create_store"]


def create_store(config: StoreConfig, project_dir: Path) -> BaseStore:
    """Build the store selected by ``[store] backend``."""
    if config.backend == "memory":
        return MemoryStore()
    if config.backend == "json":
        return JsonFileStore(project_dir / config.filename)
    raise ConfigError(f"Unknown store backend: {config.backend!r}")
