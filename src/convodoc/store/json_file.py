"""JSON file store.

Keeps the full state in memory and rewrites ``state.json`` after every
mutation. The file is replaced atomically, so a batch commit is either
fully on disk or not at all.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime
from typing import TYPE_CHECKING, Any

from convodoc.exceptions import StoreError
from convodoc.store.memory import MemoryStore
from convodoc.types import (
    ProcessingStatus,
    ProcessingWatermark,
    Proposal,
    RunLog,
    RunStatus,
    StoredProposal,
    UnifiedMessage,
    UpdateType,
)

if TYPE_CHECKING:
    from pathlib import Path

__all__ = ["JsonFileStore"]

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _message_to_dict(msg: UnifiedMessage) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": msg.id,
        "stream_id": msg.stream_id,
        "message_id": msg.message_id,
        "timestamp": msg.timestamp.isoformat(),
        "author": msg.author,
        "content": msg.content,
        "status": str(msg.processing_status),
    }
    if msg.channel:
        d["channel"] = msg.channel
    if msg.reply_to_id:
        d["reply_to_id"] = msg.reply_to_id
    return d


def _message_from_dict(data: dict[str, Any]) -> UnifiedMessage:
    required = ("id", "stream_id", "message_id", "timestamp")
    missing = [k for k in required if k not in data]
    if missing:
        raise StoreError(f"Message entry missing required fields: {missing}")
    return UnifiedMessage(
        id=int(data["id"]),
        stream_id=str(data["stream_id"]),
        message_id=str(data["message_id"]),
        timestamp=datetime.fromisoformat(data["timestamp"]),
        author=str(data.get("author", "")),
        content=str(data.get("content", "")),
        channel=str(data.get("channel", "")),
        reply_to_id=str(data.get("reply_to_id", "")),
        processing_status=ProcessingStatus(data.get("status", ProcessingStatus.PENDING)),
    )


def _proposal_to_dict(stored: StoredProposal) -> dict[str, Any]:
    p = stored.proposal
    return {
        "id": stored.id,
        "batch_id": stored.batch_id,
        "stream_id": stored.stream_id,
        "thread_id": stored.thread_id,
        "created_at": stored.created_at.isoformat(),
        "update_type": str(p.update_type),
        "page": p.page,
        "section": p.section,
        "suggested_text": p.suggested_text,
        "reasoning": p.reasoning,
        "source_messages": list(p.source_messages),
        "warnings": list(p.warnings),
    }


def _proposal_from_dict(data: dict[str, Any]) -> StoredProposal:
    return StoredProposal(
        id=int(data["id"]),
        batch_id=str(data["batch_id"]),
        stream_id=str(data["stream_id"]),
        thread_id=str(data["thread_id"]),
        created_at=datetime.fromisoformat(data["created_at"]),
        proposal=Proposal(
            update_type=UpdateType(data["update_type"]),
            page=str(data.get("page", "")),
            section=str(data.get("section", "")),
            suggested_text=data.get("suggested_text"),
            reasoning=str(data.get("reasoning", "")),
            source_messages=tuple(int(i) for i in data.get("source_messages", [])),
            warnings=tuple(str(w) for w in data.get("warnings", [])),
        ),
    )


def _run_to_dict(run: RunLog) -> dict[str, Any]:
    return {
        "id": run.id,
        "instance_id": run.instance_id,
        "batch_id": run.batch_id,
        "pipeline_id": run.pipeline_id,
        "status": str(run.status),
        "input_messages": run.input_messages,
        "steps": run.steps,
        "output_threads": run.output_threads,
        "output_proposals": run.output_proposals,
        "total_duration_ms": run.total_duration_ms,
        "llm_calls": run.llm_calls,
        "llm_tokens_used": run.llm_tokens_used,
        "error_message": run.error_message,
        "created_at": _iso(run.created_at),
        "completed_at": _iso(run.completed_at),
    }


def _run_from_dict(data: dict[str, Any]) -> RunLog:
    return RunLog(
        id=int(data["id"]),
        instance_id=str(data.get("instance_id", "")),
        batch_id=str(data.get("batch_id", "")),
        pipeline_id=str(data.get("pipeline_id", "")),
        status=RunStatus(data.get("status", RunStatus.RUNNING)),
        input_messages=int(data.get("input_messages", 0)),
        steps=list(data.get("steps", [])),
        output_threads=int(data.get("output_threads", 0)),
        output_proposals=int(data.get("output_proposals", 0)),
        total_duration_ms=int(data.get("total_duration_ms", 0)),
        llm_calls=int(data.get("llm_calls", 0)),
        llm_tokens_used=int(data.get("llm_tokens_used", 0)),
        error_message=str(data.get("error_message", "")),
        created_at=_dt(data.get("created_at")),
        completed_at=_dt(data.get("completed_at")),
    )


def _write_atomic(path: Path, text: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)


class JsonFileStore(MemoryStore):
    """MemoryStore persisted to a single JSON document.

    Args:
        path: Location of the state file. Loaded on construction if it exists.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path
        if path.exists():
            self._load()

    def _snapshot(self) -> str:
        data = {
            "schema_version": SCHEMA_VERSION,
            "messages": [_message_to_dict(m) for m in self._messages.values()],
            "watermarks": [
                {
                    "stream_id": wm.stream_id,
                    "watermark_time": wm.watermark_time.isoformat(),
                    "last_processed_batch": _iso(wm.last_processed_batch),
                }
                for wm in self._watermarks.values()
            ],
            "proposals": [_proposal_to_dict(p) for p in self._proposals],
            "run_logs": [_run_to_dict(r) for r in self._run_logs.values()],
            "import_watermarks": [
                {"stream_id": s, "resource_id": r, "last_imported": ts.isoformat()}
                for (s, r), ts in self._import_watermarks.items()
            ],
        }
        return json.dumps(data, indent=2) + "\n"

    async def _persist(self) -> None:
        text = self._snapshot()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(_write_atomic, self.path, text)
        except OSError as e:
            logger.error("Failed to save state to %s: %s", self.path, e)
            raise StoreError(f"Failed to save state to {self.path}: {e}") from e

    def _load(self) -> None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load state from %s: %s", self.path, e)
            raise StoreError(f"Failed to load state from {self.path}: {e}") from e

        try:
            for entry in data.get("messages", []):
                msg = _message_from_dict(entry)
                self._messages[msg.id] = msg
                self._message_keys[(msg.stream_id, msg.message_id)] = msg.id
            for entry in data.get("watermarks", []):
                wm = ProcessingWatermark(
                    stream_id=str(entry["stream_id"]),
                    watermark_time=datetime.fromisoformat(entry["watermark_time"]),
                    last_processed_batch=_dt(entry.get("last_processed_batch")),
                )
                self._watermarks[wm.stream_id] = wm
            self._proposals = [_proposal_from_dict(p) for p in data.get("proposals", [])]
            for entry in data.get("run_logs", []):
                run = _run_from_dict(entry)
                self._run_logs[run.id] = run
            for entry in data.get("import_watermarks", []):
                key = (str(entry["stream_id"]), str(entry["resource_id"]))
                self._import_watermarks[key] = datetime.fromisoformat(entry["last_imported"])
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Corrupt state file {self.path}: {e}") from e

        self._next_message_id = max(self._messages, default=0) + 1
        self._next_proposal_id = max((p.id for p in self._proposals), default=0) + 1
        self._next_run_id = max(self._run_logs, default=0) + 1
        logger.info(
            "Loaded state from %s (%d messages, %d watermarks)",
            self.path,
            len(self._messages),
            len(self._watermarks),
        )
