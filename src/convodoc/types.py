"""Data contracts for convodoc.

Dataclasses that flow between the stores, the batch scheduler and the
pipeline steps:
  UnifiedMessage → BatchWindow → PipelineContext → Proposal → stored
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

__all__ = [
    "BatchWindow",
    "ConversationThread",
    "PipelineMetrics",
    "PipelineResult",
    "ProcessingStatus",
    "ProcessingWatermark",
    "PromptLogEntry",
    "Proposal",
    "RagDocument",
    "RagSearchCriteria",
    "RunLog",
    "RunStatus",
    "StepFailure",
    "StepLogEntry",
    "StepStatus",
    "StepType",
    "StoredProposal",
    "UnifiedMessage",
    "UpdateType",
]


class ProcessingStatus(StrEnum):
    """Lifecycle of an ingested message. PENDING moves to COMPLETED exactly once."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class UpdateType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    NONE = "NONE"


class StepType(StrEnum):
    """Closed set of pipeline step variants."""

    FILTER = "filter"
    CLASSIFY = "classify"
    ENRICH = "enrich"
    GENERATE = "generate"
    VALIDATE = "validate"
    CONDENSE = "condense"


class StepStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class UnifiedMessage:
    """A single ingested message.

    ``id`` is assigned by the store; ``message_id`` is the source's own
    identifier and is unique per stream.
    """

    stream_id: str
    message_id: str
    timestamp: datetime
    author: str
    content: str
    id: int = 0
    channel: str = ""
    reply_to_id: str = ""
    processing_status: ProcessingStatus = ProcessingStatus.PENDING


@dataclass(frozen=True)
class ProcessingWatermark:
    """Per-stream processing boundary (exclusive lower bound of the next batch)."""

    stream_id: str
    watermark_time: datetime
    last_processed_batch: datetime | None = None


@dataclass(frozen=True)
class BatchWindow:
    """The next time-bounded, size-capped batch of PENDING messages for a stream.

    ``batch_end`` is the point the watermark advances to once the batch
    commits. Every message satisfies ``batch_start < timestamp <= batch_end``.
    """

    stream_id: str
    batch_start: datetime
    batch_end: datetime
    messages: tuple[UnifiedMessage, ...] = ()
    truncated: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.messages


@dataclass(frozen=True)
class RagSearchCriteria:
    keywords: tuple[str, ...] = ()
    semantic_query: str = ""

    def query(self) -> str:
        """Return the text used for similarity search."""
        return self.semantic_query or " ".join(self.keywords)


@dataclass(frozen=True)
class ConversationThread:
    """A group of related messages produced by the classify step.

    ``message_ids`` are indices into ``PipelineContext.filtered_messages``.
    """

    id: str
    category: str
    message_ids: tuple[int, ...]
    summary: str
    doc_value_reason: str = ""
    rag_search_criteria: RagSearchCriteria = field(default_factory=RagSearchCriteria)


@dataclass(frozen=True)
class RagDocument:
    """A documentation fragment returned by similarity search."""

    id: str
    file_path: str
    title: str
    content: str
    similarity: float


@dataclass(frozen=True)
class Proposal:
    """A candidate documentation change awaiting human review."""

    update_type: UpdateType
    page: str
    reasoning: str
    section: str = ""
    suggested_text: str | None = None
    source_messages: tuple[int, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class StoredProposal:
    """A proposal as persisted after its batch committed."""

    id: int
    batch_id: str
    stream_id: str
    thread_id: str
    proposal: Proposal
    created_at: datetime


@dataclass(frozen=True)
class StepFailure:
    """Record of one step that failed after exhausting its retries."""

    step_id: str
    message: str
    cause: BaseException
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineMetrics:
    total_duration_ms: int = 0
    step_durations: dict[str, int] = field(default_factory=dict)
    llm_calls: int = 0
    llm_tokens_used: int = 0
    llm_cost_usd: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0


@dataclass(frozen=True)
class PipelineResult:
    success: bool
    messages_processed: int
    threads_created: int
    proposals_generated: int
    errors: tuple[StepFailure, ...]
    metrics: PipelineMetrics


@dataclass
class PromptLogEntry:
    """One LLM call or RAG query recorded by a step for debugging."""

    label: str
    entry_type: str  # "llm-call" | "rag-query"
    prompt_id: str = ""
    template: dict[str, str] = field(default_factory=dict)
    resolved: dict[str, str] = field(default_factory=dict)
    response: str = ""
    query: str = ""
    results: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        if self.entry_type == "rag-query":
            return {
                "label": self.label,
                "entryType": self.entry_type,
                "query": self.query,
                "resultCount": len(self.results),
                "results": list(self.results),
            }
        return {
            "label": self.label,
            "entryType": self.entry_type,
            "promptId": self.prompt_id,
            "template": dict(self.template),
            "resolved": dict(self.resolved),
            "response": self.response,
        }


@dataclass
class StepLogEntry:
    """Per-step record written into the pipeline run log."""

    step_name: str
    step_type: str
    status: StepStatus = StepStatus.COMPLETED
    duration_ms: int = 0
    input_count: int = 0
    output_count: int = 0
    output_summary: str = ""
    error: str = ""
    prompt_entries: list[PromptLogEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "stepName": self.step_name,
            "stepType": self.step_type,
            "status": str(self.status),
            "durationMs": self.duration_ms,
            "inputCount": self.input_count,
            "outputCount": self.output_count,
        }
        if self.output_summary:
            d["outputSummary"] = self.output_summary
        if self.error:
            d["error"] = self.error
        if self.prompt_entries:
            d["promptEntries"] = [e.to_dict() for e in self.prompt_entries]
        return d


@dataclass
class RunLog:
    """Observable progress record of one orchestrator execution."""

    id: int
    instance_id: str
    batch_id: str
    pipeline_id: str
    status: RunStatus = RunStatus.RUNNING
    input_messages: int = 0
    steps: list[dict[str, Any]] = field(default_factory=list)
    output_threads: int = 0
    output_proposals: int = 0
    total_duration_ms: int = 0
    llm_calls: int = 0
    llm_tokens_used: int = 0
    error_message: str = ""
    created_at: datetime | None = None
    completed_at: datetime | None = None
