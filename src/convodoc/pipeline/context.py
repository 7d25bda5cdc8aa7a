"""Per-batch pipeline context.

One :class:`PipelineContext` is created for each batch and handed to every
step of one orchestrator run. Steps read and write its intermediate
collections in place:

=========  ===========================  ==========================
step type  reads                        writes
=========  ===========================  ==========================
filter     messages                     filtered_messages
classify   filtered_messages,           threads
           context_messages
enrich     threads                      rag_results
generate   threads, rag_results         proposals
validate   proposals                    proposals
condense   proposals                    proposals
=========  ===========================  ==========================

The context must not be retained or mutated after the run returns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from convodoc.types import PipelineMetrics

if TYPE_CHECKING:
    from collections.abc import Sequence

    from convodoc.config import DomainConfig
    from convodoc.llm.base import BaseLLMHandler
    from convodoc.prompts.registry import PromptRegistry
    from convodoc.rag.base import BaseRagService
    from convodoc.store.base import BaseStore
    from convodoc.types import (
        ConversationThread,
        PromptLogEntry,
        Proposal,
        RagDocument,
        StepFailure,
        UnifiedMessage,
    )

__all__ = ["PipelineContext", "create_pipeline_context", "serialize_metrics"]


@dataclass
class PipelineContext:
    instance_id: str
    batch_id: str
    stream_id: str
    messages: list[UnifiedMessage]
    context_messages: list[UnifiedMessage]
    domain: DomainConfig
    prompts: PromptRegistry | None = None
    llm_handler: BaseLLMHandler | None = None
    rag_service: BaseRagService | None = None
    store: BaseStore | None = None

    filtered_messages: list[UnifiedMessage] = field(default_factory=list)
    threads: list[ConversationThread] = field(default_factory=list)
    rag_results: dict[str, list[RagDocument]] = field(default_factory=dict)
    proposals: dict[str, list[Proposal]] = field(default_factory=dict)

    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)
    errors: list[StepFailure] = field(default_factory=list)
    step_prompt_logs: dict[str, list[PromptLogEntry]] = field(default_factory=dict)

    def proposal_count(self) -> int:
        return sum(len(p) for p in self.proposals.values())


def create_pipeline_context(
    *,
    instance_id: str,
    batch_id: str,
    stream_id: str,
    messages: Sequence[UnifiedMessage],
    domain: DomainConfig,
    context_messages: Sequence[UnifiedMessage] = (),
    prompts: PromptRegistry | None = None,
    llm_handler: BaseLLMHandler | None = None,
    rag_service: BaseRagService | None = None,
    store: BaseStore | None = None,
) -> PipelineContext:
    """Build a fresh context; ``filtered_messages`` starts as a copy of ``messages``."""
    return PipelineContext(
        instance_id=instance_id,
        batch_id=batch_id,
        stream_id=stream_id,
        messages=list(messages),
        context_messages=list(context_messages),
        domain=domain,
        prompts=prompts,
        llm_handler=llm_handler,
        rag_service=rag_service,
        store=store,
        filtered_messages=list(messages),
    )


def serialize_metrics(metrics: PipelineMetrics) -> dict[str, Any]:
    return {
        "totalDurationMs": metrics.total_duration_ms,
        "stepDurations": dict(metrics.step_durations),
        "llmCalls": metrics.llm_calls,
        "llmTokensUsed": metrics.llm_tokens_used,
        "llmCostUSD": metrics.llm_cost_usd,
        "cacheHits": metrics.cache_hits,
        "cacheMisses": metrics.cache_misses,
    }
