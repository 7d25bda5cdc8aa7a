"""Group filtered messages into conversation threads with one LLM call."""

from __future__ import annotations

from typing import TYPE_CHECKING

from convodoc.llm.schemas import ClassificationResponse
from convodoc.pipeline.steps.base import BasePipelineStep
from convodoc.types import ConversationThread, RagSearchCriteria, StepType

if TYPE_CHECKING:
    from collections.abc import Sequence

    from convodoc.config import CategoryDefinition, StepConfig
    from convodoc.pipeline.context import PipelineContext
    from convodoc.types import UnifiedMessage

__all__ = ["BatchClassifyStep", "format_categories", "format_messages"]

DEFAULT_PROMPT_ID = "thread-classification"


def format_categories(categories: Sequence[CategoryDefinition]) -> str:
    lines = []
    for c in categories:
        entry = f"- **{c.label}** ({c.id}): {c.description}"
        if c.examples:
            entry += f"\n  Examples: {', '.join(c.examples)}"
        lines.append(entry)
    return "\n".join(lines)


def format_messages(messages: Sequence[UnifiedMessage]) -> str:
    """Render messages as ``[index] [timestamp] author: content`` lines."""
    if not messages:
        return "(No messages)"
    lines = []
    for idx, m in enumerate(messages):
        reply = f" (reply to {m.reply_to_id})" if m.reply_to_id else ""
        lines.append(f"[{idx}] [{m.timestamp.isoformat()}] {m.author}{reply}: {m.content}")
    return "\n\n".join(lines)


class BatchClassifyStep(BasePipelineStep):
    """Classify ``filtered_messages`` into :class:`ConversationThread` objects.

    Thread ``message_ids`` are indices into ``filtered_messages``; indices the
    model invents outside that range are dropped, and a thread left with no
    messages is discarded.
    """

    step_type = StepType.CLASSIFY
    description = "Classifies messages into conversation threads using LLM"

    async def execute(self, context: PipelineContext) -> PipelineContext:
        self.require_llm()
        if not context.filtered_messages:
            self.logger.info("No messages to classify, skipping")
            context.threads = []
            return context

        self.logger.info("Classifying %d messages", len(context.filtered_messages))
        domain = context.domain
        data = await self.call_llm_json(
            context,
            self.get_config_value("prompt_id", DEFAULT_PROMPT_ID),
            {
                "project_name": domain.context.project_name,
                "domain": domain.context.domain,
                "categories": format_categories(domain.categories),
                "messages_to_analyze": format_messages(context.filtered_messages),
                "context_text": format_messages(context.context_messages),
            },
            ClassificationResponse,
            purpose="classification",
        )

        limit = len(context.filtered_messages)
        threads = []
        for idx, item in enumerate(data.threads):
            indices = tuple(i for i in item.messages if 0 <= i < limit)
            if len(indices) != len(item.messages):
                self.logger.warning(
                    "Thread %d referenced %d unknown message indices",
                    idx,
                    len(item.messages) - len(indices),
                )
            if not indices:
                continue
            threads.append(
                ConversationThread(
                    id=f"thread_{context.batch_id}_{idx}",
                    category=item.category,
                    message_ids=indices,
                    summary=item.summary,
                    doc_value_reason=item.doc_value_reason,
                    rag_search_criteria=RagSearchCriteria(
                        keywords=tuple(item.rag_search_criteria.keywords),
                        semantic_query=item.rag_search_criteria.semantic_query,
                    ),
                )
            )

        context.threads = threads
        self.logger.info(
            "Classified into %d threads (%s)",
            len(threads),
            ", ".join(sorted({t.category for t in threads})),
        )
        return context

    def validate_config(self, config: StepConfig) -> bool:
        if not super().validate_config(config):
            return False
        if not self.check_range(config, "temperature", 0, 2):
            return False
        return True
