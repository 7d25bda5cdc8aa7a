"""Generate documentation change proposals for each valuable thread."""

from __future__ import annotations

import dataclasses
import re
from typing import TYPE_CHECKING

from convodoc.llm.schemas import ProposalResponse
from convodoc.pipeline.steps.base import BasePipelineStep
from convodoc.pipeline.steps.enrich import NO_DOC_VALUE
from convodoc.types import Proposal, StepType, UpdateType

if TYPE_CHECKING:
    from convodoc.config import StepConfig
    from convodoc.pipeline.context import PipelineContext
    from convodoc.types import ConversationThread, RagDocument

__all__ = ["ProposalGenerateStep", "apply_block_patterns"]

DEFAULT_PROMPT_ID = "changeset-generation"


def format_rag_docs(docs: list[RagDocument]) -> str:
    if not docs:
        return "(No relevant documentation found)"
    return "\n\n---\n\n".join(
        f"[DOC {i}] {d.title}\nPath: {d.file_path}\nSimilarity: {d.similarity:.3f}\n\n{d.content}"
        for i, d in enumerate(docs, start=1)
    )


def format_thread_messages(thread: ConversationThread, context: PipelineContext) -> str:
    msgs = [
        context.filtered_messages[i]
        for i in thread.message_ids
        if 0 <= i < len(context.filtered_messages)
    ]
    if not msgs:
        return "(No messages)"
    return "\n\n".join(
        f"[{m.id}] [{m.timestamp.isoformat()}] {m.author}: {m.content}" for m in msgs
    )


def apply_block_patterns(proposals: list[Proposal], patterns: list[str]) -> list[Proposal]:
    """Flag proposals whose text matches a blocked pattern (case-insensitive regex)."""
    if not patterns:
        return proposals
    compiled = [(p, re.compile(p, re.IGNORECASE)) for p in patterns]
    result = []
    for proposal in proposals:
        text = proposal.suggested_text or ""
        hits = [f"Blocked pattern detected: {p}" for p, rx in compiled if rx.search(text)]
        if hits:
            proposal = dataclasses.replace(proposal, warnings=proposal.warnings + tuple(hits))
        result.append(proposal)
    return result


class ProposalGenerateStep(BasePipelineStep):
    """One LLM call per thread not marked ``no-doc-value``.

    ``NONE`` proposals are dropped, at most ``max_proposals_per_thread`` are
    kept per thread and generation stops once the batch holds
    ``[domain.security] max_proposals_per_batch``. An LLM failure for one
    thread records an empty list for it.
    """

    step_type = StepType.GENERATE
    description = "Generates documentation change proposals using LLM"

    async def execute(self, context: PipelineContext) -> PipelineContext:
        self.require_llm()
        threads = [t for t in context.threads if t.category != NO_DOC_VALUE]
        if not threads:
            self.logger.info("No valuable threads, skipping proposal generation")
            return context

        per_thread = int(self.get_config_value("max_proposals_per_thread", 5))
        per_batch = context.domain.security.max_proposals_per_batch or 100
        total = 0
        self.logger.info("Generating proposals for %d threads", len(threads))

        for thread in threads:
            if total >= per_batch:
                self.logger.warning("Reached max proposals per batch (%d), stopping", per_batch)
                break
            try:
                proposals = await self._generate_for_thread(context, thread)
            except Exception as e:
                self.logger.error("Failed to generate proposals for thread %s: %s", thread.id, e)
                entries = context.step_prompt_logs.get(self.step_id)
                if entries and not entries[-1].response:
                    entries[-1].response = f"ERROR: {e}"
                context.proposals[thread.id] = []
                continue

            proposals = apply_block_patterns(proposals, context.domain.security.block_patterns)
            proposals = proposals[: min(per_thread, per_batch - total)]
            context.proposals[thread.id] = proposals
            total += len(proposals)
            self.logger.debug("Thread %s: generated %d proposals", thread.id, len(proposals))

        self.logger.info("Proposal generation complete: %d proposals", total)
        return context

    async def _generate_for_thread(
        self,
        context: PipelineContext,
        thread: ConversationThread,
    ) -> list[Proposal]:
        dc = context.domain.context
        data = await self.call_llm_json(
            context,
            self.get_config_value("prompt_id", DEFAULT_PROMPT_ID),
            {
                "project_name": dc.project_name,
                "domain": dc.domain,
                "target_audience": dc.target_audience,
                "documentation_purpose": dc.documentation_purpose,
                "thread_summary": thread.summary,
                "thread_category": thread.category,
                "doc_value_reason": thread.doc_value_reason,
                "rag_context": format_rag_docs(context.rag_results.get(thread.id, [])),
                "messages": format_thread_messages(thread, context),
            },
            ProposalResponse,
            purpose="proposal",
            label=f"Generate: {thread.summary[:60] or thread.id}",
            conversation_id=thread.id,
        )
        if data.proposals_rejected:
            self.logger.debug("Thread %s: proposals rejected: %s", thread.id, data.rejection_reason)
            return []
        return [
            Proposal(
                update_type=p.update_type,
                page=p.page,
                section=p.section,
                suggested_text=p.suggested_text,
                reasoning=p.reasoning,
                source_messages=tuple(p.source_messages),
            )
            for p in data.proposals
            if p.update_type != UpdateType.NONE
        ]

    def validate_config(self, config: StepConfig) -> bool:
        if not super().validate_config(config):
            return False
        if not self.check_range(config, "temperature", 0, 2):
            return False
        per_thread = config.config.get("max_proposals_per_thread")
        if per_thread is not None and (not isinstance(per_thread, int) or per_thread < 1):
            self.logger.error("max_proposals_per_thread must be a positive integer")
            return False
        return True
