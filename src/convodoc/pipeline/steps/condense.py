"""Shorten proposals that exceed the length allowed for their thread's priority."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, NamedTuple

from convodoc.llm.schemas import CondenseResponse
from convodoc.pipeline.steps.base import BasePipelineStep
from convodoc.types import StepType, UpdateType

if TYPE_CHECKING:
    from convodoc.config import StepConfig
    from convodoc.llm.base import BaseLLMHandler
    from convodoc.pipeline.context import PipelineContext
    from convodoc.types import Proposal

__all__ = ["DEFAULT_PRIORITY", "LengthReductionStep", "PriorityTier"]

DEFAULT_PROMPT_ID = "content-condense"
DEFAULT_PRIORITY = 50


class PriorityTier(NamedTuple):
    min_priority: int
    max_length: int
    target_length: int


DEFAULT_TIERS = (
    PriorityTier(70, 5000, 3500),
    PriorityTier(40, 3500, 2500),
    PriorityTier(0, 2000, 1500),
)


class LengthReductionStep(BasePipelineStep):
    """Condense over-long ``suggested_text`` with the LLM.

    The length limit comes from the first tier whose ``min_priority`` the
    thread's category priority reaches (unknown categories count as 50).
    A failed condense keeps the original text and adds a warning.
    """

    step_type = StepType.CONDENSE
    description = "Condenses overly long proposals using LLM"

    def __init__(self, config: StepConfig, llm_handler: BaseLLMHandler | None = None) -> None:
        super().__init__(config, llm_handler)
        cfg = config.config
        self.default_max_length = int(cfg.get("default_max_length", 3000))
        self.default_target_length = int(cfg.get("default_target_length", 2000))
        tiers = cfg.get("priority_tiers")
        self.tiers = (
            tuple(
                PriorityTier(int(t["min_priority"]), int(t["max_length"]), int(t["target_length"]))
                for t in tiers
            )
            if tiers
            else DEFAULT_TIERS
        )

    def lengths_for(self, priority: int) -> tuple[int, int]:
        for tier in self.tiers:
            if priority >= tier.min_priority:
                return tier.max_length, tier.target_length
        return self.default_max_length, self.default_target_length

    async def execute(self, context: PipelineContext) -> PipelineContext:
        self.require_llm()
        priorities = {c.id: c.priority for c in context.domain.categories}
        categories = {t.id: t.category for t in context.threads}
        checked = condensed = 0

        for thread_id, proposals in context.proposals.items():
            priority = priorities.get(categories.get(thread_id, ""), DEFAULT_PRIORITY)
            max_length, target_length = self.lengths_for(priority)
            result: list[Proposal] = []

            for proposal in proposals:
                text = proposal.suggested_text
                if not text or proposal.update_type in (UpdateType.DELETE, UpdateType.NONE):
                    result.append(proposal)
                    continue
                checked += 1
                if len(text) <= max_length:
                    result.append(proposal)
                    continue

                try:
                    data = await self.call_llm_json(
                        context,
                        self.get_config_value("prompt_id", DEFAULT_PROMPT_ID),
                        {
                            "current_length": len(text),
                            "max_length": max_length,
                            "target_length": target_length,
                            "priority": priority,
                            "content": text,
                            "page": proposal.page,
                            "section": proposal.section,
                            "update_type": str(proposal.update_type),
                        },
                        CondenseResponse,
                        purpose="content-condense",
                        label=f"Condense: {proposal.page}",
                        conversation_id=proposal.page,
                    )
                except Exception as e:
                    self.logger.error("Failed to condense proposal for %s: %s", proposal.page, e)
                    result.append(
                        dataclasses.replace(
                            proposal,
                            warnings=proposal.warnings + (f"Length reduction failed: {e}",),
                        )
                    )
                    continue

                new_text = data.condensed_content
                condensed += 1
                self.logger.info(
                    "Condensed %s: %d -> %d chars (priority %d, max %d)",
                    proposal.page,
                    len(text),
                    len(new_text),
                    priority,
                    max_length,
                )
                result.append(
                    dataclasses.replace(
                        proposal,
                        suggested_text=new_text,
                        warnings=proposal.warnings
                        + (
                            f"Condensed: {len(text)} -> {len(new_text)} chars "
                            f"(priority {priority}, max {max_length})",
                        ),
                    )
                )
            context.proposals[thread_id] = result

        self.logger.info("Length reduction complete: %d checked, %d condensed", checked, condensed)
        return context

    def validate_config(self, config: StepConfig) -> bool:
        if not super().validate_config(config):
            return False
        required = {"min_priority", "max_length", "target_length"}
        for tier in config.config.get("priority_tiers") or []:
            if not isinstance(tier, dict) or not required <= set(tier):
                self.logger.error("priority_tiers entries need %s", ", ".join(sorted(required)))
                return False
        return True
