"""Keyword pre-filter. Pure text matching, no LLM calls."""

from __future__ import annotations

from typing import TYPE_CHECKING

from convodoc.pipeline.steps.base import BasePipelineStep
from convodoc.types import StepType

if TYPE_CHECKING:
    from convodoc.config import StepConfig
    from convodoc.llm.base import BaseLLMHandler
    from convodoc.pipeline.context import PipelineContext

__all__ = ["KeywordFilterStep"]


class KeywordFilterStep(BasePipelineStep):
    """Keep messages that contain an include keyword and no exclude keyword.

    Step config keys: ``include_keywords``, ``exclude_keywords``,
    ``case_sensitive``. When the step lists are empty the ``[domain.keywords]``
    filter is used instead; with no keywords at all every message passes.
    """

    step_type = StepType.FILTER
    description = "Pre-filters messages based on keyword patterns"

    def __init__(self, config: StepConfig, llm_handler: BaseLLMHandler | None = None) -> None:
        super().__init__(config, llm_handler)
        self.include_keywords: list[str] = list(config.config.get("include_keywords") or [])
        self.exclude_keywords: list[str] = list(config.config.get("exclude_keywords") or [])
        self.case_sensitive = bool(config.config.get("case_sensitive", False))

    async def execute(self, context: PipelineContext) -> PipelineContext:
        include = self.include_keywords
        exclude = self.exclude_keywords
        case_sensitive = self.case_sensitive
        if not include and not exclude:
            include = context.domain.keywords.include
            exclude = context.domain.keywords.exclude
            case_sensitive = context.domain.keywords.case_sensitive

        if not include and not exclude:
            self.logger.debug("No keyword filters configured, passing all messages")
            context.filtered_messages = list(context.messages)
            return context

        def norm(text: str) -> str:
            return text if case_sensitive else text.lower()

        include_n = [norm(k) for k in include]
        exclude_n = [norm(k) for k in exclude]

        kept = []
        for msg in context.messages:
            content = norm(msg.content)
            if any(k in content for k in exclude_n):
                self.logger.debug("Message %s excluded by keyword filter", msg.id)
                continue
            if include_n and not any(k in content for k in include_n):
                continue
            kept.append(msg)

        context.filtered_messages = kept
        self.logger.info(
            "Keyword filter: %d/%d messages filtered out",
            len(context.messages) - len(kept),
            len(context.messages),
        )
        return context

    def validate_config(self, config: StepConfig) -> bool:
        if not super().validate_config(config):
            return False
        for key in ("include_keywords", "exclude_keywords"):
            value = config.config.get(key)
            if value is not None and not isinstance(value, list):
                self.logger.error("%s must be a list", key)
                return False
        return True
