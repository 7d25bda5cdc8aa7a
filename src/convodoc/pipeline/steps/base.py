"""Abstract base class for pipeline steps."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from convodoc.exceptions import PromptError, StepError
from convodoc.llm.base import LLMContext, LLMRequest
from convodoc.types import PromptLogEntry

if TYPE_CHECKING:
    from pydantic import BaseModel

    from convodoc.config import StepConfig
    from convodoc.llm.base import BaseLLMHandler, LLMResponse
    from convodoc.pipeline.context import PipelineContext
    from convodoc.types import RagDocument, StepType

__all__ = ["BasePipelineStep", "StepMetadata"]

ModelT = TypeVar("ModelT", bound="BaseModel")

_MISSING = object()


@dataclass(frozen=True)
class StepMetadata:
    name: str
    description: str
    version: str = "1.0.0"


class BasePipelineStep(ABC):
    """Base class for all pipeline steps.

    A step mutates the :class:`PipelineContext` in place and returns it.
    Raising from :meth:`execute` marks the step failed for this attempt;
    the orchestrator decides whether to retry.
    """

    step_type: ClassVar[StepType]
    description: ClassVar[str] = "Pipeline step"

    def __init__(self, config: StepConfig, llm_handler: BaseLLMHandler | None = None) -> None:
        self.step_id = config.step_id
        self.config = config
        self.llm_handler = llm_handler
        self.logger = logging.getLogger(f"convodoc.pipeline.steps.{config.step_id}")

    @abstractmethod
    async def execute(self, context: PipelineContext) -> PipelineContext:
        """Run this step against ``context``."""

    def validate_config(self, config: StepConfig) -> bool:
        """Check the step configuration. Subclasses extend this."""
        if not config.step_id:
            self.logger.error("Step configuration missing step_id")
            return False
        if not config.step_type:
            self.logger.error("Step configuration missing step_type")
            return False
        return True

    def check_range(self, config: StepConfig, key: str, low: float, high: float) -> bool:
        """Return false (and log) when ``key`` is set but not a number in [low, high]."""
        value = config.config.get(key)
        if value is None:
            return True
        try:
            number = float(value)
        except (TypeError, ValueError):
            self.logger.error("%s must be a number, got %r", key, value)
            return False
        if not low <= number <= high:
            self.logger.error("%s must be between %s and %s", key, low, high)
            return False
        return True

    def get_metadata(self) -> StepMetadata:
        return StepMetadata(name=self.step_id, description=self.description)

    def get_config_value(self, key: str, default: Any = _MISSING) -> Any:
        value = self.config.config.get(key, _MISSING)
        if value is _MISSING:
            if default is _MISSING:
                raise StepError(f"Step {self.step_id}: missing required config key {key!r}")
            return default
        return value

    def require_llm(self) -> BaseLLMHandler:
        if self.llm_handler is None:
            raise StepError(f"Step {self.step_id} requires an LLM handler but none was provided")
        return self.llm_handler

    # -- prompt / query logging ------------------------------------------

    def _log_entries(self, context: PipelineContext) -> list[PromptLogEntry]:
        return context.step_prompt_logs.setdefault(self.step_id, [])

    def render_prompt(
        self,
        context: PipelineContext,
        prompt_id: str,
        variables: dict[str, Any],
        label: str = "LLM Call",
    ) -> tuple[str, str, PromptLogEntry]:
        """Render a prompt and append it to this step's prompt log.

        Returns the rendered system and user prompts plus the log entry,
        whose ``response`` the caller fills in once the LLM answers.
        """
        if context.prompts is None:
            raise StepError(f"Step {self.step_id} needs a prompt registry")
        template = context.prompts.get(prompt_id)
        if template is None:
            raise PromptError(f"Prompt template not found: {prompt_id}")
        rendered = context.prompts.render(prompt_id, variables)
        entry = PromptLogEntry(
            label=label,
            entry_type="llm-call",
            prompt_id=prompt_id,
            template={"system": template.system, "user": template.user},
            resolved={"system": rendered.system, "user": rendered.user},
        )
        self._log_entries(context).append(entry)
        return rendered.system, rendered.user, entry

    def log_rag_query(
        self,
        context: PipelineContext,
        label: str,
        query: str,
        results: list[RagDocument],
    ) -> None:
        self._log_entries(context).append(
            PromptLogEntry(
                label=label,
                entry_type="rag-query",
                query=query,
                results=[
                    {"filePath": d.file_path, "title": d.title, "similarity": d.similarity}
                    for d in results
                ],
            )
        )

    # -- LLM helpers ------------------------------------------------------

    def _llm_context(
        self,
        context: PipelineContext,
        purpose: str,
        conversation_id: str = "",
    ) -> LLMContext:
        return LLMContext(
            instance_id=context.instance_id,
            batch_id=context.batch_id,
            conversation_id=conversation_id,
            purpose=purpose,
        )

    def _record_usage(self, context: PipelineContext, response: LLMResponse) -> None:
        context.metrics.llm_calls += 1
        context.metrics.llm_tokens_used += response.tokens_used
        if response.cached:
            context.metrics.cache_hits += 1
        else:
            context.metrics.cache_misses += 1

    async def call_llm_json(
        self,
        context: PipelineContext,
        prompt_id: str,
        variables: dict[str, Any],
        schema: type[ModelT],
        *,
        purpose: str,
        label: str = "LLM Call",
        conversation_id: str = "",
    ) -> ModelT:
        """Render ``prompt_id``, request JSON matching ``schema`` and log the exchange."""
        llm = self.require_llm()
        system, user, entry = self.render_prompt(context, prompt_id, variables, label)
        request = LLMRequest(
            system_prompt=system,
            user_prompt=user,
            temperature=float(self.get_config_value("temperature", 0.2)),
            max_tokens=self.get_config_value("max_tokens", None),
        )
        data, response = await llm.request_json(
            request, schema, self._llm_context(context, purpose, conversation_id)
        )
        entry.response = response.text
        self._record_usage(context, response)
        return data
