"""Pipeline orchestrator.

Runs the enabled steps of a :class:`~convodoc.config.PipelineConfig` in
declared order against one :class:`PipelineContext`, retrying failed steps
with exponential backoff and recording per-step progress in a run log.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from convodoc.exceptions import PluginError, StepConfigError
from convodoc.pipeline.context import serialize_metrics
from convodoc.registry import default_step_factory
from convodoc.types import (
    PipelineMetrics,
    PipelineResult,
    RunStatus,
    StepFailure,
    StepLogEntry,
    StepStatus,
    StepType,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from convodoc.config import PipelineConfig
    from convodoc.llm.base import BaseLLMHandler
    from convodoc.pipeline.context import PipelineContext
    from convodoc.pipeline.steps.base import BasePipelineStep
    from convodoc.registry import StepFactory

__all__ = ["PipelineOrchestrator"]

logger = logging.getLogger(__name__)

MAX_SUMMARY_LENGTH = 5000
SAMPLE_SIZE = 10
PREVIEW_LENGTH = 200


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _truncate(text: str, limit: int = MAX_SUMMARY_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "... [truncated]"


def _preview(text: str | None) -> str:
    if not text:
        return ""
    return text[:PREVIEW_LENGTH] + ("..." if len(text) > PREVIEW_LENGTH else "")


class PipelineOrchestrator:
    """Execute a configured step chain for one batch at a time.

    Args:
        config: Ordered step list and error-handling policy.
        llm_handler: Handed to every step the factory creates.
        step_factory: Step registry; defaults to the built-in steps.
        enable_run_logging: Write a run log through ``context.store``.
        sleep: Coroutine used for retry backoff, in seconds.
    """

    def __init__(
        self,
        config: PipelineConfig,
        llm_handler: BaseLLMHandler | None = None,
        step_factory: StepFactory | None = None,
        *,
        enable_run_logging: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._llm_handler = llm_handler
        self._step_factory = step_factory or default_step_factory()
        self._enable_run_logging = enable_run_logging
        self._sleep = sleep
        self._last_metrics = PipelineMetrics()

    def get_config(self) -> PipelineConfig:
        return self._config

    def get_metrics(self) -> PipelineMetrics:
        """Return a copy of the metrics from the most recent run."""
        return dataclasses.replace(
            self._last_metrics, step_durations=dict(self._last_metrics.step_durations)
        )

    def register_step(self, step_type: str, creator: Callable[..., BasePipelineStep]) -> None:
        """Register a step constructor, replacing any existing one for ``step_type``."""
        self._step_factory.register(step_type, creator, replace=True)
        logger.debug("Registered step factory: %s", step_type)

    # -- execution --------------------------------------------------------

    async def execute(self, context: PipelineContext) -> PipelineResult:
        """Run all active steps against ``context``.

        Never raises for step failures: they are retried, then recorded as
        :class:`StepFailure` entries and reported in the result.
        """
        start = time.perf_counter()
        errors: list[StepFailure] = []
        step_logs: list[StepLogEntry] = []

        logger.info(
            "Starting pipeline %s for batch %s (%d messages)",
            self._config.pipeline_id,
            context.batch_id,
            len(context.messages),
        )
        run_id = await self._safe_run_log_create(context)

        steps = self._create_steps()
        if not steps:
            logger.warning("No enabled steps in pipeline %s", self._config.pipeline_id)
            result = self._build_result(context, errors, start)
            await self._safe_run_log_update(
                context, run_id, RunStatus.COMPLETED, step_logs, errors, start
            )
            return result

        for step in steps:
            step_type = str(step.step_type)
            entry = StepLogEntry(step_name=step.step_id, step_type=step_type)
            entry.input_count = self._input_count(step_type, context)

            if entry.input_count == 0:
                entry.status = StepStatus.SKIPPED
                step_logs.append(entry)
                logger.info("Skipping step %s: no input to process", step.step_id)
                await self._safe_run_log_update(
                    context, run_id, RunStatus.RUNNING, step_logs, [], start
                )
                continue

            logger.info("Executing step %s (%s)", step.step_id, step_type)
            step_start = time.perf_counter()
            try:
                await self.execute_with_retry(step, context)
            except Exception as e:
                duration = _elapsed_ms(step_start)
                context.metrics.step_durations[step.step_id] = duration
                entry.duration_ms = duration
                entry.status = StepStatus.FAILED
                entry.error = str(e) or type(e).__name__
                entry.prompt_entries = context.step_prompt_logs.pop(step.step_id, [])
                step_logs.append(entry)
                await self._safe_run_log_update(
                    context, run_id, RunStatus.RUNNING, step_logs, [], start
                )

                failure = StepFailure(
                    step_id=step.step_id,
                    message=f"Step execution failed: {entry.error}",
                    cause=e,
                    context={
                        "batch_id": context.batch_id,
                        "instance_id": context.instance_id,
                        "step_type": step_type,
                    },
                )
                errors.append(failure)
                context.errors.append(failure)
                logger.error(
                    "Step %s failed for batch %s: %s", step.step_id, context.batch_id, entry.error
                )

                if self._config.error_handling.stop_on_error:
                    logger.error("Stopping pipeline due to error (stop_on_error=true)")
                    break
                continue

            duration = _elapsed_ms(step_start)
            context.metrics.step_durations[step.step_id] = duration
            entry.duration_ms = duration
            entry.output_count = self._output_count(step_type, context)
            entry.output_summary = self._output_summary(step_type, context)
            entry.prompt_entries = context.step_prompt_logs.pop(step.step_id, [])
            step_logs.append(entry)
            await self._safe_run_log_update(
                context, run_id, RunStatus.RUNNING, step_logs, [], start
            )
            logger.debug(
                "Step %s completed in %dms (%d filtered, %d threads)",
                step.step_id,
                duration,
                len(context.filtered_messages),
                len(context.threads),
            )

        result = self._build_result(context, errors, start)
        await self._safe_run_log_update(
            context,
            run_id,
            RunStatus.COMPLETED if result.success else RunStatus.FAILED,
            step_logs,
            errors,
            start,
        )
        logger.info(
            "Pipeline complete for batch %s: success=%s threads=%d proposals=%d in %dms",
            context.batch_id,
            result.success,
            result.threads_created,
            result.proposals_generated,
            result.metrics.total_duration_ms,
        )
        logger.debug("Pipeline metrics: %s", serialize_metrics(result.metrics))
        return result

    async def execute_with_retry(self, step: BasePipelineStep, context: PipelineContext) -> None:
        """Run ``step`` up to ``retry_attempts + 1`` times.

        The delay before retry ``n`` (counting from 0) is
        ``retry_delay_ms * 2**n``. The last error is re-raised.
        """
        policy = self._config.error_handling

        for attempt in range(policy.retry_attempts + 1):
            try:
                await step.execute(context)
                return
            except Exception as e:
                if attempt >= policy.retry_attempts:
                    raise
                delay_ms = policy.retry_delay_ms * 2**attempt
                logger.warning(
                    "Step %s failed (attempt %d/%d), retrying in %dms: %s",
                    step.step_id,
                    attempt + 1,
                    policy.retry_attempts + 1,
                    delay_ms,
                    e,
                )
                await self._sleep(delay_ms / 1000)

    def _create_steps(self) -> list[BasePipelineStep]:
        steps: list[BasePipelineStep] = []
        for step_config in self._config.steps:
            if not step_config.enabled:
                logger.debug("Skipping disabled step: %s", step_config.step_id)
                continue
            if not self._step_factory.has_step_type(step_config.step_type):
                logger.warning(
                    "No factory registered for step type %r (step %s)",
                    step_config.step_type,
                    step_config.step_id,
                )
                continue
            try:
                steps.append(self._step_factory.create(step_config, self._llm_handler))
            except (PluginError, StepConfigError) as e:
                logger.warning("Skipping step %s: %s", step_config.step_id, e)
        return steps

    def _build_result(
        self,
        context: PipelineContext,
        errors: list[StepFailure],
        start: float,
    ) -> PipelineResult:
        context.metrics.total_duration_ms = _elapsed_ms(start)
        self._last_metrics = context.metrics
        return PipelineResult(
            success=not errors,
            messages_processed=len(context.filtered_messages),
            threads_created=len(context.threads),
            proposals_generated=context.proposal_count(),
            errors=tuple(errors),
            metrics=context.metrics,
        )

    # -- step bookkeeping -------------------------------------------------

    @staticmethod
    def _input_count(step_type: str, context: PipelineContext) -> int:
        if step_type == StepType.FILTER:
            return len(context.messages)
        if step_type == StepType.CLASSIFY:
            return len(context.filtered_messages)
        if step_type in (StepType.ENRICH, StepType.GENERATE):
            return len(context.threads)
        if step_type in (StepType.VALIDATE, StepType.CONDENSE):
            return context.proposal_count()
        # unknown (custom) step types always run
        return len(context.messages)

    @staticmethod
    def _output_count(step_type: str, context: PipelineContext) -> int:
        if step_type == StepType.FILTER:
            return len(context.filtered_messages)
        if step_type == StepType.CLASSIFY:
            return len(context.threads)
        if step_type == StepType.ENRICH:
            return len(context.rag_results)
        if step_type in (StepType.GENERATE, StepType.VALIDATE, StepType.CONDENSE):
            return context.proposal_count()
        return 0

    @staticmethod
    def _output_summary(step_type: str, context: PipelineContext) -> str:
        summary: dict[str, Any]
        if step_type == StepType.FILTER:
            summary = {
                "totalFiltered": len(context.filtered_messages),
                "sample": [
                    {"id": m.id, "author": m.author, "content": _preview(m.content)}
                    for m in context.filtered_messages[:SAMPLE_SIZE]
                ],
            }
        elif step_type == StepType.CLASSIFY:
            summary = {
                "totalThreads": len(context.threads),
                "threads": [
                    {
                        "id": t.id,
                        "category": t.category,
                        "summary": t.summary,
                        "messageCount": len(t.message_ids),
                        "docValueReason": t.doc_value_reason,
                    }
                    for t in context.threads[:SAMPLE_SIZE]
                ],
            }
        elif step_type == StepType.ENRICH:
            summary = {
                "threadsEnriched": len(context.rag_results),
                "resultsPerThread": {k: len(v) for k, v in context.rag_results.items()},
            }
        elif step_type in (StepType.GENERATE, StepType.VALIDATE, StepType.CONDENSE):
            proposals = [
                {
                    "threadId": thread_id,
                    "page": p.page or "unknown",
                    "section": p.section or "unknown",
                    "updateType": str(p.update_type),
                    "contentPreview": _preview(p.suggested_text),
                }
                for thread_id, items in context.proposals.items()
                for p in items
            ]
            summary = {
                "totalProposals": context.proposal_count(),
                "proposals": proposals[:SAMPLE_SIZE],
            }
        else:
            summary = {"note": "No summary available for this step type"}
        return _truncate(json.dumps(summary, indent=2, default=str))

    # -- run log (best effort) -------------------------------------------

    async def _safe_run_log_create(self, context: PipelineContext) -> int | None:
        if not self._enable_run_logging or context.store is None:
            return None
        try:
            run_id = await context.store.create_run_log(
                instance_id=context.instance_id,
                batch_id=context.batch_id,
                pipeline_id=self._config.pipeline_id,
                input_messages=len(context.messages),
            )
        except Exception as e:
            logger.warning("Failed to create pipeline run log: %s", e)
            return None
        logger.debug("Created pipeline run log %d", run_id)
        return run_id

    async def _safe_run_log_update(
        self,
        context: PipelineContext,
        run_id: int | None,
        status: RunStatus,
        step_logs: list[StepLogEntry],
        errors: list[StepFailure],
        start: float,
    ) -> None:
        if run_id is None or context.store is None:
            return
        fields: dict[str, Any] = {
            "status": status,
            "steps": [s.to_dict() for s in step_logs],
            "output_threads": len(context.threads),
            "output_proposals": context.proposal_count(),
            "total_duration_ms": _elapsed_ms(start),
            "llm_calls": context.metrics.llm_calls,
            "llm_tokens_used": context.metrics.llm_tokens_used,
            "error_message": "; ".join(e.message for e in errors),
        }
        if status != RunStatus.RUNNING:
            fields["completed_at"] = datetime.now(UTC)
        try:
            await context.store.update_run_log(run_id, **fields)
        except Exception as e:
            logger.warning("Failed to update pipeline run log %d: %s", run_id, e)
