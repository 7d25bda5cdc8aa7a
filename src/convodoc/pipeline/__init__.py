"""Pipeline orchestration: context, orchestrator and steps."""

from convodoc.pipeline.context import PipelineContext, create_pipeline_context, serialize_metrics
from convodoc.pipeline.orchestrator import PipelineOrchestrator

__all__ = [
    "PipelineContext",
    "PipelineOrchestrator",
    "create_pipeline_context",
    "serialize_metrics",
]
