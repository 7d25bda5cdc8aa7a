"""Built-in pipeline steps."""

from __future__ import annotations

from typing import TYPE_CHECKING

from convodoc.pipeline.steps.base import BasePipelineStep, StepMetadata
from convodoc.pipeline.steps.classify import BatchClassifyStep
from convodoc.pipeline.steps.condense import LengthReductionStep
from convodoc.pipeline.steps.enrich import RagEnrichStep
from convodoc.pipeline.steps.filter import KeywordFilterStep
from convodoc.pipeline.steps.generate import ProposalGenerateStep
from convodoc.pipeline.steps.validate import ContentValidationStep
from convodoc.types import StepType

if TYPE_CHECKING:
    from convodoc.registry import StepFactory

__all__ = [
    "BUILTIN_STEPS",
    "BasePipelineStep",
    "BatchClassifyStep",
    "ContentValidationStep",
    "KeywordFilterStep",
    "LengthReductionStep",
    "ProposalGenerateStep",
    "RagEnrichStep",
    "StepMetadata",
    "register_builtin_steps",
]

BUILTIN_STEPS: dict[StepType, type[BasePipelineStep]] = {
    StepType.FILTER: KeywordFilterStep,
    StepType.CLASSIFY: BatchClassifyStep,
    StepType.ENRICH: RagEnrichStep,
    StepType.GENERATE: ProposalGenerateStep,
    StepType.VALIDATE: ContentValidationStep,
    StepType.CONDENSE: LengthReductionStep,
}


def register_builtin_steps(factory: StepFactory) -> None:
    for step_type, cls in BUILTIN_STEPS.items():
        if not factory.has_step_type(step_type):
            factory.register(str(step_type), cls)
