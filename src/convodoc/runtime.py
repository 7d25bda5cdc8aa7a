"""Wire a project's config into a ready-to-run store, pipeline and scheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from convodoc.config import validate_config
from convodoc.pipeline.orchestrator import PipelineOrchestrator
from convodoc.prompts.registry import PromptRegistry
from convodoc.registry import default_registry
from convodoc.scheduler.processor import BatchProcessor
from convodoc.store import create_store
from convodoc.types import StepType

if TYPE_CHECKING:
    from convodoc.config import ConvodocConfig
    from convodoc.llm.base import BaseLLMHandler
    from convodoc.project import ProjectManager
    from convodoc.rag.base import BaseRagService
    from convodoc.rag.chroma import ChromaRagService
    from convodoc.store.base import BaseStore

__all__ = [
    "Runtime",
    "StreamSummary",
    "build_runtime",
    "create_llm_handler",
    "create_rag_service",
    "open_store",
    "stream_summaries",
]

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: ConvodocConfig
    store: BaseStore
    prompts: PromptRegistry
    orchestrator: PipelineOrchestrator
    processor: BatchProcessor
    llm_handler: BaseLLMHandler | None = None
    rag_service: BaseRagService | None = None


@dataclass(frozen=True)
class StreamSummary:
    stream_id: str
    pending: int
    watermark: datetime | None
    last_processed_batch: datetime | None


def open_store(project: ProjectManager, config: ConvodocConfig) -> BaseStore:
    return create_store(config.store, project.project_dir)


def create_llm_handler(config: ConvodocConfig) -> BaseLLMHandler:
    handler: BaseLLMHandler = default_registry.create("llm", config.llm.provider, config)
    return handler


def create_rag_service(project: ProjectManager, config: ConvodocConfig) -> ChromaRagService:
    # chromadb is heavy to import; only pay for it when retrieval is used
    from convodoc.embed import create_embedder
    from convodoc.rag.chroma import ChromaRagService

    return ChromaRagService(
        project.index_dir, create_embedder(config), collection_name=config.rag.collection_name
    )


def _uses_step(config: ConvodocConfig, step_type: StepType) -> bool:
    return any(s.enabled and s.step_type == step_type for s in config.pipeline.steps)


def build_runtime(project: ProjectManager, config: ConvodocConfig | None = None) -> Runtime:
    """Build every collaborator the batch processor needs.

    The RAG service is only created when an enabled step retrieves documents.

    Raises:
        ProjectError: If the project is not initialized.
        ConfigError: If the config is invalid or names an unknown backend.
        PluginError: If the LLM or embedding provider is unknown.
    """
    if config is None:
        config = project.load()
    validate_config(config)

    store = open_store(project, config)
    prompts = PromptRegistry(user_dir=project.prompts_dir)
    llm_handler = create_llm_handler(config)
    rag_service = (
        create_rag_service(project, config) if _uses_step(config, StepType.ENRICH) else None
    )
    orchestrator = PipelineOrchestrator(config.pipeline, llm_handler)
    processor = BatchProcessor(
        store,
        orchestrator,
        config.scheduler,
        config.domain,
        prompts=prompts,
        llm_handler=llm_handler,
        rag_service=rag_service,
        instance_id=config.project.instance_id,
    )
    logger.debug(
        "Runtime ready: store=%s llm=%s rag=%s",
        config.store.backend,
        config.llm.provider,
        "on" if rag_service else "off",
    )
    return Runtime(
        config=config,
        store=store,
        prompts=prompts,
        orchestrator=orchestrator,
        processor=processor,
        llm_handler=llm_handler,
        rag_service=rag_service,
    )


async def stream_summaries(store: BaseStore) -> list[StreamSummary]:
    """Pending count and watermark for every stream the store knows about."""
    watermarks = {w.stream_id: w for w in await store.list_watermarks()}
    stream_ids = sorted(set(watermarks) | set(await store.pending_stream_ids()))
    summaries: list[StreamSummary] = []
    for stream_id in stream_ids:
        wm = watermarks.get(stream_id)
        summaries.append(
            StreamSummary(
                stream_id=stream_id,
                pending=await store.count_pending(stream_id),
                watermark=wm.watermark_time if wm else None,
                last_processed_batch=wm.last_processed_batch if wm else None,
            )
        )
    return summaries
