"""Attach related documentation to each valuable thread via similarity search."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import TYPE_CHECKING

from convodoc.exceptions import StepError
from convodoc.pipeline.steps.base import BasePipelineStep
from convodoc.types import StepType

if TYPE_CHECKING:
    from convodoc.config import PathFilter, StepConfig
    from convodoc.llm.base import BaseLLMHandler
    from convodoc.pipeline.context import PipelineContext
    from convodoc.types import RagDocument

__all__ = ["NO_DOC_VALUE", "RagEnrichStep", "deduplicate_translations", "filter_by_paths"]

NO_DOC_VALUE = "no-doc-value"

_I18N_PREFIX = re.compile(r"^(?:i18n/)?[a-z]{2}(?:-[A-Z]{2})?/")


@lru_cache(maxsize=128)
def _glob_regex(pattern: str) -> re.Pattern[str]:
    """``**`` matches across directories, ``*`` within one path segment."""
    parts = pattern.split("**")
    body = ".*".join(re.escape(p).replace(r"\*", "[^/]*") for p in parts)
    return re.compile(f"^{body}$", re.IGNORECASE)


def match_glob(path: str, pattern: str) -> bool:
    return bool(_glob_regex(pattern).match(path))


def filter_by_paths(docs: list[RagDocument], paths: PathFilter) -> list[RagDocument]:
    result = []
    for doc in docs:
        if any(match_glob(doc.file_path, p) for p in paths.exclude):
            continue
        if paths.include and not any(match_glob(doc.file_path, p) for p in paths.include):
            continue
        result.append(doc)
    return result


def deduplicate_translations(docs: list[RagDocument]) -> list[RagDocument]:
    """Collapse translated copies of a page, preferring the untranslated one.

    Returns documents sorted by descending similarity.
    """
    seen: dict[str, RagDocument] = {}
    for doc in docs:
        base = _I18N_PREFIX.sub("", doc.file_path, count=1)
        existing = seen.get(base)
        if (
            existing is None
            or (not doc.file_path.startswith("i18n/") and existing.file_path.startswith("i18n/"))
            or doc.similarity > existing.similarity
        ):
            seen[base] = doc
    return sorted(seen.values(), key=lambda d: d.similarity, reverse=True)


class RagEnrichStep(BasePipelineStep):
    """Fill ``context.rag_results`` for every thread not marked ``no-doc-value``.

    A failed search for one thread records an empty result for that thread
    and does not fail the step.
    """

    step_type = StepType.ENRICH
    description = "Adds relevant documentation context to threads"

    def __init__(self, config: StepConfig, llm_handler: BaseLLMHandler | None = None) -> None:
        super().__init__(config, None)
        self.top_k = int(config.config.get("top_k") or 5)
        self.min_similarity = float(config.config.get("min_similarity", 0.7))
        self.dedupe = bool(config.config.get("deduplicate_translations", True))

    async def execute(self, context: PipelineContext) -> PipelineContext:
        valuable = [t for t in context.threads if t.category != NO_DOC_VALUE]
        if not valuable:
            self.logger.info("No valuable threads to enrich")
            return context
        if context.rag_service is None:
            raise StepError(f"Step {self.step_id} requires a RAG service but none was provided")

        self.logger.info("Enriching %d threads with RAG context", len(valuable))
        total = 0
        for thread in valuable:
            query = thread.rag_search_criteria.query()
            if not query.strip():
                self.logger.debug("Thread %s has no search query, skipping", thread.id)
                continue
            try:
                results = await context.rag_service.search_similar_docs(query, self.top_k * 2)
            except Exception as e:
                self.logger.error("Failed to enrich thread %s: %s", thread.id, e)
                context.rag_results[thread.id] = []
                continue

            docs = [d for d in results if d.similarity >= self.min_similarity]
            docs = filter_by_paths(docs, context.domain.rag_paths)
            if self.dedupe:
                docs = deduplicate_translations(docs)
            docs = docs[: self.top_k]

            context.rag_results[thread.id] = docs
            total += len(docs)
            self.log_rag_query(context, f"RAG: {thread.summary[:60] or thread.id}", query, docs)
            self.logger.debug("Thread %s: found %d relevant docs", thread.id, len(docs))

        self.logger.info("RAG enrichment complete: %d docs for %d threads", total, len(valuable))
        return context

    def validate_config(self, config: StepConfig) -> bool:
        if not super().validate_config(config):
            return False
        top_k = config.config.get("top_k")
        if top_k is not None and (not isinstance(top_k, int) or top_k < 1):
            self.logger.error("top_k must be a positive integer")
            return False
        return self.check_range(config, "min_similarity", 0, 1)
