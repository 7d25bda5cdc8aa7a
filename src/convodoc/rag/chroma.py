"""ChromaDB-backed documentation retrieval.

Sections are stored with their file path and title as metadata in a
``chromadb.PersistentClient`` collection; no server is required.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import chromadb

from convodoc.exceptions import EmbeddingError, RagError
from convodoc.rag.base import BaseRagService
from convodoc.types import RagDocument

if TYPE_CHECKING:
    from pathlib import Path

    from convodoc.embed.base import BaseEmbedder
    from convodoc.rag.sections import DocSection

__all__ = ["ChromaRagService"]

logger = logging.getLogger(__name__)


class ChromaRagService(BaseRagService):
    """Documentation index in a persistent ChromaDB collection.

    Usage::

        rag = ChromaRagService(project_dir / "index", embedder)
        rag.add_sections(split_sections("guide.md", text))
        docs = await rag.search_similar_docs("reset password", top_k=5)
    """

    def __init__(
        self, persist_path: Path, embedder: BaseEmbedder, collection_name: str = "docs"
    ) -> None:
        self._persist_path = persist_path
        self._embedder = embedder
        try:
            self._client = chromadb.PersistentClient(path=str(persist_path))
            self._collection = self._client.get_or_create_collection(name=collection_name)
        except Exception as e:
            raise RagError(f"Failed to initialize ChromaDB at {persist_path}: {e}") from e
        logger.info(
            "ChromaDB index initialized at %s (collection=%s)", persist_path, collection_name
        )

    def add_sections(self, sections: list[DocSection]) -> int:
        """Embed and upsert sections.

        Raises:
            RagError: If embedding or storage fails.
        """
        if not sections:
            return 0
        try:
            embeddings = self._embedder.embed_texts([s.content for s in sections])
        except EmbeddingError as e:
            raise RagError(f"Failed to embed {len(sections)} sections: {e}") from e

        try:
            self._collection.upsert(
                ids=[s.id for s in sections],
                embeddings=embeddings,  # type: ignore[arg-type]
                documents=[s.content for s in sections],
                metadatas=[{"file_path": s.file_path, "title": s.title} for s in sections],
            )
        except Exception as e:
            raise RagError(f"Failed to store {len(sections)} sections: {e}") from e
        logger.info("Indexed %d sections", len(sections))
        return len(sections)

    def delete_file(self, file_path: str) -> int:
        """Remove every section of one document."""
        try:
            existing = self._collection.get(where={"file_path": file_path}, include=[])
            count = len(existing["ids"])
            if count:
                self._collection.delete(where={"file_path": file_path})
        except Exception as e:
            raise RagError(f"Failed to delete sections for {file_path}: {e}") from e
        if count:
            logger.info("Deleted %d sections for %s", count, file_path)
        return count

    def indexed_files(self) -> set[str]:
        try:
            results = self._collection.get(include=["metadatas"])
        except Exception as e:
            raise RagError(f"Failed to list indexed files: {e}") from e
        return {str(m.get("file_path", "")) for m in results.get("metadatas") or [] if m}

    def count(self) -> int:
        try:
            return self._collection.count()
        except Exception as e:
            raise RagError(f"Failed to count sections: {e}") from e

    def search(self, query: str, k: int = 5) -> list[RagDocument]:
        """Blocking similarity search; similarity is ``1 / (1 + distance)``.

        Raises:
            RagError: If embedding or the query fails.
        """
        total = self.count()
        if total == 0 or k <= 0:
            return []
        try:
            query_embedding = self._embedder.embed_query(query)
        except EmbeddingError as e:
            raise RagError(f"Failed to embed query: {e}") from e

        try:
            results = self._collection.query(
                query_embeddings=[query_embedding],  # type: ignore[arg-type]
                n_results=min(k, total),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            raise RagError(f"Search failed: {e}") from e

        raw_ids = results.get("ids")
        raw_docs = results.get("documents")
        raw_metas = results.get("metadatas")
        raw_dists = results.get("distances")
        if not raw_ids or not raw_docs or not raw_metas or not raw_dists:
            return []

        docs: list[RagDocument] = []
        for doc_id, doc, meta, dist in zip(
            raw_ids[0], raw_docs[0], raw_metas[0], raw_dists[0], strict=True
        ):
            meta = meta or {}
            docs.append(
                RagDocument(
                    id=doc_id,
                    file_path=str(meta.get("file_path", "")),
                    title=str(meta.get("title", "")),
                    content=doc or "",
                    similarity=1.0 / (1.0 + float(dist)),
                )
            )
        return docs

    async def search_similar_docs(self, query: str, top_k: int) -> list[RagDocument]:
        return await asyncio.to_thread(self.search, query, top_k)
