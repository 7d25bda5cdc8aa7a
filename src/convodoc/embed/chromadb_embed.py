"""Embeddings from ChromaDB's bundled ONNX model.

Needs no server or API key; the model is downloaded on first use.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chromadb.utils.embedding_functions import DefaultEmbeddingFunction

from convodoc.embed.base import BaseEmbedder
from convodoc.exceptions import EmbeddingError

if TYPE_CHECKING:
    from convodoc.config import ConvodocConfig

__all__ = ["ChromaDBEmbedder"]

logger = logging.getLogger(__name__)

BUNDLED_MODEL = "all-MiniLM-L6-v2"


class ChromaDBEmbedder(BaseEmbedder):
    """Default provider. ``[embedding] model`` other than the bundled one is ignored."""

    name = "chromadb"

    def __init__(self, config: ConvodocConfig) -> None:
        super().__init__()
        if config.embedding.model and config.embedding.model != BUNDLED_MODEL:
            logger.warning(
                "ChromaDB provider only supports %s, ignoring model=%r",
                BUNDLED_MODEL,
                config.embedding.model,
            )
        try:
            self._ef = DefaultEmbeddingFunction()
        except Exception as e:
            raise EmbeddingError(f"Failed to initialize ChromaDB embedding function: {e}") from e

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = self._ef(texts)
        except Exception as e:
            raise EmbeddingError(f"ChromaDB embedding failed: {e}") from e
        # numpy arrays come back; the index stores plain floats
        return [[float(v) for v in vec] for vec in vectors]
