"""Embedding interface used by the documentation index."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from convodoc.exceptions import EmbeddingError

__all__ = ["BaseEmbedder"]

logger = logging.getLogger(__name__)


class BaseEmbedder(ABC):
    """Turns documentation sections and search queries into vectors.

    Providers implement :meth:`_embed_batch`; splitting into batches,
    checking the vector count and learning the dimension happen here.

    Args:
        batch_size: Largest batch sent to the provider at once, or
            ``None`` to send everything in one call.
    """

    name: str = "base"

    def __init__(self, batch_size: int | None = None) -> None:
        if batch_size is not None and batch_size < 1:
            raise EmbeddingError(f"batch_size must be >= 1, got {batch_size}")
        self._batch_size = batch_size
        self._dimension: int | None = None

    @abstractmethod
    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed one batch.

        Raises:
            EmbeddingError: If the provider fails.
        """

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed ``texts``; one vector per input, in input order.

        Raises:
            EmbeddingError: If the provider fails or returns the wrong count.
        """
        if not texts:
            return []
        step = self._batch_size or len(texts)
        vectors: list[list[float]] = []
        for start in range(0, len(texts), step):
            batch = texts[start : start + step]
            result = self._embed_batch(batch)
            if len(result) != len(batch):
                raise EmbeddingError(
                    f"{self.name} returned {len(result)} embeddings for {len(batch)} inputs"
                )
            vectors.extend(result)

        if self._dimension is None:
            self._dimension = len(vectors[0])
        logger.debug("Embedded %d texts via %s", len(vectors), self.name)
        return vectors

    def embed_query(self, text: str) -> list[float]:
        return self.embed_texts([text])[0]

    @property
    def dimension(self) -> int:
        """Vector length; probes the provider once if nothing was embedded yet."""
        if self._dimension is None:
            self._dimension = len(self.embed_query("dimension probe"))
        return self._dimension
