"""Embeddings from a local Ollama server (``/api/embed``)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from convodoc.embed.base import BaseEmbedder
from convodoc.exceptions import EmbeddingError
from convodoc.http import post_json

if TYPE_CHECKING:
    from convodoc.config import ConvodocConfig

__all__ = ["OllamaEmbedder"]

_DEFAULT_BASE_URL = "http://localhost:11434"


class OllamaEmbedder(BaseEmbedder):
    """Config fields used::

        [embedding]
        provider = "ollama"
        model = "nomic-embed-text"
        base_url = ""           # empty = http://localhost:11434
        batch_size = 64
    """

    name = "Ollama"

    def __init__(self, config: ConvodocConfig) -> None:
        super().__init__(config.embedding.batch_size)
        self._model = config.embedding.model
        self._url = f"{(config.embedding.base_url or _DEFAULT_BASE_URL).rstrip('/')}/api/embed"
        self._timeout = config.embedding.timeout_s

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        data = post_json(
            self._url,
            {"model": self._model, "input": texts},
            service=self.name,
            timeout=self._timeout,
            error=EmbeddingError,
        )
        embeddings: list[list[float]] = data.get("embeddings", [])
        return embeddings
