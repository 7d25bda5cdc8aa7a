"""Embeddings from any OpenAI-compatible ``/embeddings`` endpoint.

Covers OpenAI itself plus proxies and local servers speaking the same
API (LiteLLM, vLLM, Ollama in compat mode).
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from convodoc.embed.base import BaseEmbedder
from convodoc.exceptions import EmbeddingError
from convodoc.http import post_json

if TYPE_CHECKING:
    from convodoc.config import ConvodocConfig

__all__ = ["OpenAICompatEmbedder"]

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatEmbedder(BaseEmbedder):
    """Config fields used::

        [embedding]
        provider = "openai"
        model = "text-embedding-3-small"
        api_key_env = "OPENAI_API_KEY"   # env var name; empty = no auth
        base_url = ""                     # empty = https://api.openai.com/v1
    """

    name = "Embedding API"

    def __init__(self, config: ConvodocConfig) -> None:
        super().__init__(config.embedding.batch_size)
        self._model = config.embedding.model
        self._url = f"{(config.embedding.base_url or _DEFAULT_BASE_URL).rstrip('/')}/embeddings"
        self._timeout = config.embedding.timeout_s
        self._api_key = _api_key_from_env(config.embedding.api_key_env)

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        data = post_json(
            self._url,
            {"model": self._model, "input": texts},
            service=self.name,
            timeout=self._timeout,
            api_key=self._api_key,
            error=EmbeddingError,
        )
        items = data.get("data", [])
        # The API may answer out of order; "index" ties each vector to its input.
        if items and all("index" in item for item in items):
            items = sorted(items, key=lambda item: item["index"])
        try:
            return [item["embedding"] for item in items]
        except (KeyError, TypeError) as e:
            raise EmbeddingError(
                f"Unexpected response format from {self._url}: missing 'embedding' field"
            ) from e


def _api_key_from_env(env_var: str) -> str | None:
    if not env_var:
        return None
    key = os.environ.get(env_var)
    if not key:
        logger.warning("API key env var %s is not set; requests may fail", env_var)
    return key
