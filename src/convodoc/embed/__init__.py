"""Embedding providers for documentation retrieval."""

from __future__ import annotations

from typing import TYPE_CHECKING

from convodoc.embed.base import BaseEmbedder
from convodoc.embed.ollama import OllamaEmbedder
from convodoc.embed.openai_compat import OpenAICompatEmbedder
from convodoc.registry import default_registry

if TYPE_CHECKING:
    from convodoc.config import ConvodocConfig

__all__ = ["BaseEmbedder", "OllamaEmbedder", "OpenAICompatEmbedder", "create_embedder"]


def _chromadb_embedder(cfg: ConvodocConfig) -> BaseEmbedder:
    # Imported lazily: loading the ONNX runtime is slow.
    from convodoc.embed.chromadb_embed import ChromaDBEmbedder

    return ChromaDBEmbedder(cfg)


default_registry.register("embedding", "ollama", lambda cfg: OllamaEmbedder(cfg))
default_registry.register("embedding", "openai", lambda cfg: OpenAICompatEmbedder(cfg))
default_registry.register("embedding", "chromadb", _chromadb_embedder)


def create_embedder(config: ConvodocConfig) -> BaseEmbedder:
    """Build the embedding provider named by ``config.embedding.provider``."""
    embedder: BaseEmbedder = default_registry.create(
        "embedding", config.embedding.provider, config
    )
    return embedder
