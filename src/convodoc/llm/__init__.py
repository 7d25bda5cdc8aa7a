"""LLM handlers: abstract interface and concrete providers."""

from convodoc.llm.base import (
    BaseLLMHandler,
    CostEstimate,
    JSONResult,
    LLMContext,
    LLMRequest,
    LLMResponse,
    ModelInfo,
)
from convodoc.llm.ollama import OllamaHandler
from convodoc.llm.openai_compat import OpenAICompatHandler
from convodoc.registry import default_registry

__all__ = [
    "BaseLLMHandler",
    "CostEstimate",
    "JSONResult",
    "LLMContext",
    "LLMRequest",
    "LLMResponse",
    "ModelInfo",
    "OllamaHandler",
    "OpenAICompatHandler",
]

# Register built-in LLM providers
default_registry.register("llm", "ollama", lambda cfg: OllamaHandler(cfg))
default_registry.register("llm", "openai", lambda cfg: OpenAICompatHandler(cfg))
