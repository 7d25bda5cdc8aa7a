"""Abstract LLM handler and request/response types."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, NamedTuple, TypeVar

from pydantic import BaseModel, ValidationError

from convodoc.exceptions import LLMError

if TYPE_CHECKING:
    from convodoc.config import LlmConfig

__all__ = [
    "BaseLLMHandler",
    "CostEstimate",
    "JSONResult",
    "LLMContext",
    "LLMRequest",
    "LLMResponse",
    "ModelInfo",
    "extract_json",
]

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n?```", re.DOTALL)

# Rough characters-per-token ratio used when a provider reports no usage
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class LLMRequest:
    system_prompt: str
    user_prompt: str
    model: str = ""
    temperature: float = 0.2
    max_tokens: int | None = None


@dataclass(frozen=True)
class LLMContext:
    """Tracking information attached to every LLM call."""

    instance_id: str = ""
    batch_id: str = ""
    conversation_id: str = ""
    purpose: str = ""


@dataclass(frozen=True)
class LLMResponse:
    text: str
    model: str
    tokens_used: int = 0
    finish_reason: str = ""
    cached: bool = False


@dataclass(frozen=True)
class ModelInfo:
    provider: str
    max_input_tokens: int
    max_output_tokens: int
    supports_function_calling: bool = False
    supports_streaming: bool = False


@dataclass(frozen=True)
class CostEstimate:
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float


class JSONResult(NamedTuple, Generic[ModelT]):
    data: ModelT
    response: LLMResponse


def extract_json(text: str) -> str:
    """Strip markdown code fences that models like to wrap JSON in."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


class BaseLLMHandler(ABC):
    """Base class for LLM providers.

    Subclasses implement :meth:`_complete`, a blocking call to the provider.
    The async API runs it in a worker thread so the event loop stays free.
    """

    name: str = "base"

    def __init__(self, config: LlmConfig) -> None:
        self._model = config.model
        self._timeout = config.timeout_s

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    def _complete(self, request: LLMRequest, *, json_mode: bool) -> LLMResponse:
        """Send one completion request to the provider.

        Raises:
            LLMError: On connection, HTTP or response-format errors.
        """

    @abstractmethod
    def get_model_info(self, model: str | None = None) -> ModelInfo:
        """Return capabilities of ``model`` (defaults to the configured model)."""

    async def request_text(
        self,
        request: LLMRequest,
        context: LLMContext | None = None,
    ) -> LLMResponse:
        """Generate a plain text response."""
        ctx = context or LLMContext()
        logger.debug("LLM text request (%s) purpose=%s", self.name, ctx.purpose)
        return await asyncio.to_thread(self._complete, request, json_mode=False)

    async def request_json(
        self,
        request: LLMRequest,
        schema: type[ModelT],
        context: LLMContext | None = None,
    ) -> JSONResult[ModelT]:
        """Generate a JSON response validated against a pydantic model.

        Raises:
            LLMError: If the call fails or the response does not match ``schema``.
        """
        ctx = context or LLMContext()
        logger.debug(
            "LLM JSON request (%s) purpose=%s schema=%s",
            self.name,
            ctx.purpose,
            schema.__name__,
        )
        response = await asyncio.to_thread(self._complete, request, json_mode=True)
        raw = extract_json(response.text)
        try:
            data = schema.model_validate(json.loads(raw))
        except json.JSONDecodeError as e:
            raise LLMError(f"{self.name} returned invalid JSON for {ctx.purpose}: {e}") from e
        except ValidationError as e:
            raise LLMError(
                f"{self.name} response failed {schema.__name__} validation: {e}"
            ) from e
        return JSONResult(data=data, response=response)

    def estimate_cost(self, request: LLMRequest) -> CostEstimate:
        """Estimate token usage from prompt length. Local providers report zero cost."""
        input_tokens = (len(request.system_prompt) + len(request.user_prompt)) // CHARS_PER_TOKEN
        output_tokens = request.max_tokens or self.get_model_info().max_output_tokens
        return CostEstimate(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=0.0,
        )
