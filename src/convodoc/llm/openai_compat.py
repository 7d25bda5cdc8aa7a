"""OpenAI-compatible chat provider.

Works with any server implementing the /v1/chat/completions API:
OpenAI, LiteLLM proxy, vLLM, Ollama (OpenAI-compat mode), etc.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from convodoc.exceptions import LLMError
from convodoc.http import post_json
from convodoc.llm.base import BaseLLMHandler, LLMRequest, LLMResponse, ModelInfo

if TYPE_CHECKING:
    from convodoc.config import ConvodocConfig

__all__ = ["OpenAICompatHandler"]

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatHandler(BaseLLMHandler):
    """LLM handler for any OpenAI-compatible chat completions endpoint.

    Config fields used::

        [llm]
        provider = "openai"
        model = "gpt-4o-mini"
        api_key_env = "OPENAI_API_KEY"   # env var name; empty = no auth
        base_url = ""                     # empty = https://api.openai.com/v1
    """

    name = "openai"

    def __init__(self, config: ConvodocConfig) -> None:
        super().__init__(config.llm)
        self._base_url = (config.llm.base_url or _DEFAULT_BASE_URL).rstrip("/")

        self._api_key: str | None = None
        if config.llm.api_key_env:
            self._api_key = os.environ.get(config.llm.api_key_env)
            if not self._api_key:
                logger.warning(
                    "API key env var %s is not set; requests may fail",
                    config.llm.api_key_env,
                )

    def get_model_info(self, model: str | None = None) -> ModelInfo:
        return ModelInfo(
            provider=self.name,
            max_input_tokens=128_000,
            max_output_tokens=4096,
            supports_function_calling=True,
            supports_streaming=True,
        )

    def _complete(self, request: LLMRequest, *, json_mode: bool) -> LLMResponse:
        model = request.model or self._model
        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "temperature": request.temperature,
        }
        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        url = f"{self._base_url}/chat/completions"
        data = post_json(
            url,
            payload,
            service="LLM API",
            timeout=self._timeout,
            api_key=self._api_key,
            error=LLMError,
        )

        try:
            choice = data["choices"][0]
            text = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Unexpected response format from {url}: missing choices") from e

        usage = data.get("usage") or {}
        return LLMResponse(
            text=text or "",
            model=str(data.get("model", model)),
            tokens_used=int(usage.get("total_tokens", 0)),
            finish_reason=str(choice.get("finish_reason") or ""),
        )
