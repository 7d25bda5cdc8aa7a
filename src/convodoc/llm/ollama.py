"""Ollama chat provider using the /api/chat endpoint.

Default LLM provider for convodoc: a locally running Ollama server.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from convodoc.exceptions import LLMError
from convodoc.http import post_json
from convodoc.llm.base import BaseLLMHandler, LLMRequest, LLMResponse, ModelInfo

if TYPE_CHECKING:
    from convodoc.config import ConvodocConfig

__all__ = ["OllamaHandler"]

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "http://localhost:11434"


class OllamaHandler(BaseLLMHandler):
    """LLM handler for a local Ollama instance.

    Config fields used::

        [llm]
        provider = "ollama"
        model = "llama3.2"
        base_url = ""       # empty = http://localhost:11434
        timeout_s = 120
    """

    name = "ollama"

    def __init__(self, config: ConvodocConfig) -> None:
        super().__init__(config.llm)
        self._base_url = (config.llm.base_url or _DEFAULT_BASE_URL).rstrip("/")

    def get_model_info(self, model: str | None = None) -> ModelInfo:
        return ModelInfo(
            provider=self.name,
            max_input_tokens=8192,
            max_output_tokens=2048,
            supports_function_calling=False,
            supports_streaming=True,
        )

    def _complete(self, request: LLMRequest, *, json_mode: bool) -> LLMResponse:
        model = request.model or self._model
        payload: dict[str, Any] = {
            "model": model,
            "stream": False,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "options": {"temperature": request.temperature},
        }
        if request.max_tokens:
            payload["options"]["num_predict"] = request.max_tokens
        if json_mode:
            payload["format"] = "json"

        url = f"{self._base_url}/api/chat"
        data = post_json(url, payload, service="Ollama", timeout=self._timeout, error=LLMError)

        try:
            text = data["message"]["content"]
        except (KeyError, TypeError) as e:
            raise LLMError(f"Unexpected response format from {url}: missing message content") from e

        tokens = int(data.get("prompt_eval_count", 0)) + int(data.get("eval_count", 0))
        logger.debug("Ollama %s responded (%d tokens)", model, tokens)
        return LLMResponse(
            text=text,
            model=model,
            tokens_used=tokens,
            finish_reason=str(data.get("done_reason", "")),
        )
