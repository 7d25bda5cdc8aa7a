"""Tests for convodoc.llm — Ollama and OpenAI-compatible chat handlers."""

from __future__ import annotations

import json
from unittest.mock import patch
from urllib.error import HTTPError, URLError

import pytest

from convodoc.config import ConvodocConfig
from convodoc.exceptions import LLMError
from convodoc.llm import LLMContext, LLMRequest, OllamaHandler, OpenAICompatHandler
from convodoc.llm.base import extract_json
from convodoc.llm.schemas import ClassificationResponse, CondenseResponse, ProposalResponse
from convodoc.types import UpdateType

_OLLAMA_URLOPEN = _OPENAI_URLOPEN = "convodoc.http.urlopen"

REQUEST = LLMRequest(system_prompt="You are terse.", user_prompt="Say hi.")


class _FakeResponse:
    """Minimal mock for urllib.request.urlopen return value."""

    def __init__(self, data: bytes, status: int = 200) -> None:
        self._data = data
        self.status = status

    def read(self) -> bytes:
        return self._data

    def __enter__(self) -> _FakeResponse:
        return self

    def __exit__(self, *args: object) -> None:
        pass


def _ollama_body(content: str, **extra: object) -> bytes:
    data = {"message": {"role": "assistant", "content": content}, "done": True, **extra}
    return json.dumps(data).encode("utf-8")


def _openai_body(content: str | None, **extra: object) -> bytes:
    data = {
        "model": "gpt-4o-mini-2024",
        "choices": [{"message": {"content": content}, "finish_reason": "stop"}],
        **extra,
    }
    return json.dumps(data).encode("utf-8")


def _config(provider: str = "ollama", **llm: object) -> ConvodocConfig:
    config = ConvodocConfig()
    config.llm.provider = provider
    for key, value in llm.items():
        setattr(config.llm, key, value)
    return config


class _Capture:
    """urlopen replacement that records requests and replays one body."""

    def __init__(self, body: bytes) -> None:
        self.body = body
        self.requests: list = []

    def __call__(self, req, timeout=None):
        self.requests.append((req, timeout))
        return _FakeResponse(self.body)

    @property
    def payload(self) -> dict:
        return json.loads(self.requests[-1][0].data)


# --- extract_json ---


class TestExtractJson:
    def test_plain_json_untouched(self):
        assert extract_json('  {"a": 1}\n') == '{"a": 1}'

    def test_strips_json_fence(self):
        assert extract_json('Here you go:\n```json\n{"a": 1}\n```\nDone.') == '{"a": 1}'

    def test_strips_bare_fence(self):
        assert extract_json('```\n[1, 2]\n```') == "[1, 2]"


# --- OllamaHandler ---


class TestOllamaHandler:
    async def test_request_text(self):
        capture = _Capture(_ollama_body("hi", prompt_eval_count=12, eval_count=3))
        handler = OllamaHandler(_config(base_url="http://gpu-box:11434/", timeout_s=30))
        with patch(_OLLAMA_URLOPEN, side_effect=capture):
            response = await handler.request_text(REQUEST)

        assert response.text == "hi"
        assert response.model == "llama3.2"
        assert response.tokens_used == 15
        req, timeout = capture.requests[0]
        assert req.full_url == "http://gpu-box:11434/api/chat"
        assert timeout == 30
        assert capture.payload["stream"] is False
        assert capture.payload["messages"][0] == {"role": "system", "content": "You are terse."}
        assert "format" not in capture.payload

    async def test_json_mode_and_overrides(self):
        capture = _Capture(_ollama_body('{"threads": []}'))
        handler = OllamaHandler(_config())
        request = LLMRequest("sys", "user", model="qwen2.5", temperature=0.0, max_tokens=256)
        with patch(_OLLAMA_URLOPEN, side_effect=capture):
            result = await handler.request_json(request, ClassificationResponse)

        assert result.data.threads == []
        assert result.response.model == "qwen2.5"
        assert capture.payload["format"] == "json"
        assert capture.payload["options"] == {"temperature": 0.0, "num_predict": 256}

    async def test_unreachable(self):
        handler = OllamaHandler(_config())
        with (
            patch(_OLLAMA_URLOPEN, side_effect=URLError("refused")),
            pytest.raises(LLMError, match="not reachable at http://localhost:11434"),
        ):
            await handler.request_text(REQUEST)

    async def test_http_error(self):
        err = HTTPError("http://localhost:11434/api/chat", 404, "model not found", {}, None)  # type: ignore[arg-type]
        handler = OllamaHandler(_config())
        with (
            patch(_OLLAMA_URLOPEN, side_effect=err),
            pytest.raises(LLMError, match="HTTP 404"),
        ):
            await handler.request_text(REQUEST)

    async def test_missing_message(self):
        handler = OllamaHandler(_config())
        body = json.dumps({"done": True}).encode("utf-8")
        with (
            patch(_OLLAMA_URLOPEN, return_value=_FakeResponse(body)),
            pytest.raises(LLMError, match="missing message content"),
        ):
            await handler.request_text(REQUEST)

    def test_model_info_and_cost(self):
        handler = OllamaHandler(_config())
        info = handler.get_model_info()
        assert info.provider == "ollama"
        estimate = handler.estimate_cost(LLMRequest("a" * 40, "b" * 40))
        assert estimate.input_tokens == 20
        assert estimate.output_tokens == info.max_output_tokens
        assert estimate.estimated_cost_usd == 0.0


# --- request_json validation ---


class TestRequestJson:
    async def test_fenced_response_is_validated(self):
        content = (
            "```json\n"
            + json.dumps(
                {
                    "proposals": [
                        {
                            "update_type": "INSERT",
                            "page": "docs/reset.md",
                            "suggested_text": "Hold the button.",
                            "source_messages": [0, 2],
                        }
                    ]
                }
            )
            + "\n```"
        )
        handler = OllamaHandler(_config())
        with patch(_OLLAMA_URLOPEN, return_value=_FakeResponse(_ollama_body(content))):
            result = await handler.request_json(
                REQUEST, ProposalResponse, LLMContext(batch_id="b1", purpose="generate")
            )

        [proposal] = result.data.proposals
        assert proposal.update_type is UpdateType.INSERT
        assert proposal.source_messages == [0, 2]
        assert result.data.proposals_rejected is False

    async def test_invalid_json_raises(self):
        handler = OllamaHandler(_config())
        with (
            patch(_OLLAMA_URLOPEN, return_value=_FakeResponse(_ollama_body("not json"))),
            pytest.raises(LLMError, match="invalid JSON for classify"),
        ):
            await handler.request_json(
                REQUEST, ClassificationResponse, LLMContext(purpose="classify")
            )

    async def test_schema_mismatch_raises(self):
        bad = json.dumps({"threads": [{"category": "how-to"}]})
        handler = OllamaHandler(_config())
        with (
            patch(_OLLAMA_URLOPEN, return_value=_FakeResponse(_ollama_body(bad))),
            pytest.raises(LLMError, match="ClassificationResponse validation"),
        ):
            await handler.request_json(REQUEST, ClassificationResponse)

    async def test_unknown_update_type_rejected(self):
        bad = json.dumps({"proposals": [{"update_type": "REPLACE", "page": "a.md"}]})
        handler = OllamaHandler(_config())
        with (
            patch(_OLLAMA_URLOPEN, return_value=_FakeResponse(_ollama_body(bad))),
            pytest.raises(LLMError, match="ProposalResponse validation"),
        ):
            await handler.request_json(REQUEST, ProposalResponse)


# --- OpenAICompatHandler ---


class TestOpenAICompatHandler:
    async def test_request_with_bearer_token(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("TEST_LLM_KEY", "sk-test")
        capture = _Capture(_openai_body("hello", usage={"total_tokens": 42}))
        config = _config("openai", model="gpt-4o-mini", api_key_env="TEST_LLM_KEY")
        handler = OpenAICompatHandler(config)
        with patch(_OPENAI_URLOPEN, side_effect=capture):
            response = await handler.request_text(REQUEST)

        assert response.text == "hello"
        assert response.model == "gpt-4o-mini-2024"
        assert response.tokens_used == 42
        assert response.finish_reason == "stop"
        req, _ = capture.requests[0]
        assert req.full_url == "https://api.openai.com/v1/chat/completions"
        assert req.get_header("Authorization") == "Bearer sk-test"
        assert "response_format" not in capture.payload

    async def test_json_mode_and_custom_base_url(self):
        capture = _Capture(_openai_body('{"condensed_content": "short"}'))
        handler = OpenAICompatHandler(_config("openai", base_url="http://proxy:4000/v1/"))
        with patch(_OPENAI_URLOPEN, side_effect=capture):
            await handler.request_text(LLMRequest("s", "u", max_tokens=100))
            assert capture.payload["max_tokens"] == 100
            result = await handler.request_json(REQUEST, CondenseResponse)

        assert result.data.condensed_content == "short"
        assert capture.payload["response_format"] == {"type": "json_object"}
        req, _ = capture.requests[0]
        assert req.full_url == "http://proxy:4000/v1/chat/completions"
        assert req.get_header("Authorization") is None

    def test_missing_key_env_warns(self, monkeypatch, caplog: pytest.LogCaptureFixture):
        monkeypatch.delenv("MISSING_LLM_KEY", raising=False)
        OpenAICompatHandler(_config("openai", api_key_env="MISSING_LLM_KEY"))
        assert "MISSING_LLM_KEY" in caplog.text

    async def test_null_content_becomes_empty(self):
        handler = OpenAICompatHandler(_config("openai"))
        with patch(_OPENAI_URLOPEN, return_value=_FakeResponse(_openai_body(None))):
            response = await handler.request_text(REQUEST)
        assert response.text == ""

    async def test_missing_choices(self):
        handler = OpenAICompatHandler(_config("openai"))
        body = json.dumps({"choices": []}).encode("utf-8")
        with (
            patch(_OPENAI_URLOPEN, return_value=_FakeResponse(body)),
            pytest.raises(LLMError, match="missing choices"),
        ):
            await handler.request_text(REQUEST)

    async def test_invalid_json_body(self):
        handler = OpenAICompatHandler(_config("openai"))
        with (
            patch(_OPENAI_URLOPEN, return_value=_FakeResponse(b"<html>502</html>")),
            pytest.raises(LLMError, match="invalid JSON"),
        ):
            await handler.request_text(REQUEST)

    async def test_http_error(self):
        err = HTTPError("https://api.openai.com/v1", 401, "Unauthorized", {}, None)  # type: ignore[arg-type]
        handler = OpenAICompatHandler(_config("openai"))
        with (
            patch(_OPENAI_URLOPEN, side_effect=err),
            pytest.raises(LLMError, match="HTTP 401"),
        ):
            await handler.request_text(REQUEST)
