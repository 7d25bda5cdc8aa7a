"""Shared fixtures for convodoc tests."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest

from convodoc.config import ConvodocConfig, DomainConfig, LlmConfig, save_config
from convodoc.exceptions import LLMError
from convodoc.llm.base import BaseLLMHandler, LLMRequest, LLMResponse, ModelInfo
from convodoc.project import CONFIG_FILE, PROJECT_DIR
from convodoc.prompts.registry import PromptRegistry
from convodoc.types import UnifiedMessage

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class MockLLMHandler(BaseLLMHandler):
    """Returns scripted responses in order; an Exception entry is raised instead."""

    name = "mock"

    def __init__(self, responses: list[Any] | None = None) -> None:
        super().__init__(LlmConfig(provider="mock", model="mock-model"))
        self.responses = list(responses or [])
        self.requests: list[LLMRequest] = []

    def _complete(self, request: LLMRequest, *, json_mode: bool) -> LLMResponse:
        self.requests.append(request)
        if not self.responses:
            raise LLMError("No scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        text = item if isinstance(item, str) else json.dumps(item)
        return LLMResponse(text=text, model="mock-model", tokens_used=10)

    def get_model_info(self, model: str | None = None) -> ModelInfo:
        return ModelInfo(provider="mock", max_input_tokens=4096, max_output_tokens=1024)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A temporary directory simulating a project root."""
    return tmp_path


@pytest.fixture
def initialized_project(tmp_path: Path) -> Path:
    """A temporary project with .convodoc/ already initialized."""
    root = tmp_path / PROJECT_DIR
    root.mkdir()
    for subdir in ("index", "prompts", "inbox"):
        (root / subdir).mkdir()

    config = ConvodocConfig()
    config.project.name = "test-project"
    config.domain.context.project_name = "test-project"
    save_config(config, root / CONFIG_FILE)
    return tmp_path


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def make_message() -> Callable[..., UnifiedMessage]:
    """Factory: ``make_message(minutes, content=..., stream_id=...)``."""

    def _make(
        minutes: float,
        content: str = "hello",
        stream_id: str = "s1",
        message_id: str | None = None,
        author: str = "alice",
    ) -> UnifiedMessage:
        return UnifiedMessage(
            stream_id=stream_id,
            message_id=message_id or f"{stream_id}-{minutes}",
            timestamp=T0 + timedelta(minutes=minutes),
            author=author,
            content=content,
        )

    return _make


@pytest.fixture
def mock_llm() -> Callable[..., MockLLMHandler]:
    """Factory: ``mock_llm([response, ...])``."""
    return MockLLMHandler


@pytest.fixture
def prompts() -> PromptRegistry:
    return PromptRegistry()


@pytest.fixture
def domain() -> DomainConfig:
    d = DomainConfig()
    d.context.project_name = "Acme"
    d.context.domain = "home automation"
    return d
