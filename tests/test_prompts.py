"""Tests for convodoc.prompts — template parsing, overrides and rendering."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from convodoc.exceptions import PromptError
from convodoc.prompts import PromptMetadata, PromptRegistry, PromptTemplate, parse_prompt_file

if TYPE_CHECKING:
    from pathlib import Path

BUILTIN_IDS = [
    "changeset-generation",
    "content-condense",
    "content-reformat",
    "thread-classification",
]

SAMPLE = """+++
id = "greeting"
version = "2.1.0"
description = "Say hello"
required_variables = ["name"]
tags = ["demo"]
+++

# System Prompt

You are polite.

# User Prompt

Hello {{ name }}!
"""


class TestParsePromptFile:
    def test_front_matter_and_sections(self):
        template = parse_prompt_file(SAMPLE, "fallback", source="x.md")
        assert template.id == "greeting"
        assert template.version == "2.1.0"
        assert template.system == "You are polite."
        assert template.user == "Hello {{ name }}!"
        assert template.metadata.required_variables == ("name",)
        assert template.metadata.tags == ("demo",)
        assert template.source == "x.md"

    def test_no_front_matter_uses_file_id(self):
        template = parse_prompt_file("# User Prompt\n\nJust {{ this }}", "plain")
        assert template.id == "plain"
        assert template.version == "1.0.0"
        assert template.system == ""
        assert template.user == "Just {{ this }}"

    def test_body_without_sections_is_user_prompt(self):
        template = parse_prompt_file("Summarize {{ text }}.", "bare")
        assert template.user == "Summarize {{ text }}."

    def test_invalid_front_matter_raises(self):
        with pytest.raises(PromptError, match="Invalid front matter"):
            parse_prompt_file("+++\nid = \n+++\nbody", "broken")


class TestBuiltinTemplates:
    def test_all_builtins_loaded(self, prompts: PromptRegistry):
        assert [t.id for t in prompts.list()] == BUILTIN_IDS

    @pytest.mark.parametrize("prompt_id", BUILTIN_IDS)
    def test_builtins_are_valid(self, prompts: PromptRegistry, prompt_id: str):
        template = prompts.get(prompt_id)
        assert template is not None
        assert template.system
        result = prompts.validate(template)
        assert result.valid, result.errors
        assert result.warnings == []

    def test_missing_builtin_dir_raises(self, tmp_path: Path):
        with pytest.raises(PromptError, match="Built-in prompt directory not found"):
            PromptRegistry(builtin_dir=tmp_path / "missing")


class TestOverrides:
    def test_user_dir_overrides_builtin(self, tmp_path: Path):
        user_dir = tmp_path / "prompts"
        user_dir.mkdir()
        (user_dir / "thread-classification.md").write_text(
            "# User Prompt\n\nCustom {{ messages_to_analyze }}", encoding="utf-8"
        )
        registry = PromptRegistry(user_dir=user_dir)
        template = registry.get("thread-classification")
        assert template is not None
        assert template.user == "Custom {{ messages_to_analyze }}"
        assert len(registry.list()) == len(BUILTIN_IDS)

    def test_broken_user_file_skipped(self, tmp_path: Path):
        user_dir = tmp_path / "prompts"
        user_dir.mkdir()
        (user_dir / "bad.md").write_text("+++\n= nope\n+++\n", encoding="utf-8")
        registry = PromptRegistry(user_dir=user_dir)
        assert registry.get("bad") is None

    def test_reload_picks_up_new_files(self, tmp_path: Path):
        user_dir = tmp_path / "prompts"
        user_dir.mkdir()
        registry = PromptRegistry(user_dir=user_dir)
        (user_dir / "extra.md").write_text("Extra {{ x }}", encoding="utf-8")
        assert registry.get("extra") is None
        registry.reload()
        assert registry.get("extra") is not None


class TestRender:
    def test_render_substitutes_variables(self, prompts: PromptRegistry):
        prompts.add(parse_prompt_file(SAMPLE, "greeting"))
        rendered = prompts.render("greeting", {"name": "Ada"})
        assert rendered.system == "You are polite."
        assert rendered.user == "Hello Ada!"
        assert rendered.variables == {"name": "Ada"}

    def test_missing_variable_keeps_placeholder(
        self, prompts: PromptRegistry, caplog: pytest.LogCaptureFixture
    ):
        prompts.add(parse_prompt_file(SAMPLE, "greeting"))
        with caplog.at_level(logging.WARNING, logger="convodoc.prompts.registry"):
            rendered = prompts.render("greeting", {})
        assert rendered.user == "Hello {{ name }}!"
        assert "Missing required variables" in caplog.text

    def test_unknown_prompt_raises(self, prompts: PromptRegistry):
        with pytest.raises(PromptError, match="not found"):
            prompts.render("nope", {})

    def test_render_builtin_classification(self, prompts: PromptRegistry):
        rendered = prompts.render(
            "thread-classification",
            {
                "project_name": "Acme",
                "domain": "home automation",
                "categories": "- how-to",
                "messages_to_analyze": "[0] alice: hi",
                "context_text": "(No messages)",
            },
        )
        assert "Acme" in rendered.system
        assert "[0] alice: hi" in rendered.user
        assert "{{" not in rendered.system + rendered.user


class TestValidate:
    def test_reports_missing_user_prompt(self, prompts: PromptRegistry):
        result = prompts.validate(PromptTemplate(id="x", system="sys", user=""))
        assert not result.valid
        assert "Template missing user prompt" in result.errors

    def test_reports_syntax_error(self, prompts: PromptRegistry):
        result = prompts.validate(PromptTemplate(id="x", system="", user="{{ broken"))
        assert not result.valid
        assert result.errors[0].startswith("Syntax error in user prompt")

    def test_warns_on_undeclared_and_unused(self, prompts: PromptRegistry):
        template = PromptTemplate(
            id="x",
            system="",
            user="{{ a }}",
            metadata=PromptMetadata(required_variables=("b",)),
        )
        result = prompts.validate(template)
        assert result.valid
        assert result.warnings == [
            "Variables used but not declared: a",
            "Variables declared but not used: b",
        ]
