"""Prompt templates for the LLM-backed pipeline steps."""

from convodoc.prompts.registry import (
    PromptMetadata,
    PromptRegistry,
    PromptTemplate,
    RenderedPrompt,
    TemplateValidation,
    parse_prompt_file,
)

__all__ = [
    "PromptMetadata",
    "PromptRegistry",
    "PromptTemplate",
    "RenderedPrompt",
    "TemplateValidation",
    "parse_prompt_file",
]
