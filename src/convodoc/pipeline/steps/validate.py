"""Check proposal text against its target file format and repair it with the LLM."""

from __future__ import annotations

import dataclasses
import json
import re
import tomllib
from typing import TYPE_CHECKING, NamedTuple

from convodoc.llm.schemas import ReformatResponse
from convodoc.pipeline.steps.base import BasePipelineStep
from convodoc.types import StepType, UpdateType

if TYPE_CHECKING:
    from convodoc.config import StepConfig
    from convodoc.llm.base import BaseLLMHandler
    from convodoc.pipeline.context import PipelineContext
    from convodoc.types import Proposal

__all__ = ["ContentValidationStep", "ValidationResult", "file_type_for", "validate_content"]

DEFAULT_PROMPT_ID = "content-reformat"

_EXTENSIONS = {
    "md": "markdown",
    "mdx": "markdown",
    "json": "json",
    "toml": "toml",
    "html": "html",
    "htm": "html",
    "xml": "xml",
    "txt": "text",
}

_FENCED_RE = re.compile(r"```.*?```", re.DOTALL)
_BROKEN_LINK_RE = re.compile(r"\]\([^)]*$", re.MULTILINE)
_TABLE_ROW_RE = re.compile(r"^\|[^|]+\|", re.MULTILINE)
_TABLE_SEP_RE = re.compile(r"^\|[\s\-:|]+\|\s*$", re.MULTILINE)
_OPEN_TAG_RE = re.compile(r"<[a-zA-Z][^>]*(?<!/)>")
_CLOSE_TAG_RE = re.compile(r"</[a-zA-Z][^>]*>")


class ValidationResult(NamedTuple):
    valid: bool
    error: str = ""


def file_type_for(page: str) -> str:
    ext = page.rsplit(".", 1)[-1].lower() if "." in page else ""
    return _EXTENSIONS.get(ext, "markdown")


def _validate_markdown(content: str) -> ValidationResult:
    errors = []
    if content.count("```") % 2:
        errors.append("Unbalanced code blocks (odd number of ``` markers)")
    inline = _FENCED_RE.sub("", content)
    if len(re.findall(r"(?<!\\)`", inline)) % 2:
        errors.append("Unbalanced inline code markers")
    if _BROKEN_LINK_RE.search(content):
        errors.append("Incomplete markdown links detected")
    if _TABLE_ROW_RE.search(content) and not _TABLE_SEP_RE.search(content):
        errors.append("Table rows without a header separator row (|---|---|)")
    return ValidationResult(not errors, "; ".join(errors))


def validate_content(content: str, file_type: str) -> ValidationResult:
    if file_type == "markdown":
        return _validate_markdown(content)
    if file_type == "json":
        try:
            json.loads(content)
        except json.JSONDecodeError as e:
            return ValidationResult(False, f"JSON parse error: {e}")
    elif file_type == "toml":
        try:
            tomllib.loads(content)
        except tomllib.TOMLDecodeError as e:
            return ValidationResult(False, f"TOML parse error: {e}")
    elif file_type in ("html", "xml"):
        opened = len(_OPEN_TAG_RE.findall(content))
        closed = len(_CLOSE_TAG_RE.findall(content))
        if opened != closed:
            return ValidationResult(
                False, f"Unbalanced tags: {opened} open tags, {closed} close tags"
            )
    return ValidationResult(True)


class ContentValidationStep(BasePipelineStep):
    """Validate each proposal's ``suggested_text`` for its page's file type.

    Invalid text is sent to the LLM for reformatting up to ``max_retries``
    times. If it still fails, the proposal is kept with a warning.
    """

    step_type = StepType.VALIDATE
    description = "Validates proposal content format and repairs it with the LLM"

    def __init__(self, config: StepConfig, llm_handler: BaseLLMHandler | None = None) -> None:
        super().__init__(config, llm_handler)
        self.max_retries = int(config.config.get("max_retries", 2))
        self.skip_patterns = [
            re.compile(p, re.IGNORECASE) for p in config.config.get("skip_patterns") or []
        ]

    async def execute(self, context: PipelineContext) -> PipelineContext:
        self.require_llm()
        checked = reformatted = failed = 0

        for thread_id, proposals in context.proposals.items():
            result: list[Proposal] = []
            for proposal in proposals:
                if (
                    not proposal.suggested_text
                    or proposal.update_type in (UpdateType.DELETE, UpdateType.NONE)
                    or any(p.search(proposal.page) for p in self.skip_patterns)
                ):
                    result.append(proposal)
                    continue
                updated, was_reformatted, ok = await self._validate(context, proposal)
                result.append(updated)
                checked += 1
                reformatted += was_reformatted
                failed += not ok
            context.proposals[thread_id] = result

        self.logger.info(
            "Content validation complete: %d validated, %d reformatted, %d failed",
            checked,
            reformatted,
            failed,
        )
        return context

    async def _validate(
        self,
        context: PipelineContext,
        proposal: Proposal,
    ) -> tuple[Proposal, bool, bool]:
        file_type = file_type_for(proposal.page)
        content = proposal.suggested_text or ""
        was_reformatted = False
        last_error = ""

        for attempt in range(self.max_retries + 1):
            check = validate_content(content, file_type)
            if check.valid:
                warnings = proposal.warnings
                if was_reformatted:
                    warnings += ("Content was reformatted by LLM",)
                return (
                    dataclasses.replace(proposal, suggested_text=content, warnings=warnings),
                    was_reformatted,
                    True,
                )
            last_error = check.error
            if attempt == self.max_retries:
                break
            self.logger.debug(
                "Validation failed for %s (attempt %d/%d): %s",
                proposal.page,
                attempt + 1,
                self.max_retries + 1,
                check.error,
            )
            try:
                data = await self.call_llm_json(
                    context,
                    self.get_config_value("prompt_id", DEFAULT_PROMPT_ID),
                    {"file_type": file_type, "validation_error": check.error, "content": content},
                    ReformatResponse,
                    purpose="reformat",
                    label=f"Reformat: {proposal.page}",
                )
            except Exception as e:
                self.logger.error("LLM reformat failed for %s: %s", proposal.page, e)
                break
            content = data.reformatted_content
            was_reformatted = True

        self.logger.warning("Content validation failed for %s: %s", proposal.page, last_error)
        return (
            dataclasses.replace(
                proposal,
                warnings=proposal.warnings
                + (f"Validation failed after {self.max_retries + 1} attempts: {last_error}",),
            ),
            was_reformatted,
            False,
        )

    def validate_config(self, config: StepConfig) -> bool:
        if not super().validate_config(config):
            return False
        retries = config.config.get("max_retries")
        if retries is not None and (not isinstance(retries, int) or retries < 0):
            self.logger.error("max_retries must be a non-negative integer")
            return False
        return True
