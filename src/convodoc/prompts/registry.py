"""Prompt template registry.

Templates are markdown files with TOML front matter between ``+++`` lines
and two sections, ``# System Prompt`` and ``# User Prompt``. Built-in
templates ship in ``convodoc/prompts/templates/``; files with the same id
in the project's ``.convodoc/prompts/`` override them.

Variables use Jinja2 syntax (``{{ name }}``). A variable missing at render
time keeps its placeholder and logs a warning instead of failing.
"""

from __future__ import annotations

import logging
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple

import jinja2
import jinja2.meta

from convodoc.exceptions import PromptError

__all__ = [
    "PromptMetadata",
    "PromptRegistry",
    "PromptTemplate",
    "RenderedPrompt",
    "TemplateValidation",
    "parse_prompt_file",
]

logger = logging.getLogger(__name__)

_FRONT_MATTER = re.compile(r"\A\+\+\+\s*\n(.*?)\n\+\+\+\s*\n", re.DOTALL)
_SYSTEM_SECTION = re.compile(r"^# System Prompt\s*\n(.*?)(?=^# User Prompt|\Z)", re.I | re.M | re.S)
_USER_SECTION = re.compile(r"^# User Prompt\s*\n(.*)\Z", re.I | re.M | re.S)


@dataclass(frozen=True)
class PromptMetadata:
    description: str = ""
    author: str = ""
    required_variables: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class PromptTemplate:
    id: str
    system: str
    user: str
    version: str = "1.0.0"
    metadata: PromptMetadata = field(default_factory=PromptMetadata)
    source: str = ""


class RenderedPrompt(NamedTuple):
    system: str
    user: str
    variables: dict[str, Any]


class TemplateValidation(NamedTuple):
    valid: bool
    errors: list[str]
    warnings: list[str]


def parse_prompt_file(content: str, prompt_id: str, source: str = "") -> PromptTemplate:
    """Parse a prompt markdown file.

    Args:
        content: File contents.
        prompt_id: Id to use when the front matter does not set one.
        source: Where the file came from, for diagnostics.

    Raises:
        PromptError: If the front matter is not valid TOML.
    """
    meta: dict[str, Any] = {}
    body = content
    match = _FRONT_MATTER.match(content)
    if match:
        try:
            meta = tomllib.loads(match.group(1))
        except tomllib.TOMLDecodeError as e:
            raise PromptError(f"Invalid front matter in prompt {prompt_id}: {e}") from e
        body = content[match.end() :]

    system_match = _SYSTEM_SECTION.search(body)
    user_match = _USER_SECTION.search(body)
    system = system_match.group(1).strip() if system_match else ""
    user = user_match.group(1).strip() if user_match else ""
    if not system and not user:
        user = body.strip()

    return PromptTemplate(
        id=str(meta.get("id") or prompt_id),
        version=str(meta.get("version", "1.0.0")),
        system=system,
        user=user,
        metadata=PromptMetadata(
            description=str(meta.get("description", "")),
            author=str(meta.get("author", "")),
            required_variables=tuple(meta.get("required_variables", ())),
            tags=tuple(meta.get("tags", ())),
        ),
        source=source,
    )


class _PlaceholderUndefined(jinja2.DebugUndefined):
    """Render a missing variable as its ``{{ name }}`` placeholder."""

    def __str__(self) -> str:
        logger.warning("Variable {{ %s }} not provided, leaving placeholder", self._undefined_name)
        return super().__str__()


class PromptRegistry:
    """Load, look up and render prompt templates.

    Search order (later wins):
      1. built-in templates packaged with convodoc
      2. ``user_dir`` (e.g. ``.convodoc/prompts/``), if it exists

    Args:
        user_dir: Optional directory of override templates.
        builtin_dir: Override the built-in directory (tests).
    """

    def __init__(self, user_dir: Path | None = None, builtin_dir: Path | None = None) -> None:
        if builtin_dir is None:
            from importlib.resources import files

            builtin_dir = Path(str(files("convodoc") / "prompts" / "templates"))
        self._builtin_dir = builtin_dir
        self._user_dir = user_dir
        self._templates: dict[str, PromptTemplate] = {}
        self._env = jinja2.Environment(
            autoescape=False,
            undefined=_PlaceholderUndefined,
            keep_trailing_newline=False,
        )
        self.load()

    def load(self) -> None:
        """(Re)read every template from disk."""
        if not self._builtin_dir.is_dir():
            logger.debug("Expected prompt dir at: %s", self._builtin_dir)
            raise PromptError("Built-in prompt directory not found, installation may be corrupted")
        self._templates = {}
        self._load_dir(self._builtin_dir)
        if self._user_dir is not None and self._user_dir.is_dir():
            self._load_dir(self._user_dir)
            logger.info("User prompt overrides enabled: %s", self._user_dir)
        logger.info("Loaded %d prompt templates", len(self._templates))

    def _load_dir(self, directory: Path) -> None:
        for path in sorted(directory.glob("*.md")):
            try:
                template = parse_prompt_file(
                    path.read_text(encoding="utf-8"), path.stem, source=str(path)
                )
            except (OSError, PromptError) as e:
                logger.warning("Skipping prompt file %s: %s", path, e)
                continue
            self._templates[template.id] = template
            logger.debug("Loaded prompt %s from %s", template.id, directory)

    def reload(self) -> None:
        logger.info("Reloading prompt templates")
        self.load()

    def add(self, template: PromptTemplate) -> None:
        """Register a template in memory (not persisted)."""
        self._templates[template.id] = template

    def get(self, prompt_id: str) -> PromptTemplate | None:
        return self._templates.get(prompt_id)

    def list(self) -> list[PromptTemplate]:
        return [self._templates[k] for k in sorted(self._templates)]

    def render(self, prompt_id: str, variables: dict[str, Any]) -> RenderedPrompt:
        """Render a template's system and user prompts.

        Raises:
            PromptError: If the template is unknown or fails to render.
        """
        template = self.get(prompt_id)
        if template is None:
            raise PromptError(f"Prompt template not found: {prompt_id}")

        missing = [v for v in template.metadata.required_variables if v not in variables]
        if missing:
            logger.warning(
                "Missing required variables for %s: %s", prompt_id, ", ".join(missing)
            )

        try:
            system = self._env.from_string(template.system).render(**variables)
            user = self._env.from_string(template.user).render(**variables)
        except jinja2.TemplateError as e:
            raise PromptError(f"Failed to render prompt {prompt_id}: {e}") from e
        return RenderedPrompt(system=system, user=user, variables=dict(variables))

    def validate(self, template: PromptTemplate) -> TemplateValidation:
        """Check a template for syntax errors and undeclared or unused variables."""
        errors: list[str] = []
        warnings: list[str] = []
        if not template.id:
            errors.append("Template missing id")
        if not template.user:
            errors.append("Template missing user prompt")

        used: set[str] = set()
        for part, text in (("system", template.system), ("user", template.user)):
            try:
                used |= jinja2.meta.find_undeclared_variables(self._env.parse(text))
            except jinja2.TemplateSyntaxError as e:
                errors.append(f"Syntax error in {part} prompt: {e}")

        declared = set(template.metadata.required_variables)
        undeclared = sorted(used - declared)
        if undeclared:
            warnings.append(f"Variables used but not declared: {', '.join(undeclared)}")
        unused = sorted(declared - used)
        if unused:
            warnings.append(f"Variables declared but not used: {', '.join(unused)}")

        return TemplateValidation(valid=not errors, errors=errors, warnings=warnings)
