"""Configuration system for convodoc.

Manages project configuration via .convodoc/config.toml with typed
dataclasses and sensible defaults for all values. The ``[pipeline]``
section carries the ordered step list and error-handling policy the
orchestrator runs; ``[domain]`` carries the classification taxonomy and
prompt context the steps read.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

import tomli_w

from convodoc.exceptions import ConfigError

if TYPE_CHECKING:
    from pathlib import Path

_T = TypeVar("_T")

__all__ = [
    "CategoryDefinition",
    "ConvodocConfig",
    "DomainConfig",
    "DomainContext",
    "EmbeddingConfig",
    "ErrorHandlingConfig",
    "KeywordFilter",
    "LlmConfig",
    "PathFilter",
    "PerformanceConfig",
    "PipelineConfig",
    "ProjectConfig",
    "RagConfig",
    "SchedulerConfig",
    "SecurityConfig",
    "StepConfig",
    "StoreConfig",
    "default_config",
    "default_pipeline_steps",
    "load_config",
    "save_config",
    "validate_config",
]

logger = logging.getLogger(__name__)

MAX_RETRY_ATTEMPTS = 10


@dataclass
class ProjectConfig:
    """[project] section."""

    name: str = ""
    description: str = ""
    instance_id: str = "default"


@dataclass
class SchedulerConfig:
    """[scheduler] section."""

    window_hours: float = 24.0
    context_window_hours: float = 24.0
    max_batch_size: int = 30
    context_limit: int = 100
    test_stream_id: str = "pipeline-test"


@dataclass
class StepConfig:
    """One entry of ``[[pipeline.steps]]``."""

    step_id: str
    step_type: str
    enabled: bool = True
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorHandlingConfig:
    """[pipeline.error_handling] section."""

    stop_on_error: bool = False
    retry_attempts: int = 3
    retry_delay_ms: int = 5000


@dataclass
class PerformanceConfig:
    """[pipeline.performance] section.

    ``timeout_ms`` is advisory: steps may read it, the orchestrator does
    not enforce it.
    """

    max_concurrent_steps: int = 1
    timeout_ms: int = 300_000
    enable_caching: bool = True


def default_pipeline_steps() -> list[StepConfig]:
    """Return the built-in filter → classify → enrich → generate → validate → condense chain."""
    return [
        StepConfig(
            step_id="keyword-filter",
            step_type="filter",
            config={"include_keywords": [], "exclude_keywords": [], "case_sensitive": False},
        ),
        StepConfig(
            step_id="batch-classify",
            step_type="classify",
            config={"prompt_id": "thread-classification", "temperature": 0.2},
        ),
        StepConfig(
            step_id="rag-enrich",
            step_type="enrich",
            config={"top_k": 5, "min_similarity": 0.7, "deduplicate_translations": True},
        ),
        StepConfig(
            step_id="proposal-generate",
            step_type="generate",
            config={
                "prompt_id": "changeset-generation",
                "temperature": 0.4,
                "max_proposals_per_thread": 5,
            },
        ),
        StepConfig(
            step_id="content-validate",
            step_type="validate",
            enabled=False,
            config={"prompt_id": "content-reformat", "max_retries": 2, "skip_patterns": []},
        ),
        StepConfig(
            step_id="length-reduce",
            step_type="condense",
            enabled=False,
            config={
                "prompt_id": "content-condense",
                "default_max_length": 3000,
                "default_target_length": 2000,
            },
        ),
    ]


@dataclass
class PipelineConfig:
    """[pipeline] section."""

    pipeline_id: str = "default-v1"
    description: str = "Default documentation analysis pipeline"
    steps: list[StepConfig] = field(default_factory=default_pipeline_steps)
    error_handling: ErrorHandlingConfig = field(default_factory=ErrorHandlingConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)


@dataclass
class CategoryDefinition:
    id: str
    label: str
    description: str = ""
    priority: int = 50
    examples: list[str] = field(default_factory=list)


@dataclass
class KeywordFilter:
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    case_sensitive: bool = False


@dataclass
class PathFilter:
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)


@dataclass
class SecurityConfig:
    block_patterns: list[str] = field(default_factory=list)
    require_approval: bool = True
    max_proposals_per_batch: int = 100


@dataclass
class DomainContext:
    project_name: str = ""
    domain: str = ""
    target_audience: str = ""
    documentation_purpose: str = ""


def _default_categories() -> list[CategoryDefinition]:
    return [
        CategoryDefinition(
            id="troubleshooting",
            label="Troubleshooting",
            description="Problems users hit and how they were resolved",
            priority=80,
        ),
        CategoryDefinition(
            id="how-to",
            label="How-to",
            description="Questions about how to accomplish a task",
            priority=60,
        ),
        CategoryDefinition(
            id="feature-change",
            label="Feature change",
            description="Announcements of new, changed or removed behaviour",
            priority=70,
        ),
        CategoryDefinition(
            id="no-doc-value",
            label="No documentation value",
            description="Chatter, greetings and anything not worth documenting",
            priority=0,
        ),
    ]


@dataclass
class DomainConfig:
    """[domain] section."""

    domain_id: str = "default"
    name: str = "Default domain"
    description: str = ""
    categories: list[CategoryDefinition] = field(default_factory=_default_categories)
    keywords: KeywordFilter = field(default_factory=KeywordFilter)
    rag_paths: PathFilter = field(default_factory=PathFilter)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    context: DomainContext = field(default_factory=DomainContext)


@dataclass
class LlmConfig:
    """[llm] section."""

    provider: str = "ollama"
    model: str = "llama3.2"
    base_url: str = ""
    api_key_env: str = ""
    timeout_s: int = 120


@dataclass
class EmbeddingConfig:
    """[embedding] section."""

    provider: str = "chromadb"
    model: str = "all-MiniLM-L6-v2"
    base_url: str = ""
    api_key_env: str = ""
    batch_size: int = 64
    timeout_s: int = 120


@dataclass
class RagConfig:
    """[rag] section."""

    collection_name: str = "docs"
    top_k: int = 5
    docs_dir: str = "docs"
    max_section_chars: int = 4000


@dataclass
class StoreConfig:
    """[store] section."""

    backend: str = "json"
    filename: str = "state.json"


@dataclass
class ConvodocConfig:
    """Root configuration combining all sections."""

    project: ProjectConfig = field(default_factory=ProjectConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    domain: DomainConfig = field(default_factory=DomainConfig)
    llm: LlmConfig = field(default_factory=LlmConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    rag: RagConfig = field(default_factory=RagConfig)
    store: StoreConfig = field(default_factory=StoreConfig)


def default_config() -> ConvodocConfig:
    """Return a config with all default values."""
    return ConvodocConfig()


def save_config(config: ConvodocConfig, path: Path) -> None:
    """Save configuration to a TOML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = asdict(config)
    try:
        with path.open("wb") as f:
            tomli_w.dump(data, f)
        logger.info("Saved config to %s", path)
    except (OSError, TypeError) as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise ConfigError(f"Failed to save config to {path}: {e}") from e


def _load_section(cls: type[_T], data: object) -> _T:
    """Load a flat dataclass section from a dict, ignoring unknown keys."""
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a table for {cls.__name__}, got {type(data).__name__}")
    known_fields = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered = {k: v for k, v in data.items() if k in known_fields}
    try:
        return cls(**filtered)
    except TypeError as e:
        raise ConfigError(f"Invalid {cls.__name__}: {e}") from e


def _load_pipeline(data: dict[str, Any]) -> PipelineConfig:
    pipeline = PipelineConfig()
    for key in ("pipeline_id", "description"):
        if key in data:
            setattr(pipeline, key, str(data[key]))
    if "error_handling" in data:
        pipeline.error_handling = _load_section(ErrorHandlingConfig, data["error_handling"])
    if "performance" in data:
        pipeline.performance = _load_section(PerformanceConfig, data["performance"])
    if "steps" in data:
        pipeline.steps = [_load_section(StepConfig, s) for s in data["steps"]]
    return pipeline


def _load_domain(data: dict[str, Any]) -> DomainConfig:
    domain = DomainConfig()
    for key in ("domain_id", "name", "description"):
        if key in data:
            setattr(domain, key, str(data[key]))
    if "categories" in data:
        domain.categories = [_load_section(CategoryDefinition, c) for c in data["categories"]]
    nested: dict[str, type] = {
        "keywords": KeywordFilter,
        "rag_paths": PathFilter,
        "security": SecurityConfig,
        "context": DomainContext,
    }
    for name, cls in nested.items():
        if name in data:
            setattr(domain, name, _load_section(cls, data[name]))
    return domain


def load_config(path: Path) -> ConvodocConfig:
    """Load configuration from a TOML file.

    Missing sections or keys get default values. The result is validated
    with :func:`validate_config`.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        raw = path.read_bytes()
        data = tomllib.loads(raw.decode("utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        logger.error("Failed to load config from %s: %s", path, e)
        raise ConfigError(f"Failed to load config from {path}: {e}") from e

    config = ConvodocConfig()
    section_map: dict[str, type] = {
        "project": ProjectConfig,
        "scheduler": SchedulerConfig,
        "llm": LlmConfig,
        "embedding": EmbeddingConfig,
        "rag": RagConfig,
        "store": StoreConfig,
    }

    for name, cls in section_map.items():
        if name in data:
            setattr(config, name, _load_section(cls, data[name]))
    if "pipeline" in data:
        config.pipeline = _load_pipeline(data["pipeline"])
    if "domain" in data:
        config.domain = _load_domain(data["domain"])

    validate_config(config)
    logger.info("Loaded config from %s", path)
    return config


def validate_config(config: ConvodocConfig) -> None:
    """Check value ranges and step list consistency.

    Raises:
        ConfigError: On the first invalid value found.
    """
    sched = config.scheduler
    if sched.window_hours <= 0:
        raise ConfigError(f"scheduler.window_hours must be > 0, got {sched.window_hours}")
    if sched.context_window_hours < 0:
        raise ConfigError("scheduler.context_window_hours must be >= 0")
    if sched.max_batch_size < 1:
        raise ConfigError(f"scheduler.max_batch_size must be >= 1, got {sched.max_batch_size}")

    eh = config.pipeline.error_handling
    if not 0 <= eh.retry_attempts <= MAX_RETRY_ATTEMPTS:
        raise ConfigError(
            f"pipeline.error_handling.retry_attempts must be in 0..{MAX_RETRY_ATTEMPTS}, "
            f"got {eh.retry_attempts}"
        )
    if eh.retry_delay_ms < 0:
        raise ConfigError("pipeline.error_handling.retry_delay_ms must be >= 0")

    seen: set[str] = set()
    for step in config.pipeline.steps:
        if not step.step_id or not step.step_type:
            raise ConfigError("Every pipeline step needs a step_id and a step_type")
        if step.step_id in seen:
            raise ConfigError(f"Duplicate pipeline step_id: {step.step_id!r}")
        seen.add(step.step_id)


