"""Custom exception hierarchy for convodoc."""

__all__ = [
    "CommitError",
    "ConfigError",
    "ConvodocError",
    "EmbeddingError",
    "IngestError",
    "LLMError",
    "PipelineError",
    "PluginError",
    "ProjectError",
    "PromptError",
    "RagError",
    "StepConfigError",
    "StepError",
    "StoreError",
]


class ConvodocError(Exception):
    """Base exception for all convodoc errors."""


class ConfigError(ConvodocError):
    """Raised when configuration loading or validation fails."""


class ProjectError(ConvodocError):
    """Raised when project initialization or discovery fails."""


class StoreError(ConvodocError):
    """Raised when message, watermark, proposal or run-log persistence fails."""


class CommitError(StoreError):
    """Raised when a successful batch cannot be committed to the store."""


class StepError(ConvodocError):
    """Raised by a pipeline step when its work cannot be completed."""


class StepConfigError(StepError):
    """Raised when a step's configuration is rejected by the step itself."""


class LLMError(ConvodocError):
    """Raised when an LLM request fails or returns data that fails validation."""


class PromptError(ConvodocError):
    """Raised when a prompt template is missing, malformed or cannot render."""


class EmbeddingError(ConvodocError):
    """Raised when embedding generation fails."""


class RagError(ConvodocError):
    """Raised when documentation retrieval fails."""


class IngestError(ConvodocError):
    """Raised when importing messages from an external source fails."""


class PipelineError(ConvodocError):
    """Raised when pipeline orchestration fails."""


class PluginError(ConvodocError):
    """Raised when step registration or lookup fails."""
