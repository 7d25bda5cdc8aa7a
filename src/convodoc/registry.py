"""Provider and pipeline-step registries for convodoc.

``ProviderRegistry`` maps config strings to provider factories, e.g.
``registry.create("llm", "ollama", config)`` → ``OllamaHandler``.

``StepFactory`` maps a step type to a step constructor, e.g.
``factory.create(StepConfig(step_id="f", step_type="filter"), llm)`` →
``KeywordFilterStep``. It is the orchestrator's only coupling to concrete
step classes, so new step types can be registered without touching it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from convodoc.exceptions import PluginError, StepConfigError

if TYPE_CHECKING:
    from collections.abc import Callable

    from convodoc.config import ConvodocConfig, StepConfig
    from convodoc.llm.base import BaseLLMHandler
    from convodoc.pipeline.steps.base import BasePipelineStep

__all__ = [
    "ProviderRegistry",
    "StepCreator",
    "StepFactory",
    "default_registry",
    "default_step_factory",
]

logger = logging.getLogger(__name__)

StepCreator = Any  # Callable[[StepConfig, BaseLLMHandler | None], BasePipelineStep]


class ProviderRegistry:
    """Config-driven factory that maps (category, name) → provider instance.

    Categories: ``"llm"`` and ``"embedding"``.

    When ``auto_discover`` is ``True``, the first lookup triggers a lazy
    import of ``convodoc.llm`` and ``convodoc.embed`` so the built-in
    providers register themselves.

    Usage::

        registry = ProviderRegistry()
        registry.register("llm", "ollama", lambda cfg: OllamaHandler(cfg))
        handler = registry.create("llm", "ollama", config)
    """

    def __init__(self, *, auto_discover: bool = False) -> None:
        self._factories: dict[str, dict[str, Callable[..., Any]]] = {}
        self._auto_discover = auto_discover
        self._discovered = False

    def register(
        self,
        category: str,
        name: str,
        factory: Callable[..., Any],
    ) -> None:
        """Register a provider factory.

        Raises:
            PluginError: If a provider with the same category+name already exists.
        """
        if category not in self._factories:
            self._factories[category] = {}

        if name in self._factories[category]:
            raise PluginError(f"Provider '{name}' already registered in category '{category}'")

        self._factories[category][name] = factory
        logger.debug("Registered provider %s/%s", category, name)

    def _ensure_discovered(self) -> None:
        """Lazily import built-in provider modules on first use."""
        if self._discovered or not self._auto_discover:
            return
        self._discovered = True
        import convodoc.embed  # noqa: F401  triggers provider registration
        import convodoc.llm  # noqa: F401

    def create(self, category: str, name: str, config: ConvodocConfig) -> Any:
        """Create a provider instance from the registry.

        Raises:
            PluginError: If the category or name is not registered.
        """
        self._ensure_discovered()

        if category not in self._factories:
            raise PluginError(
                f"Unknown provider category '{category}'. Available: {sorted(self._factories)}"
            )

        if name not in self._factories[category]:
            raise PluginError(
                f"Unknown provider '{name}' in category '{category}'. "
                f"Available: {sorted(self._factories[category])}"
            )

        factory = self._factories[category][name]
        logger.info("Creating provider %s/%s", category, name)
        return factory(config)

    def list_providers(self, category: str) -> list[str]:
        """List registered provider names for a category."""
        self._ensure_discovered()
        if category not in self._factories:
            return []
        return sorted(self._factories[category])

    def has_provider(self, category: str, name: str) -> bool:
        """Check whether a provider is registered."""
        self._ensure_discovered()
        return category in self._factories and name in self._factories[category]


class StepFactory:
    """Registration table from step type to step constructor.

    A creator is called as ``creator(step_config, llm_handler)`` and must
    return a :class:`~convodoc.pipeline.steps.base.BasePipelineStep`.
    With ``auto_discover`` the built-in steps are registered on first use.
    """

    def __init__(self, *, auto_discover: bool = False) -> None:
        self._creators: dict[str, Callable[..., BasePipelineStep]] = {}
        self._auto_discover = auto_discover
        self._discovered = False

    def _ensure_discovered(self) -> None:
        if self._discovered or not self._auto_discover:
            return
        self._discovered = True
        from convodoc.pipeline.steps import register_builtin_steps

        register_builtin_steps(self)

    def register(
        self,
        step_type: str,
        creator: Callable[..., BasePipelineStep],
        *,
        replace: bool = False,
    ) -> None:
        """Register a constructor for ``step_type``.

        Raises:
            PluginError: If the type is already registered and ``replace`` is false.
        """
        if step_type in self._creators and not replace:
            raise PluginError(f"Step type '{step_type}' already registered")
        self._creators[step_type] = creator
        logger.debug("Registered step type %s", step_type)

    def has_step_type(self, step_type: str) -> bool:
        self._ensure_discovered()
        return step_type in self._creators

    def registered_types(self) -> list[str]:
        self._ensure_discovered()
        return sorted(self._creators)

    def create(
        self,
        step_config: StepConfig,
        llm_handler: BaseLLMHandler | None = None,
    ) -> BasePipelineStep:
        """Instantiate and validate the step described by ``step_config``.

        Raises:
            PluginError: If the step type is not registered.
            StepConfigError: If the step rejects its configuration or cannot
                be built from it.
        """
        self._ensure_discovered()
        creator = self._creators.get(step_config.step_type)
        if creator is None:
            raise PluginError(
                f"Unknown step type '{step_config.step_type}'. "
                f"Available: {sorted(self._creators)}"
            )
        try:
            step = creator(step_config, llm_handler)
            valid = step.validate_config(step_config)
        except (TypeError, ValueError) as e:
            raise StepConfigError(
                f"Invalid configuration for step '{step_config.step_id}' "
                f"({step_config.step_type}): {e}"
            ) from e
        if not valid:
            raise StepConfigError(
                f"Invalid configuration for step '{step_config.step_id}' "
                f"({step_config.step_type})"
            )
        logger.debug("Created step %s (%s)", step_config.step_id, step_config.step_type)
        return step


default_registry = ProviderRegistry(auto_discover=True)

_default_step_factory: StepFactory | None = None


def default_step_factory() -> StepFactory:
    """Return the process-wide factory with the built-in steps registered."""
    global _default_step_factory
    if _default_step_factory is None:
        _default_step_factory = StepFactory(auto_discover=True)
    return _default_step_factory
