"""Project manager for convodoc.

Handles project initialization, status reporting, and project root discovery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from convodoc.config import ConvodocConfig, default_config, load_config, save_config
from convodoc.exceptions import ProjectError

__all__ = [
    "CONFIG_FILE",
    "PROJECT_DIR",
    "ProjectManager",
    "ProjectStatus",
]

logger = logging.getLogger(__name__)

PROJECT_DIR = ".convodoc"
CONFIG_FILE = "config.toml"

SUBDIRS = [
    "index",
    "prompts",
    "inbox",
]


@dataclass
class ProjectStatus:
    """Summary of the current project state."""

    initialized: bool
    root: Path
    config: ConvodocConfig | None
    state_file_exists: bool = False
    prompt_overrides: int = 0


class ProjectManager:
    """Manages the ``.convodoc/`` project directory."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or Path.cwd()

    @property
    def project_dir(self) -> Path:
        return self.root / PROJECT_DIR

    @property
    def config_path(self) -> Path:
        return self.project_dir / CONFIG_FILE

    @property
    def index_dir(self) -> Path:
        return self.project_dir / "index"

    @property
    def prompts_dir(self) -> Path:
        return self.project_dir / "prompts"

    @property
    def inbox_dir(self) -> Path:
        return self.project_dir / "inbox"

    @property
    def is_initialized(self) -> bool:
        return self.project_dir.is_dir() and self.config_path.exists()

    def state_path(self, config: ConvodocConfig) -> Path:
        return self.project_dir / config.store.filename

    def init(self, name: str = "", domain: str = "") -> Path:
        """Initialize a new convodoc project.

        Creates the ``.convodoc/`` directory structure and a default config.
        Safe to call on an already-initialized project (idempotent); an
        existing config is kept and only the given overrides are applied.

        Returns the ``.convodoc/`` directory path.
        """
        self.project_dir.mkdir(parents=True, exist_ok=True)
        for subdir in SUBDIRS:
            (self.project_dir / subdir).mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            config = load_config(self.config_path)
            logger.info("Existing config found at %s", self.config_path)
        else:
            config = default_config()

        if name:
            config.project.name = name
            config.domain.context.project_name = name
        elif not config.project.name:
            config.project.name = self.root.name
            if not config.domain.context.project_name:
                config.domain.context.project_name = self.root.name
        if domain:
            config.domain.context.domain = domain

        save_config(config, self.config_path)
        logger.info("Initialized convodoc project at %s", self.project_dir)
        return self.project_dir

    def load(self) -> ConvodocConfig:
        """Load the project config.

        Raises:
            ProjectError: If the project is not initialized.
        """
        if not self.is_initialized:
            raise ProjectError(f"No convodoc project at {self.root} (run 'convodoc init')")
        return load_config(self.config_path)

    def status(self) -> ProjectStatus:
        """Get current project status."""
        if not self.is_initialized:
            return ProjectStatus(initialized=False, root=self.root, config=None)

        config = load_config(self.config_path)
        overrides = len(list(self.prompts_dir.glob("*.md"))) if self.prompts_dir.is_dir() else 0
        return ProjectStatus(
            initialized=True,
            root=self.root,
            config=config,
            state_file_exists=self.state_path(config).exists(),
            prompt_overrides=overrides,
        )

    @staticmethod
    def find_project_root(start: Path | None = None) -> Path | None:
        """Walk up from start directory to find a .convodoc/ directory.

        Returns the project root (parent of .convodoc/) or None if not found.
        """
        current = (start or Path.cwd()).resolve()
        while True:
            if (current / PROJECT_DIR).is_dir():
                return current
            parent = current.parent
            if parent == current:
                return None
            current = parent
