"""Tests for convodoc.project module."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from convodoc.config import load_config
from convodoc.exceptions import ProjectError
from convodoc.project import CONFIG_FILE, PROJECT_DIR, ProjectManager

if TYPE_CHECKING:
    from pathlib import Path


class TestProjectInit:
    def test_creates_project_directory(self, project_dir: Path):
        pm = ProjectManager(project_dir)
        root = pm.init()
        assert root == project_dir / PROJECT_DIR
        assert (root / "index").is_dir()
        assert (root / "prompts").is_dir()
        assert (root / "inbox").is_dir()

    def test_creates_valid_config(self, project_dir: Path):
        ProjectManager(project_dir).init()
        config = load_config(project_dir / PROJECT_DIR / CONFIG_FILE)
        assert config.embedding.model == "all-MiniLM-L6-v2"
        assert [s.step_id for s in config.pipeline.steps][0] == "keyword-filter"

    def test_init_with_name_and_domain(self, project_dir: Path):
        ProjectManager(project_dir).init(name="Acme Hub", domain="home automation")
        config = load_config(project_dir / PROJECT_DIR / CONFIG_FILE)
        assert config.project.name == "Acme Hub"
        assert config.domain.context.project_name == "Acme Hub"
        assert config.domain.context.domain == "home automation"

    def test_init_sets_project_name_from_directory(self, project_dir: Path):
        ProjectManager(project_dir).init()
        config = load_config(project_dir / PROJECT_DIR / CONFIG_FILE)
        assert config.project.name == project_dir.name
        assert config.domain.context.project_name == project_dir.name

    def test_init_idempotent(self, project_dir: Path):
        pm = ProjectManager(project_dir)
        pm.init(domain="routers")
        pm.init(domain="routers")
        config = load_config(project_dir / PROJECT_DIR / CONFIG_FILE)
        assert config.domain.context.domain == "routers"

    def test_init_preserves_existing_config_values(self, initialized_project: Path):
        ProjectManager(initialized_project).init()
        config = load_config(initialized_project / PROJECT_DIR / CONFIG_FILE)
        assert config.project.name == "test-project"


class TestProjectLoad:
    def test_load_uninitialized_raises(self, project_dir: Path):
        with pytest.raises(ProjectError, match="convodoc init"):
            ProjectManager(project_dir).load()

    def test_load_initialized(self, initialized_project: Path):
        config = ProjectManager(initialized_project).load()
        assert config.project.name == "test-project"


class TestProjectStatus:
    def test_status_uninitialized(self, project_dir: Path):
        st = ProjectManager(project_dir).status()
        assert st.initialized is False
        assert st.config is None
        assert st.state_file_exists is False

    def test_status_missing_config_is_uninitialized(self, initialized_project: Path):
        (initialized_project / PROJECT_DIR / CONFIG_FILE).unlink()
        assert ProjectManager(initialized_project).status().initialized is False

    def test_status_initialized(self, initialized_project: Path):
        pm = ProjectManager(initialized_project)
        (pm.prompts_dir / "thread-classification.md").write_text("x", encoding="utf-8")
        st = pm.status()
        assert st.initialized is True
        assert st.config is not None
        assert st.state_file_exists is False
        assert st.prompt_overrides == 1

    def test_status_sees_state_file(self, initialized_project: Path):
        pm = ProjectManager(initialized_project)
        config = pm.load()
        pm.state_path(config).write_text("{}", encoding="utf-8")
        assert pm.status().state_file_exists is True


class TestFindProjectRoot:
    def test_finds_root_in_current_dir(self, initialized_project: Path):
        assert ProjectManager.find_project_root(initialized_project) == initialized_project

    def test_finds_root_from_subdirectory(self, initialized_project: Path):
        subdir = initialized_project / "docs" / "guides"
        subdir.mkdir(parents=True)
        assert ProjectManager.find_project_root(subdir) == initialized_project

    def test_returns_none_when_no_project(self, tmp_path: Path):
        assert ProjectManager.find_project_root(tmp_path) is None
