"""Shared fixtures: a git-backed project checkout and a skill package factory."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Callable, Optional

import pytest
import yaml

from skgraft.config import EngineConfig

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")


def git(root: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=root, capture_output=True, text=True, check=True
    )
    return result.stdout


def commit_all(root: Path, message: str = "snapshot") -> None:
    git(root, "add", "-A")
    git(root, "commit", "-q", "--allow-empty", "-m", message)


class FakeTransaction:
    """Records calls instead of shelling out to git."""

    def __init__(self, fail_rollback: Optional[Exception] = None) -> None:
        self.calls: list[str] = []
        self.tracked: list[Path] = []
        self.fail_rollback = fail_rollback

    def checkpoint(self) -> None:
        self.calls.append("checkpoint")

    def track(self, path: Path) -> None:
        self.tracked.append(Path(path))

    def commit(self) -> None:
        self.calls.append("commit")

    def rollback(self) -> None:
        self.calls.append("rollback")
        if self.fail_rollback is not None:
            raise self.fail_rollback


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SKGRAFT_PROJECT", raising=False)
    monkeypatch.delenv("SKGRAFT_HOOK_TIMEOUT", raising=False)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A plain project directory (not yet a git repo)."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / ".gitignore").write_text(".skgraft/\n")
    return root


@pytest.fixture
def git_project(project: Path) -> Path:
    """A project that is a git working tree with one commit."""
    if shutil.which("git") is None:
        pytest.skip("git binary not available")
    git(project, "init", "-q")
    git(project, "config", "user.email", "tester@example.com")
    git(project, "config", "user.name", "tester")
    git(project, "config", "commit.gpgsign", "false")
    (project / "src" / "app.py").write_text("print('core')\n")
    commit_all(project, "initial")
    return project


@pytest.fixture
def config(project: Path) -> EngineConfig:
    return EngineConfig(project_root=project)


@pytest.fixture
def make_package(tmp_path: Path) -> Callable[..., Path]:
    """Build a skill package directory outside the project.

    Keyword args mirror manifest.yaml fields; add_files/modify_files map
    declared paths to payload content.
    """

    def _make(
        skill: str = "test-skill",
        version: str = "1.0.0",
        core_version: str = "1.0.0",
        add_files: Optional[dict[str, str]] = None,
        modify_files: Optional[dict[str, str]] = None,
        **fields,
    ) -> Path:
        add_files = add_files or {}
        modify_files = modify_files or {}
        pkg = tmp_path / "packages" / f"{skill}-{version}"
        pkg.mkdir(parents=True)

        manifest = {
            "skill": skill,
            "version": version,
            "core_version": core_version,
            "adds": list(add_files),
            "modifies": list(modify_files),
        }
        manifest.update(fields)
        (pkg / "manifest.yaml").write_text(yaml.safe_dump(manifest, sort_keys=False))

        for rel, content in add_files.items():
            target = pkg / "add" / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        for rel, content in modify_files.items():
            target = pkg / "modify" / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        return pkg

    return _make
