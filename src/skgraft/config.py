"""SKGraft configuration — where the project lives and how applies behave.

Layout inside a project:
    <project>/
        .git/                   # version-controlled working tree (required)
        .skgraft/
            state.json          # applied-skill ledger + path remap
            base/               # pristine snapshots for divergence checks
                src/
                    app.py
            lock                # held by the CLI while an apply runs
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from . import DATA_DIR, SKILLS_SYSTEM_VERSION


def _default_project_root() -> Path:
    """Resolve the default project root, respecting SKGRAFT_PROJECT env var.

    Returns:
        Path: The project root directory.
    """
    env = os.environ.get("SKGRAFT_PROJECT")
    if env:
        return Path(env).expanduser()
    return Path.cwd()


def _default_hook_timeout() -> Optional[float]:
    """Read SKGRAFT_HOOK_TIMEOUT; unset or empty means wait forever."""
    raw = os.environ.get("SKGRAFT_HOOK_TIMEOUT", "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"SKGRAFT_HOOK_TIMEOUT must be a number of seconds: got '{raw}'") from exc
    if value <= 0:
        raise ValueError(f"SKGRAFT_HOOK_TIMEOUT must be positive: got '{raw}'")
    return value


class EngineConfig(BaseModel):
    """Settings for one apply run against one project."""

    project_root: Path = Field(description="Root of the project checkout")
    data_dir: str = Field(default=DATA_DIR, description="Engine-private dir, relative to the root")
    hook_timeout_s: Optional[float] = Field(
        default=None, description="Per-command post_apply timeout (None waits forever)"
    )
    engine_version: str = Field(
        default=SKILLS_SYSTEM_VERSION, description="Version of the skills system doing the apply"
    )

    @field_validator("data_dir")
    @classmethod
    def validate_data_dir(cls, v: str) -> str:
        """The data dir is a single plain directory name under the root."""
        if not v or "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError(f"data_dir must be a plain directory name: got '{v}'")
        return v

    @field_validator("hook_timeout_s")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError(f"hook_timeout_s must be positive: got {v}")
        return v

    @classmethod
    def from_env(cls, project_root: Optional[Path] = None, **overrides) -> "EngineConfig":
        """Build a config from SKGRAFT_* environment variables.

        Args:
            project_root: Explicit project root (beats SKGRAFT_PROJECT).
            **overrides: Any other field to set explicitly.

        Returns:
            EngineConfig: The resolved configuration.
        """
        values = {
            "project_root": project_root or _default_project_root(),
            "hook_timeout_s": _default_hook_timeout(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def root(self) -> Path:
        """The canonical project root (symlinks resolved)."""
        return Path(os.path.realpath(self.project_root))

    @property
    def data_path(self) -> Path:
        return self.root / self.data_dir

    @property
    def state_path(self) -> Path:
        return self.data_path / "state.json"

    @property
    def base_path(self) -> Path:
        return self.data_path / "base"

    @property
    def lock_path(self) -> Path:
        return self.data_path / "lock"
