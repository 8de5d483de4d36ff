"""SKGraft project state — the applied-skill ledger and path remap table.

state.json is only ever replaced whole: the new document is written to a
temp file in the same directory, fsynced, then renamed over the old one,
so a crash leaves either the old or the new state, never half of one.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from . import SKILLS_SYSTEM_VERSION
from .errors import PathEscape
from .models import AppliedSkill, MaterializedFile, ProjectState, SkillManifest
from .sandbox import PathResolver

logger = logging.getLogger("skgraft.state")


class ProjectStateStore:
    """Reads and atomically rewrites a project's state.json.

    Args:
        root: The project root.
        state_path: Location of state.json.
        protected: Top-level directories remaps may not point into.
    """

    def __init__(
        self, root: Path, state_path: Path, protected: tuple[str, ...] = (".git",)
    ) -> None:
        self.root = Path(root)
        self.state_path = Path(state_path)
        self.protected = protected

    def exists(self) -> bool:
        return self.state_path.is_file()

    def read(self) -> ProjectState:
        """Load the state; a missing file is an empty state.

        Remap entries are returned as stored; the resolver decides at
        apply time which of them are honoured.

        Raises:
            ValueError: If state.json exists but is corrupt.
        """
        if not self.state_path.exists():
            return ProjectState(skills_system_version=SKILLS_SYSTEM_VERSION)
        try:
            return ProjectState.model_validate_json(self.state_path.read_text())
        except (ValidationError, OSError) as exc:
            raise ValueError(f"Corrupt project state {self.state_path}: {exc}") from exc

    def write(self, state: ProjectState) -> None:
        """Atomically replace state.json."""
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        payload = state.model_dump_json(indent=2)
        fd, tmp = tempfile.mkstemp(
            prefix=".state-", suffix=".json.tmp", dir=str(self.state_path.parent)
        )
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.state_path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def record_application(
        self,
        state: ProjectState,
        manifest: SkillManifest,
        files: list[MaterializedFile],
    ) -> ProjectState:
        """Add a skill to the ledger and persist it.

        path_remap and other fields are carried over untouched.

        Returns:
            ProjectState: The state as written.
        """
        updated = state.model_copy(deep=True)
        updated.applied_skills[manifest.skill] = AppliedSkill(
            name=manifest.skill,
            version=manifest.version,
            applied_at=datetime.now(),
            file_hashes={f.path: f.sha256 for f in files},
        )
        self.write(updated)
        logger.debug("Recorded %s v%s in %s", manifest.skill, manifest.version, self.state_path)
        return updated

    def set_remap(self, source: str, target: str) -> ProjectState:
        """Add or replace an operator remap entry.

        Raises:
            PathEscape: If either side would leave the project root.
        """
        resolver = PathResolver(self.root, protected=self.protected)
        for side in (source, target):
            if resolver.contain(side) is None:
                raise PathEscape(f"Remap path escapes project root: '{side}'")
        state = self.read()
        state.path_remap[source] = target
        self.write(state)
        return state

    def remove_remap(self, source: str) -> bool:
        """Drop a remap entry. Returns True if it existed."""
        state = self.read()
        if state.path_remap.pop(source, None) is None:
            return False
        self.write(state)
        return True

    def initialize(self, core_version: Optional[str] = None) -> ProjectState:
        """Create an empty state if none exists yet."""
        if self.exists():
            return self.read()
        state = ProjectState(skills_system_version=SKILLS_SYSTEM_VERSION, core_version=core_version)
        self.write(state)
        return state
