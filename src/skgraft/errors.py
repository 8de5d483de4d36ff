"""SKGraft errors — one exception per way an apply can fail.

Components raise these; the apply orchestrator turns them into an
ApplyResult so nothing but a result record leaves apply_skill().
"""

from __future__ import annotations

from typing import Optional


class SkillApplyError(Exception):
    """Base class for every expected apply failure."""

    kind = "ApplyError"

    def __init__(self, message: str, kind: Optional[str] = None) -> None:
        super().__init__(message)
        if kind:
            self.kind = kind


class VersionIncompatible(SkillApplyError):
    """The package needs a newer engine or an incompatible core."""

    kind = "VersionIncompatible"


class ManifestInvalid(SkillApplyError, ValueError):
    """The manifest is malformed or declares an unsafe path."""

    kind = "ManifestInvalid"


class PathEscape(ManifestInvalid):
    """A declared path canonicalizes outside the project root."""

    kind = "PathEscape"


class Conflict(SkillApplyError):
    """The live filesystem does not match what the engine expects."""

    kind = "Conflict"


class DependencyError(SkillApplyError):
    """A required skill is missing, or a conflicting skill is applied."""

    kind = "DependencyError"


class HookFailed(SkillApplyError):
    """A post_apply command exited non-zero or timed out."""

    kind = "HookFailed"


class RollbackFailed(SkillApplyError):
    """The project could not be fully restored after a failure.

    This leaves the checkout inconsistent and must be surfaced as fatal.
    """

    kind = "RollbackFailed"

    def __init__(self, message: str, paths: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.paths = paths or []
