"""SKGraft data models — manifest.yaml schema and project state as Pydantic models.

A skill package is a directory:
  - manifest.yaml: what the skill adds, modifies, requires and runs
  - add/<path>: payload for each `adds` entry
  - modify/<path>: payload for each `modifies` entry
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

_SEMVER_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)


def parse_semver(version: str) -> tuple[int, int, int, Optional[str]]:
    """Split a semantic version string into comparable parts.

    Args:
        version: A version like "1.2.3" or "1.2.3-rc.1".

    Returns:
        tuple: (major, minor, patch, prerelease-or-None).

    Raises:
        ValueError: If the string is not a semantic version.
    """
    match = _SEMVER_RE.match(str(version).strip())
    if not match:
        raise ValueError(f"Not a semantic version: '{version}'")
    return (
        int(match.group("major")),
        int(match.group("minor")),
        int(match.group("patch")),
        match.group("pre"),
    )


def _pre_key(pre: Optional[str]) -> tuple:
    # A release sorts after any of its prereleases.
    if pre is None:
        return (1,)
    parts = []
    for ident in pre.split("."):
        parts.append((0, int(ident), "") if ident.isdigit() else (1, 0, ident))
    return (0, tuple(parts))


def compare_semver(a: str, b: str) -> int:
    """Compare two semantic versions.

    Returns:
        int: -1 if a < b, 0 if equal, 1 if a > b.
    """
    pa, pb = parse_semver(a), parse_semver(b)
    ka = (pa[:3], _pre_key(pa[3]))
    kb = (pb[:3], _pre_key(pb[3]))
    return (ka > kb) - (ka < kb)


def _semver_field(v: str) -> str:
    parse_semver(v)
    return str(v).strip()


class SkillManifest(BaseModel):
    """A skill package declaration — parsed from manifest.yaml.

    Declares which project files the skill creates and replaces,
    which commands run afterwards, and which engine/core it needs.
    """

    skill: str = Field(description="Unique skill identifier (kebab-case)")
    version: str = Field(description="Semver version of the skill")
    core_version: str = Field(description="Semver version of the core it was built against")
    min_skills_system_version: Optional[str] = Field(
        default=None, description="Lowest engine version able to apply this skill"
    )
    description: str = Field(default="", description="Human-readable description")
    author: str = Field(default="", description="Skill author")

    adds: list[str] = Field(default_factory=list, description="Project paths to create")
    modifies: list[str] = Field(default_factory=list, description="Project paths to replace")
    post_apply: list[str] = Field(
        default_factory=list, description="Shell commands run in the project root after writing"
    )

    depends: list[str] = Field(default_factory=list, description="Skills that must be applied first")
    conflicts: list[str] = Field(
        default_factory=list, description="Skills that cannot coexist with this one"
    )

    @field_validator("skill")
    @classmethod
    def validate_skill(cls, v: str) -> str:
        """Enforce kebab-case naming convention."""
        if not v or not all(c.isalnum() or c == "-" for c in v):
            raise ValueError(f"Skill name must be kebab-case: got '{v}'")
        return v.lower()

    @field_validator("version", "core_version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        return _semver_field(v)

    @field_validator("min_skills_system_version")
    @classmethod
    def validate_min_version(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _semver_field(v)

    @field_validator("adds", "modifies", "post_apply", "depends", "conflicts", mode="before")
    @classmethod
    def none_is_empty(cls, v: Any) -> Any:
        """An explicit `null` in YAML means an empty sequence."""
        return [] if v is None else v

    @property
    def declared_paths(self) -> list[str]:
        """Every project path the skill writes, adds first."""
        return [*self.adds, *self.modifies]


class AppliedSkill(BaseModel):
    """Ledger entry for a skill applied to the project."""

    name: str
    version: str
    applied_at: datetime = Field(default_factory=datetime.now)
    file_hashes: dict[str, str] = Field(
        default_factory=dict, description="sha256 of every file the skill wrote"
    )


class ProjectState(BaseModel):
    """The persisted per-project record — state.json."""

    skills_system_version: str = Field(default="0.1.0")
    core_version: Optional[str] = Field(
        default=None, description="Version of the host core checked out in the project"
    )
    applied_skills: dict[str, AppliedSkill] = Field(default_factory=dict)
    path_remap: dict[str, str] = Field(
        default_factory=dict, description="Operator overrides: declared path -> project path"
    )

    def applied_version(self, name: str) -> Optional[str]:
        """Return the applied version of a skill, or None."""
        entry = self.applied_skills.get(name)
        return entry.version if entry else None


class MaterializedFile(BaseModel):
    """A file written by the materializer."""

    declared: str = Field(description="Path as declared in the manifest")
    path: str = Field(description="Project-relative path actually written")
    action: str = Field(description="'add' or 'modify'")
    sha256: str


class ApplyResult(BaseModel):
    """Outcome of one apply — the only thing apply_skill() returns."""

    success: bool
    skill: str = ""
    version: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
    fatal: bool = Field(default=False, description="Rollback failed; project is inconsistent")
    already_applied: bool = False
    files: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def generate_manifest_yaml(manifest: SkillManifest) -> str:
    """Serialize a SkillManifest back to YAML.

    Args:
        manifest: The skill manifest to serialize.

    Returns:
        str: YAML string representation.
    """
    data = manifest.model_dump(exclude_none=True)
    return yaml.dump(data, default_flow_style=False, sort_keys=False)
