"""SKGraft manifest validation.

Checks run in a fixed order and stop at the first violation:
    (a) the engine is new enough (min_skills_system_version)
    (b) the manifest has the right shape
    (c) every declared path is a plain relative project path
"""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from . import DATA_DIR, MANIFEST_FILE
from .errors import ManifestInvalid, SkillApplyError, VersionIncompatible
from .models import SkillManifest, compare_semver

RESERVED_DIRS = (".git",)

# "C:", "C:/x"; a colon elsewhere is a legal POSIX name.
_DRIVE = re.compile(r"^[A-Za-z]:(/|$)")


def load_manifest(
    package_dir: Path, engine_version: str, data_dir: str = DATA_DIR
) -> SkillManifest:
    """Read and validate a package's manifest.yaml.

    Args:
        package_dir: The skill package directory.
        engine_version: Version of the running skills system.
        data_dir: Name of the engine-private dir that packages may not touch.

    Returns:
        SkillManifest: The validated manifest.

    Raises:
        ManifestInvalid: If the manifest is missing, unparsable or unsafe.
        VersionIncompatible: If the engine is too old for the package.
    """
    path = Path(package_dir) / MANIFEST_FILE
    if not path.is_file():
        raise ManifestInvalid(f"{MANIFEST_FILE} not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ManifestInvalid(f"{MANIFEST_FILE} is not valid YAML: {exc}") from exc

    return validate_manifest(raw, engine_version, data_dir=data_dir)


def validate_manifest(
    raw: Any, engine_version: str, data_dir: str = DATA_DIR
) -> SkillManifest:
    """Validate a parsed manifest mapping.

    Args:
        raw: The manifest as loaded from YAML.
        engine_version: Version of the running skills system.
        data_dir: Name of the engine-private dir that packages may not touch.

    Returns:
        SkillManifest: The validated manifest.
    """
    if not isinstance(raw, dict):
        raise ManifestInvalid(f"{MANIFEST_FILE} must be a YAML mapping, got {type(raw).__name__}")

    _check_engine_version(raw.get("min_skills_system_version"), engine_version)

    try:
        manifest = SkillManifest.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(p) for p in first["loc"]) or "manifest"
        raise ManifestInvalid(f"Invalid manifest field '{where}': {first['msg']}") from exc

    seen: set[str] = set()
    for declared in manifest.declared_paths:
        check_relative_path(declared, reserved=(*RESERVED_DIRS, data_dir))
        key = str(PurePosixPath(declared))
        if key in seen:
            raise ManifestInvalid(f"Path declared more than once: '{declared}'")
        seen.add(key)

    return manifest


def check_manifest(
    raw: Any, engine_version: str, data_dir: str = DATA_DIR
) -> tuple[bool, str]:
    """Validate without raising.

    Returns:
        tuple[bool, str]: (passed, description of the first violation or "").
    """
    try:
        validate_manifest(raw, engine_version, data_dir=data_dir)
    except SkillApplyError as exc:
        return False, str(exc)
    return True, ""


def check_relative_path(path: Any, reserved: tuple[str, ...] = RESERVED_DIRS) -> str:
    """Reject anything but a plain relative path inside the project.

    Args:
        path: A path string from a manifest.
        reserved: Top-level directories no package may write into.

    Returns:
        str: The path, unchanged.

    Raises:
        ManifestInvalid: On absolute, drive, parent-segment or reserved paths.
    """
    if not isinstance(path, str) or not path.strip():
        raise ManifestInvalid(f"Declared path must be a non-empty string: got {path!r}")
    if "\x00" in path:
        raise ManifestInvalid(f"Declared path contains a NUL byte: {path!r}")
    if "\\" in path:
        raise ManifestInvalid(f"Declared path must use forward slashes: '{path}'")
    if path.startswith("/") or _DRIVE.match(path):
        raise ManifestInvalid(f"Declared path must be relative: '{path}'")

    parts = [p for p in path.split("/") if p not in ("", ".")]
    if not parts:
        raise ManifestInvalid(f"Declared path names the project root: '{path}'")
    if ".." in parts:
        raise ManifestInvalid(f"Declared path may not contain '..': '{path}'")
    if parts[0] in reserved:
        raise ManifestInvalid(f"Declared path is inside reserved directory '{parts[0]}': '{path}'")
    return path


def _check_engine_version(required: Optional[Any], engine_version: str) -> None:
    if required is None:
        return
    required = str(required)
    try:
        too_new = compare_semver(required, engine_version) > 0
    except ValueError as exc:
        raise ManifestInvalid(f"Invalid min_skills_system_version '{required}': {exc}") from exc
    if too_new:
        raise VersionIncompatible(
            f"Skill requires skills system version {required}, "
            f"but this engine is {engine_version}"
        )
