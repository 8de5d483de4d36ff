"""SKGraft apply orchestrator — validate, checkpoint, write, hook, commit.

Phases:
    VALIDATING -> CHECKPOINTED -> MATERIALIZING -> HOOKING -> COMMITTING -> DONE
Any failure moves to FAILING and ends in ROLLED_BACK. Failures during
validation happen before a checkpoint exists, so nothing needs restoring.

Applies against the same project must be serialized by the caller; the
engine holds no lock of its own (the CLI takes one).
"""

from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Optional

from .config import EngineConfig
from .errors import (
    Conflict,
    DependencyError,
    RollbackFailed,
    SkillApplyError,
    VersionIncompatible,
)
from .hooks import run_post_apply
from .materialize import Materializer
from .models import ApplyResult, MaterializedFile, ProjectState, SkillManifest, parse_semver
from .sandbox import PathResolver
from .snapshot import SnapshotStore
from .state import ProjectStateStore
from .transaction import GitTransaction, Transaction
from .validator import load_manifest

logger = logging.getLogger("skgraft.apply")

ROLLBACK_FAILED_PREFIX = "ROLLBACK FAILED:"


class ApplyPhase(str, enum.Enum):
    """Where an apply is in its lifecycle."""

    VALIDATING = "validating"
    CHECKPOINTED = "checkpointed"
    MATERIALIZING = "materializing"
    HOOKING = "hooking"
    COMMITTING = "committing"
    DONE = "done"
    FAILING = "failing"
    ROLLED_BACK = "rolled_back"


class SkillApplier:
    """Applies one skill package to one project, all or nothing.

    Args:
        config: Engine configuration for the project.
        transaction: Checkpoint/rollback implementation (default: git).
    """

    def __init__(self, config: EngineConfig, transaction: Optional[Transaction] = None) -> None:
        self.config = config
        self.root = config.root
        self.protected = (".git", config.data_dir)
        self.transaction = transaction or GitTransaction(self.root)
        self.store = ProjectStateStore(self.root, config.state_path, self.protected)
        self.snapshots = SnapshotStore(config.base_path)
        self.phase = ApplyPhase.VALIDATING

    def _enter(self, phase: ApplyPhase) -> None:
        logger.debug("%s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def apply(self, package_dir: Path) -> ApplyResult:
        """Apply a package directory to the project.

        Returns:
            ApplyResult: success, or the first error. Never raises for
            expected failures.
        """
        self.phase = ApplyPhase.VALIDATING
        package_dir = Path(package_dir)
        result = ApplyResult(success=False)

        try:
            manifest = load_manifest(package_dir, self.config.engine_version, self.config.data_dir)
            result.skill, result.version = manifest.skill, manifest.version
            state = self.store.read()
            if self._already_applied(manifest, state):
                logger.info("%s v%s already applied; nothing to do", manifest.skill, manifest.version)
                self._enter(ApplyPhase.DONE)
                result.success = True
                result.already_applied = True
                return result
            result.warnings.extend(self._check_gates(manifest, state))
        except (SkillApplyError, ValueError) as exc:
            return self._fail(result, exc, checkpointed=False)

        try:
            self.transaction.checkpoint()
        except (SkillApplyError, OSError, ValueError) as exc:
            return self._fail(result, exc, checkpointed=False)
        self._enter(ApplyPhase.CHECKPOINTED)

        try:
            files = self._run(package_dir, manifest, state)
        except (SkillApplyError, OSError, ValueError) as exc:
            return self._fail(result, exc, checkpointed=True)
        except Exception:
            logger.exception("Unexpected error during %s; rolling back", self.phase.value)
            self.transaction.rollback()
            raise

        self.transaction.commit()
        self._enter(ApplyPhase.DONE)
        result.success = True
        result.files = [f.path for f in files]
        logger.info("Applied %s v%s (%d files)", manifest.skill, manifest.version, len(files))
        return result

    def _run(
        self, package_dir: Path, manifest: SkillManifest, state: ProjectState
    ) -> list[MaterializedFile]:
        self._enter(ApplyPhase.MATERIALIZING)
        resolver = PathResolver(self.root, state.path_remap, protected=self.protected)
        materializer = Materializer(package_dir, resolver, self.snapshots, self.transaction)
        files = materializer.materialize(manifest)

        self._enter(ApplyPhase.HOOKING)
        run_post_apply(manifest.post_apply, self.root, timeout_s=self.config.hook_timeout_s)

        self._enter(ApplyPhase.COMMITTING)
        self.transaction.track(self.config.state_path)
        self.store.record_application(state, manifest, files)
        return files

    def _already_applied(self, manifest: SkillManifest, state: ProjectState) -> bool:
        applied = state.applied_version(manifest.skill)
        if applied is None:
            return False
        if applied == manifest.version:
            return True
        raise Conflict(
            f"Skill '{manifest.skill}' is already applied at version {applied}; "
            f"cannot apply version {manifest.version} over it"
        )

    def _check_gates(self, manifest: SkillManifest, state: ProjectState) -> list[str]:
        """Dependency, conflict and core-version gates. Returns warnings."""
        missing = [d for d in manifest.depends if d not in state.applied_skills]
        if missing:
            raise DependencyError(
                f"Skill '{manifest.skill}' requires skills not yet applied: {', '.join(missing)}"
            )
        clashing = [c for c in manifest.conflicts if c in state.applied_skills]
        if clashing:
            raise DependencyError(
                f"Skill '{manifest.skill}' conflicts with applied skills: {', '.join(clashing)}"
            )

        warnings: list[str] = []
        if state.core_version:
            want = parse_semver(manifest.core_version)
            have = parse_semver(state.core_version)
            if want[0] != have[0]:
                raise VersionIncompatible(
                    f"Skill '{manifest.skill}' targets core {manifest.core_version}, "
                    f"project core is {state.core_version}"
                )
            if want[:3] > have[:3]:
                warnings.append(
                    f"Skill targets core {manifest.core_version}, newer than project core "
                    f"{state.core_version}"
                )
        return warnings

    def _fail(self, result: ApplyResult, exc: Exception, checkpointed: bool) -> ApplyResult:
        self._enter(ApplyPhase.FAILING)
        result.success = False
        result.error = str(exc)
        result.error_kind = getattr(exc, "kind", type(exc).__name__)

        if checkpointed:
            try:
                self.transaction.rollback()
            except RollbackFailed as rb:
                logger.critical("Rollback failed after %s: %s", result.error_kind, rb)
                result.fatal = True
                result.error_kind = rb.kind
                result.error = f"{ROLLBACK_FAILED_PREFIX} {rb} (after: {exc})"
                self._enter(ApplyPhase.ROLLED_BACK)
                return result

        logger.warning("Apply failed (%s): %s", result.error_kind, result.error)
        self._enter(ApplyPhase.ROLLED_BACK)
        return result


def apply_skill(
    package_dir: Path,
    project_root: Optional[Path] = None,
    hook_timeout_s: Optional[float] = None,
    transaction: Optional[Transaction] = None,
) -> ApplyResult:
    """Apply a skill package to a project.

    Args:
        package_dir: Path to the skill package directory.
        project_root: Project checkout (default: SKGRAFT_PROJECT or the cwd).
        hook_timeout_s: Optional per-command post_apply timeout.
        transaction: Override the git-backed transaction.

    Returns:
        ApplyResult: {success, error, ...}.
    """
    try:
        config = EngineConfig.from_env(project_root=project_root, hook_timeout_s=hook_timeout_s)
    except ValueError as exc:
        return ApplyResult(success=False, error=str(exc), error_kind="ConfigError")
    return SkillApplier(config, transaction=transaction).apply(Path(package_dir))
