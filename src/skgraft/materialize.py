"""SKGraft file materializer — write a package's adds and modifies into the project.

Must only run inside a checkpointed transaction: every path it is about
to overwrite is handed to Transaction.track() first, and everything it
creates is new relative to the checkpoint, so rollback covers it all.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from .errors import Conflict, ManifestInvalid
from .models import MaterializedFile, SkillManifest
from .sandbox import PathResolver, canonicalize, is_within
from .snapshot import SnapshotStore
from .transaction import Transaction

logger = logging.getLogger("skgraft.materialize")

ADD_DIR = "add"
MODIFY_DIR = "modify"


def sha256_bytes(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class Materializer:
    """Performs the writes for one package.

    Args:
        package_dir: The skill package directory.
        resolver: Maps declared paths to contained targets.
        snapshots: Snapshot store used for divergence checks.
        transaction: The active transaction.
    """

    def __init__(
        self,
        package_dir: Path,
        resolver: PathResolver,
        snapshots: SnapshotStore,
        transaction: Transaction,
    ) -> None:
        self.package_dir = canonicalize(Path(package_dir))
        self.resolver = resolver
        self.snapshots = snapshots
        self.transaction = transaction

    def payload_for(self, declared: str, action: str) -> Path:
        """Locate the payload file for a declared path.

        Looks in add/<path> or modify/<path> first, then <path> next to
        the manifest.

        Raises:
            ManifestInvalid: If no payload exists or it leaves the package.
        """
        subdir = ADD_DIR if action == "add" else MODIFY_DIR
        for candidate in (self.package_dir / subdir / declared, self.package_dir / declared):
            real = canonicalize(candidate)
            if not is_within(real, self.package_dir):
                raise ManifestInvalid(f"Payload for '{declared}' escapes the package directory")
            if real.is_file():
                return real
        raise ManifestInvalid(f"No payload for {action} '{declared}' in {self.package_dir}")

    def materialize(self, manifest: SkillManifest) -> list[MaterializedFile]:
        """Write every add, then every modify. The first failure aborts the pass.

        Returns:
            list[MaterializedFile]: What was written, in order.

        Raises:
            Conflict: If an add target exists or a modify target diverged.
            ManifestInvalid: If a payload is missing.
            PathEscape: If a declared path escapes the project.
        """
        written: list[MaterializedFile] = []
        for declared in manifest.adds:
            written.append(self._add(declared))
        for declared in manifest.modifies:
            written.append(self._modify(declared))
        return written

    def _add(self, declared: str) -> MaterializedFile:
        target = self.resolver.resolve(declared)
        rel = self.resolver.relative(target)
        if os.path.lexists(target):
            raise Conflict(f"Cannot add '{rel}': file already exists")

        content = self.payload_for(declared, "add").read_bytes()
        self.transaction.track(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.debug("Added %s", rel)
        return MaterializedFile(declared=declared, path=rel, action="add", sha256=sha256_bytes(content))

    def _modify(self, declared: str) -> MaterializedFile:
        target = self.resolver.resolve(declared)
        rel = self.resolver.relative(target)
        if not target.is_file():
            raise Conflict(f"Cannot modify '{rel}': file does not exist")

        live = target.read_bytes()
        baseline: Optional[bytes] = self.snapshots.read(rel)
        if baseline is not None and baseline != live:
            raise Conflict(
                f"Cannot modify '{rel}': file has local changes since the last applied skill"
            )

        content = self.payload_for(declared, "modify").read_bytes()
        self.transaction.track(target)
        target.write_bytes(content)

        self.transaction.track(self.snapshots.path_for(rel))
        self.snapshots.write(rel, content)
        logger.debug("Modified %s", rel)
        return MaterializedFile(
            declared=declared, path=rel, action="modify", sha256=sha256_bytes(content)
        )
