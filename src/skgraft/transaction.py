"""SKGraft transactions — checkpoint the working tree, restore it on failure.

Tracked content is checkpointed through git itself: every tracked file is
stored as a blob with `git hash-object -w` and restored with
`git cat-file blob`, so nothing is written into .git by hand. Paths that
did not exist at checkpoint time are deleted on rollback, since git cannot
revert untracked additions. Untracked files the engine overwrites (such as
snapshots) are kept in memory through track().
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Optional, Protocol

from .errors import RollbackFailed, SkillApplyError

logger = logging.getLogger("skgraft.transaction")

Runner = Callable[..., subprocess.CompletedProcess]

# git ls-files -s modes that are plain file content.
_FILE_MODES = {"100644", "100755"}


class Transaction(Protocol):
    """Narrow checkpoint/restore interface the orchestrator depends on."""

    def checkpoint(self) -> None: ...

    def track(self, path: Path) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class Checkpoint:
    """What the tree looked like when an apply started. Never persisted."""

    def __init__(self, head: Optional[str], blobs: dict[str, str], existing: set[str]) -> None:
        self.head = head
        self.blobs = blobs
        self.existing = existing
        self.saved: dict[str, Optional[bytes]] = {}


class GitTransaction:
    """Checkpoint/rollback backed by the git binary.

    Args:
        root: The project root (a git working tree).
        runner: subprocess.run-compatible callable, swappable in tests.
        git: Name or path of the git executable.
    """

    def __init__(self, root: Path, runner: Runner = subprocess.run, git: str = "git") -> None:
        self.root = Path(root)
        self._run = runner
        self._git = git
        self._checkpoint: Optional[Checkpoint] = None

    @property
    def active(self) -> bool:
        return self._checkpoint is not None

    def _git_cmd(self, *args: str, input: Optional[bytes] = None, check: bool = True) -> bytes:
        try:
            result = self._run(
                [self._git, *args],
                cwd=str(self.root),
                input=input,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise SkillApplyError(f"git executable not found: {self._git}", kind="NotAWorkTree") from exc
        if check and result.returncode != 0:
            stderr = result.stderr.decode(errors="replace").strip() if result.stderr else ""
            raise SkillApplyError(f"git {args[0]} failed: {stderr}", kind="TransactionError")
        return result.stdout or b""

    def checkpoint(self) -> None:
        """Record tracked content and the set of existing paths.

        Raises:
            SkillApplyError: If the root is not a git working tree.
        """
        inside = self._git_cmd("rev-parse", "--is-inside-work-tree", check=False).strip()
        if inside != b"true":
            raise SkillApplyError(
                f"Project root is not a git working tree: {self.root}", kind="NotAWorkTree"
            )

        head = self._git_cmd("rev-parse", "--verify", "-q", "HEAD", check=False).decode().strip()
        blobs = self._snapshot_tracked()
        existing = _walk(self.root)
        self._checkpoint = Checkpoint(head or None, blobs, existing)
        logger.debug(
            "Checkpoint at %s: %d tracked files, %d paths",
            head or "(no commits)",
            len(blobs),
            len(existing),
        )

    def _tracked_files(self) -> list[str]:
        out = self._git_cmd("ls-files", "-s", "-z")
        files = []
        for entry in out.split(b"\0"):
            if not entry:
                continue
            meta, _, name = entry.partition(b"\t")
            mode = meta.split(b" ", 1)[0].decode()
            if mode in _FILE_MODES:
                files.append(os.fsdecode(name))
        return sorted(set(files))

    def _hash_files(self, paths: list[str], write: bool) -> dict[str, str]:
        present = [p for p in paths if (self.root / p).is_file() and not (self.root / p).is_symlink()]
        args = ["hash-object", "-w"] if write else ["hash-object"]
        # --stdin-paths is line based and unquotes lines starting with a quote.
        batch = [p for p in present if "\n" not in p and not p.startswith('"')]
        single = sorted(set(present) - set(batch))

        hashes: dict[str, str] = {}
        if batch:
            stdin = b"".join(os.fsencode(p) + b"\n" for p in batch)
            out = self._git_cmd(*args, "--stdin-paths", input=stdin)
            hashes.update(zip(batch, out.decode().split()))
        for p in single:
            hashes[p] = self._git_cmd(*args, "--", p).decode().strip()
        return hashes

    def _snapshot_tracked(self) -> dict[str, str]:
        return self._hash_files(self._tracked_files(), write=True)

    def track(self, path: Path) -> None:
        """Remember the current bytes of a path before the engine overwrites it."""
        if self._checkpoint is None:
            return
        key = str(Path(path))
        if key in self._checkpoint.saved:
            return
        p = Path(path)
        self._checkpoint.saved[key] = p.read_bytes() if p.is_file() else None

    def commit(self) -> None:
        """Discard the checkpoint; the apply is final."""
        if self._checkpoint is not None:
            logger.debug("Committed transaction")
        self._checkpoint = None

    def rollback(self) -> None:
        """Restore the tree to the checkpoint.

        Raises:
            RollbackFailed: If any path could not be restored or removed.
        """
        cp = self._checkpoint
        if cp is None:
            return
        failed: list[str] = []

        current = self._hash_files(list(cp.blobs), write=False)
        for rel, sha in sorted(cp.blobs.items()):
            if current.get(rel) == sha:
                continue
            try:
                content = self._git_cmd("cat-file", "blob", sha)
                _write(self.root / rel, content, self.root)
            except (OSError, SkillApplyError) as exc:
                logger.error("Could not restore %s: %s", rel, exc)
                failed.append(rel)

        for key, content in cp.saved.items():
            if content is None:
                continue
            try:
                _write(Path(key), content, self.root)
            except OSError as exc:
                logger.error("Could not restore %s: %s", key, exc)
                failed.append(key)

        created = sorted(_walk(self.root) - cp.existing, key=lambda p: p.count("/"), reverse=True)
        for rel in created:
            target = self.root / rel
            try:
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target)
                elif os.path.lexists(target):
                    target.unlink()
            except OSError as exc:
                logger.error("Could not remove %s: %s", rel, exc)
                failed.append(rel)

        self._checkpoint = None
        if failed:
            raise RollbackFailed(
                f"Could not restore {len(failed)} path(s): {', '.join(failed)}", paths=failed
            )
        logger.warning(
            "Rolled back: %d tracked file(s) checked, %d new path(s) removed",
            len(cp.blobs),
            len(created),
        )


def _write(path: Path, content: bytes, root: Path) -> None:
    """Write content at path, clearing whatever was put in its place since.

    A symlink or file standing where a parent directory belongs is removed,
    as is a directory standing where the file belongs.
    """
    try:
        parents = Path(path).relative_to(root).parents
    except ValueError:
        parents = ()
    for parent in reversed(list(parents)[:-1]):
        current = root / parent
        if current.is_symlink() or (current.exists() and not current.is_dir()):
            current.unlink()
    if path.is_symlink():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def _walk(root: Path) -> set[str]:
    """Every file, dir and symlink under root except .git, root-relative."""
    found: set[str] = set()
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        if rel_dir == ".":
            dirnames[:] = [d for d in dirnames if d != ".git"]
            rel_dir = ""
        for name in dirnames + filenames:
            found.add(f"{rel_dir}/{name}" if rel_dir else name)
        # os.walk does not descend into symlinked dirs by default.
    return found
