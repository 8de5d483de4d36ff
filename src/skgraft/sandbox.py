"""SKGraft path sandbox — every write target is canonicalized and contained.

Containment is decided on the real filesystem, not on the string:
symlinks are resolved before the prefix check, so a remap that walks
through a symlinked directory to somewhere outside the project is caught
the same way as a lexical "../../x".
"""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from .errors import PathEscape

logger = logging.getLogger("skgraft.sandbox")


def canonicalize(path: Path) -> Path:
    """Resolve every symlink in a path that may not fully exist yet.

    The deepest existing ancestor is resolved with realpath, then the
    missing remainder is appended and folded lexically.

    Args:
        path: Absolute path to canonicalize.

    Returns:
        Path: The canonical absolute path.
    """
    path = Path(path)
    if not path.is_absolute():
        path = Path.cwd() / path

    existing = path
    remainder: list[str] = []
    while not os.path.lexists(existing):
        if existing.parent == existing:
            break
        remainder.append(existing.name)
        existing = existing.parent

    resolved = os.path.realpath(existing)
    if remainder:
        resolved = os.path.normpath(os.path.join(resolved, *reversed(remainder)))
    return Path(resolved)


def is_within(path: Path, root: Path) -> bool:
    """Check that a canonical path is the root or lies beneath it."""
    try:
        Path(path).relative_to(root)
    except ValueError:
        return False
    return True


def _inside_any(path: Path, dirs: Iterable[Path]) -> Optional[Path]:
    for d in dirs:
        if is_within(path, d):
            return d
    return None


class PathResolver:
    """Maps manifest-declared paths to contained absolute write targets.

    Args:
        root: The project root.
        remap: Operator remap table (declared path -> project path).
        protected: Top-level directories that must never be written.
    """

    def __init__(
        self,
        root: Path,
        remap: Optional[dict[str, str]] = None,
        protected: Iterable[str] = (".git",),
    ) -> None:
        self.root = canonicalize(Path(root))
        self.remap = dict(remap or {})
        self.protected = [self.root / p for p in protected]

    def contain(self, rel: str) -> Optional[Path]:
        """Canonicalize root/rel and return it only if it stays contained.

        Args:
            rel: A project-relative path (may be hostile).

        Returns:
            Path or None: The canonical target, or None if it escapes the
            root, is the root itself, or lands in a protected directory.
        """
        if not isinstance(rel, str) or not rel or "\x00" in rel:
            return None
        candidate = canonicalize(self.root / rel)
        if candidate == self.root or not is_within(candidate, self.root):
            return None
        if _inside_any(candidate, self.protected):
            return None
        return candidate

    def resolve(self, declared: str) -> Path:
        """Resolve a declared path to the absolute path to write.

        A remap entry is honoured only if its canonical target is contained;
        otherwise it is discarded and the declared path is used.

        Args:
            declared: The path as written in the manifest.

        Returns:
            Path: The canonical, contained write target.

        Raises:
            PathEscape: If even the declared path escapes the root, e.g.
                through a symlinked directory inside the project.
        """
        mapped = self.remap.get(declared)
        if mapped is not None and mapped != declared:
            target = self.contain(mapped)
            if target is not None:
                logger.debug("Remapped %s -> %s", declared, mapped)
                return target
            logger.warning(
                "Ignoring path_remap %s -> %s: target escapes project root", declared, mapped
            )

        target = self.contain(declared)
        if target is None:
            raise PathEscape(f"Path escapes project root: '{declared}'")
        return target

    def relative(self, target: Path) -> str:
        """Project-relative posix form of a canonical target."""
        return PurePosixPath(Path(target).relative_to(self.root)).as_posix()


def sanitize_remap(
    root: Path, remap: dict[str, str], protected: Iterable[str] = (".git",)
) -> dict[str, str]:
    """Drop remap entries whose key or value would escape the project.

    Args:
        root: The project root.
        remap: Remap table as stored in state.
        protected: Top-level directories that must never be written.

    Returns:
        dict[str, str]: Only the contained entries.
    """
    resolver = PathResolver(root, protected=protected)
    clean: dict[str, str] = {}
    for src, dst in remap.items():
        if resolver.contain(src) is None or resolver.contain(dst) is None:
            logger.warning("Dropping path_remap entry %s -> %s: escapes project root", src, dst)
            continue
        clean[src] = dst
    return clean
