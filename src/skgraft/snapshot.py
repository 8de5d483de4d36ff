"""SKGraft snapshot store — the last content the engine wrote to each modified file.

Snapshots mirror project-relative paths under <data_dir>/base/. A live file
that no longer matches its snapshot was edited by hand since the last apply.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .errors import PathEscape
from .sandbox import canonicalize, is_within


class SnapshotStore:
    """Read/write pristine copies keyed by project-relative path.

    Args:
        base_dir: Directory holding the snapshot tree.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    def path_for(self, rel: str) -> Path:
        """Where the snapshot for a project-relative path lives.

        Raises:
            PathEscape: If the path would leave the snapshot tree.
        """
        root = canonicalize(self.base_dir)
        target = canonicalize(root / rel)
        if target == root or not is_within(target, root):
            raise PathEscape(f"Snapshot path escapes snapshot store: '{rel}'")
        return target

    def exists(self, rel: str) -> bool:
        return self.path_for(rel).is_file()

    def read(self, rel: str) -> Optional[bytes]:
        """Return the stored content, or None if never snapshotted."""
        path = self.path_for(rel)
        if not path.is_file():
            return None
        return path.read_bytes()

    def write(self, rel: str, content: bytes) -> Path:
        """Store or overwrite the snapshot for a path."""
        path = self.path_for(rel)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path
