"""Tests for the SKGraft snapshot store."""

from pathlib import Path

import pytest

from skgraft.errors import PathEscape
from skgraft.snapshot import SnapshotStore


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / ".skgraft" / "base")


class TestSnapshotStore:
    def test_read_unknown_is_none(self, store: SnapshotStore):
        assert store.read("src/never.py") is None
        assert store.exists("src/never.py") is False

    def test_write_creates_parents(self, store: SnapshotStore):
        path = store.write("src/deep/nested/file.py", b"v1")
        assert path.read_bytes() == b"v1"
        assert store.read("src/deep/nested/file.py") == b"v1"

    def test_write_overwrites(self, store: SnapshotStore):
        store.write("a.txt", b"old")
        store.write("a.txt", b"new")
        assert store.read("a.txt") == b"new"

    def test_mirrors_project_layout(self, store: SnapshotStore):
        store.write("src/app.py", b"x")
        assert (store.base_dir / "src" / "app.py").is_file()

    def test_escape_rejected(self, store: SnapshotStore):
        with pytest.raises(PathEscape):
            store.write("../../state.json", b"x")
