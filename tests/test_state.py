"""Tests for SKGraft project state — ledger updates and atomic writes."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from skgraft.errors import PathEscape
from skgraft.models import MaterializedFile, ProjectState, SkillManifest
from skgraft.state import ProjectStateStore


@pytest.fixture
def store(project: Path) -> ProjectStateStore:
    return ProjectStateStore(project, project / ".skgraft" / "state.json", (".git", ".skgraft"))


def _manifest(name: str = "demo", version: str = "1.0.0") -> SkillManifest:
    return SkillManifest(skill=name, version=version, core_version="1.0.0")


class TestReadWrite:
    def test_missing_file_is_empty_state(self, store: ProjectStateStore):
        state = store.read()
        assert state.applied_skills == {}
        assert store.exists() is False

    def test_write_then_read(self, store: ProjectStateStore):
        store.write(ProjectState(core_version="2.1.0"))
        assert store.read().core_version == "2.1.0"

    def test_corrupt_file_raises(self, store: ProjectStateStore):
        store.state_path.parent.mkdir(parents=True)
        store.state_path.write_text("{not json")
        with pytest.raises(ValueError, match="Corrupt"):
            store.read()

    def test_no_temp_files_left_behind(self, store: ProjectStateStore):
        store.write(ProjectState())
        store.write(ProjectState(core_version="1.0.0"))
        assert [p.name for p in store.state_path.parent.iterdir()] == ["state.json"]

    def test_failed_replace_keeps_old_state(self, store: ProjectStateStore):
        """A crash before the rename leaves the previous document intact."""
        store.write(ProjectState(core_version="1.0.0"))
        with patch("skgraft.state.os.replace", side_effect=OSError("disk gone")):
            with pytest.raises(OSError):
                store.write(ProjectState(core_version="9.9.9"))
        assert store.read().core_version == "1.0.0"
        assert [p.name for p in store.state_path.parent.iterdir()] == ["state.json"]

    def test_initialize_is_idempotent(self, store: ProjectStateStore):
        store.initialize(core_version="1.0.0")
        state = store.initialize(core_version="5.0.0")
        assert state.core_version == "1.0.0"


class TestRecordApplication:
    def test_adds_ledger_entry_with_hashes(self, store: ProjectStateStore):
        files = [MaterializedFile(declared="a.py", path="a.py", action="add", sha256="ab" * 32)]
        updated = store.record_application(ProjectState(), _manifest(), files)
        assert updated.applied_skills["demo"].version == "1.0.0"
        assert store.read().applied_skills["demo"].file_hashes == {"a.py": "ab" * 32}

    def test_leaves_remap_untouched(self, store: ProjectStateStore):
        state = ProjectState(path_remap={"src/a.py": "lib/a.py", "src/b.py": "../b.py"})
        store.write(state)
        store.record_application(store.read(), _manifest(), [])
        assert store.read().path_remap == {"src/a.py": "lib/a.py", "src/b.py": "../b.py"}

    def test_does_not_mutate_input(self, store: ProjectStateStore):
        state = ProjectState()
        store.record_application(state, _manifest(), [])
        assert state.applied_skills == {}


class TestRemap:
    def test_set_and_remove(self, store: ProjectStateStore):
        store.set_remap("src/a.py", "lib/a.py")
        assert store.read().path_remap == {"src/a.py": "lib/a.py"}
        assert store.remove_remap("src/a.py") is True
        assert store.remove_remap("src/a.py") is False

    def test_escaping_target_refused(self, store: ProjectStateStore):
        with pytest.raises(PathEscape):
            store.set_remap("src/a.py", "../../etc/passwd")
        assert store.exists() is False

    def test_protected_target_refused(self, store: ProjectStateStore):
        with pytest.raises(PathEscape):
            store.set_remap("src/a.py", ".skgraft/state.json")
