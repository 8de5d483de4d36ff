"""Tests for the SKGraft path sandbox — canonicalization and remap containment."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from skgraft.errors import PathEscape
from skgraft.sandbox import PathResolver, canonicalize, is_within, sanitize_remap


@pytest.fixture
def root(tmp_path: Path) -> Path:
    r = tmp_path / "project"
    (r / "src").mkdir(parents=True)
    return Path(os.path.realpath(r))


@pytest.fixture
def outside(tmp_path: Path) -> Path:
    o = tmp_path / "outside"
    o.mkdir()
    return Path(os.path.realpath(o))


def _symlink(link: Path, target: Path) -> None:
    try:
        link.symlink_to(target, target_is_directory=True)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported here")


class TestCanonicalize:
    """canonicalize() resolves links even when the leaf does not exist."""

    def test_existing_path(self, root: Path):
        assert canonicalize(root / "src") == root / "src"

    def test_missing_leaf_under_symlinked_dir(self, root: Path, outside: Path):
        _symlink(root / "link", outside)
        assert canonicalize(root / "link" / "new" / "file.txt") == outside / "new" / "file.txt"

    def test_parent_segments_after_missing_dir(self, root: Path):
        result = canonicalize(root / "missing" / ".." / ".." / "x.txt")
        assert result == root.parent / "x.txt"

    def test_dangling_symlink_resolves_to_its_target(self, root: Path, outside: Path):
        (root / "dangling").symlink_to(outside / "nothing-here")
        assert canonicalize(root / "dangling") == outside / "nothing-here"


class TestIsWithin:
    def test_child(self, root: Path):
        assert is_within(root / "src" / "a.py", root)

    def test_sibling_with_common_prefix(self, root: Path):
        """/tmp/project-evil is not inside /tmp/project."""
        assert not is_within(root.parent / (root.name + "-evil") / "a.py", root)


class TestPathResolver:
    """Remaps are honoured only while they stay inside the root."""

    def test_default_path(self, root: Path):
        resolver = PathResolver(root)
        assert resolver.resolve("src/new.py") == root / "src" / "new.py"

    def test_contained_remap_is_honoured(self, root: Path):
        resolver = PathResolver(root, {"src/new.py": "lib/new.py"})
        assert resolver.resolve("src/new.py") == root / "lib" / "new.py"

    def test_parent_traversal_remap_falls_back(self, root: Path):
        resolver = PathResolver(root, {"src/new.py": "../../outside.txt"})
        assert resolver.resolve("src/new.py") == root / "src" / "new.py"

    def test_absolute_remap_falls_back(self, root: Path, outside: Path):
        resolver = PathResolver(root, {"src/new.py": str(outside / "abs.txt")})
        assert resolver.resolve("src/new.py") == root / "src" / "new.py"

    def test_symlink_remap_falls_back(self, root: Path, outside: Path):
        _symlink(root / "link-out", outside)
        resolver = PathResolver(root, {"src/new.py": "link-out/pwned.txt"})
        assert resolver.resolve("src/new.py") == root / "src" / "new.py"

    def test_remap_into_protected_dir_falls_back(self, root: Path):
        resolver = PathResolver(root, {"src/new.py": ".git/hooks/post-checkout"})
        assert resolver.resolve("src/new.py") == root / "src" / "new.py"

    def test_remap_to_root_itself_falls_back(self, root: Path):
        resolver = PathResolver(root, {"src/new.py": "."})
        assert resolver.resolve("src/new.py") == root / "src" / "new.py"

    def test_discarded_remap_is_logged(self, root: Path, caplog):
        resolver = PathResolver(root, {"src/new.py": "../x"})
        with caplog.at_level("WARNING", logger="skgraft.sandbox"):
            resolver.resolve("src/new.py")
        assert "escapes project root" in caplog.text

    def test_default_through_symlinked_dir_raises(self, root: Path, outside: Path):
        _symlink(root / "vendor", outside)
        resolver = PathResolver(root)
        with pytest.raises(PathEscape):
            resolver.resolve("vendor/lib.py")

    def test_symlinked_dir_inside_root_is_fine(self, root: Path):
        _symlink(root / "alias", root / "src")
        resolver = PathResolver(root)
        assert resolver.resolve("alias/x.py") == root / "src" / "x.py"

    def test_relative(self, root: Path):
        resolver = PathResolver(root)
        assert resolver.relative(root / "src" / "x.py") == "src/x.py"


class TestSanitizeRemap:
    def test_drops_escaping_entries(self, root: Path):
        remap = {"a.py": "lib/a.py", "b.py": "../b.py", "../c.py": "c.py"}
        assert sanitize_remap(root, remap) == {"a.py": "lib/a.py"}
