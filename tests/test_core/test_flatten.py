"""Tests for assetdelta.core.flatten module."""

import pytest

from assetdelta.core.flatten import collapse, flatten_tree


def _touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("x")
    return path


class TestCollapse:
    """Test collapse."""

    def test_chain(self, temp_dir):
        """Test a/b/c/file becomes a.b.c/file."""
        _touch(temp_dir / "a" / "b" / "c" / "file.txt")
        final = collapse(temp_dir / "a")
        assert final == temp_dir / "a.b.c"
        assert (temp_dir / "a.b.c" / "file.txt").exists()
        assert not (temp_dir / "a").exists()

    def test_not_collapsible(self, temp_dir):
        """Test a directory holding a file stays put."""
        _touch(temp_dir / "a" / "file.txt")
        (temp_dir / "a" / "sub").mkdir()
        assert collapse(temp_dir / "a") == temp_dir / "a"

    def test_child_with_parent_name(self, temp_dir):
        """Test a child named like its parent does not clash."""
        _touch(temp_dir / "a" / "a" / "file.txt")
        final = collapse(temp_dir / "a")
        assert final == temp_dir / "a.a"
        assert (final / "file.txt").exists()


class TestFlattenTree:
    """Test flatten_tree."""

    def test_nested_chains(self, temp_dir):
        """Test chains at several depths collapse and the root stays."""
        root = temp_dir / "root"
        _touch(root / "a" / "b" / "c" / "file.txt")
        _touch(root / "d" / "one.txt")
        _touch(root / "d" / "e" / "f" / "two.txt")

        collapsed = flatten_tree(root)

        assert root.is_dir()
        assert (root / "a.b.c" / "file.txt").exists()
        assert (root / "d" / "one.txt").exists()
        assert (root / "d" / "e.f" / "two.txt").exists()
        assert sorted(collapsed) == [root / "a.b.c", root / "d" / "e.f"]

    def test_root_with_single_child(self, temp_dir):
        """Test the root is walked but never renamed."""
        root = temp_dir / "root"
        _touch(root / "only" / "deep" / "file.txt")
        flatten_tree(root)
        assert (root / "only.deep" / "file.txt").exists()

    def test_collision_suffix(self, temp_dir):
        """Test an existing sibling name gets a numeric suffix."""
        root = temp_dir / "root"
        _touch(root / "a" / "b" / "file.txt")
        _touch(root / "a.b" / "other.txt")

        flatten_tree(root)

        assert (root / "a.b" / "other.txt").exists()
        assert (root / "a.b_1" / "file.txt").exists()

    def test_not_a_directory(self, temp_dir):
        """Test flattening a missing root fails."""
        with pytest.raises(ValueError, match="Not a directory"):
            flatten_tree(temp_dir / "missing")
