"""Tests for assetdelta.core.reconcile module."""

import errno
from pathlib import Path

import pytest

from assetdelta.core import reconcile as reconcile_module
from assetdelta.core.reconcile import ReconciliationPair, TreeReconciler, prune_empty_dirs


def _tree(root: Path, files: dict[str, bytes]) -> Path:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    return root


class TestReconciliationPair:
    """Test ReconciliationPair."""

    def test_identical(self):
        """Test equality of digests."""
        assert ReconciliationPair("a", "x", "x").identical
        assert not ReconciliationPair("a", "x", "y").identical


class TestPruneEmptyDirs:
    """Test bottom-up directory pruning."""

    def test_propagates_upward(self, temp_dir):
        """Test emptied chains are removed up to the first non-empty ancestor."""
        (temp_dir / "a" / "b" / "c").mkdir(parents=True)
        _tree(temp_dir, {"keep/file.txt": b"x"})

        removed = prune_empty_dirs(temp_dir, remove_root=False)

        assert not (temp_dir / "a").exists()
        assert (temp_dir / "keep" / "file.txt").exists()
        assert removed[0] == temp_dir / "a" / "b" / "c"
        assert temp_dir.exists()

    def test_removes_root_when_empty(self, temp_dir):
        """Test the root itself goes when nothing remains."""
        root = temp_dir / "root"
        (root / "x" / "y").mkdir(parents=True)
        prune_empty_dirs(root)
        assert not root.exists()

    def test_missing_root(self, temp_dir):
        """Test a missing root is already satisfied."""
        assert prune_empty_dirs(temp_dir / "gone") == []


class TestTreeReconciler:
    """Test TreeReconciler."""

    def test_equivalence(self, temp_dir):
        """Test identical files are deleted, different and new ones kept."""
        reference = _tree(
            temp_dir / "old",
            {"same.wav": b"same", "dir/changed.wav": b"old", "dir/deep/same2.wav": b"s2", "only_old.wav": b"o"},
        )
        candidate = _tree(
            temp_dir / "new",
            {"same.wav": b"same", "dir/changed.wav": b"new", "dir/deep/same2.wav": b"s2", "added.wav": b"a"},
        )

        report = TreeReconciler(max_workers=3).reconcile(reference, candidate)

        assert report.removed == ["dir/deep/same2.wav", "same.wav"]
        assert report.modified == ["dir/changed.wav"]
        assert report.added == ["added.wav"]
        assert report.changed == ["added.wav", "dir/changed.wav"]
        assert not (candidate / "same.wav").exists()
        assert (candidate / "dir" / "changed.wav").read_bytes() == b"new"
        assert not (candidate / "dir" / "deep").exists()
        assert (reference / "same.wav").exists()

    def test_prunes_fully_unchanged_tree(self, temp_dir):
        """Test a candidate left empty is removed entirely."""
        files = {"a/b/one.bin": b"1", "a/two.bin": b"2"}
        reference = _tree(temp_dir / "old", files)
        candidate = _tree(temp_dir / "new", files)

        report = TreeReconciler().reconcile(reference, candidate)

        assert report.changed == []
        assert not candidate.exists()
        assert candidate in report.pruned_dirs

    def test_keep_empty_root(self, temp_dir):
        """Test the root survives when configured."""
        reference = _tree(temp_dir / "old", {"a.bin": b"1"})
        candidate = _tree(temp_dir / "new", {"a.bin": b"1"})
        TreeReconciler(remove_empty_root=False).reconcile(reference, candidate)
        assert candidate.is_dir()

    def test_missing_tree(self, temp_dir):
        """Test missing trees raise ValueError."""
        (temp_dir / "exists").mkdir()
        with pytest.raises(ValueError, match="Reference tree not found"):
            TreeReconciler().reconcile(temp_dir / "missing", temp_dir / "exists")
        with pytest.raises(ValueError, match="Candidate tree not found"):
            TreeReconciler().reconcile(temp_dir / "exists", temp_dir / "missing")

    def test_locked_file_retried(self, temp_dir, monkeypatch):
        """Test a transiently locked file is read after retries."""
        reference = _tree(temp_dir / "old", {"a.bin": b"same"})
        candidate = _tree(temp_dir / "new", {"a.bin": b"same"})
        real_md5 = reconcile_module.md5_file
        failures = {"left": 2}

        def flaky_md5(path, *args, **kwargs):
            if failures["left"] > 0:
                failures["left"] -= 1
                raise PermissionError(errno.EBUSY, "resource busy", str(path))
            return real_md5(path, *args, **kwargs)

        monkeypatch.setattr(reconcile_module, "md5_file", flaky_md5)
        delays = []
        report = TreeReconciler(lock_retries=5, lock_retry_delay=0.1, sleep=delays.append).reconcile(
            reference, candidate
        )

        assert report.removed == ["a.bin"]
        assert delays == [0.1, 0.1]

    def test_persistently_locked_file_reported(self, temp_dir, monkeypatch):
        """Test exhausted lock retries are recorded as failures, not changes."""
        reference = _tree(temp_dir / "old", {"a.bin": b"same", "b.bin": b"x"})
        candidate = _tree(temp_dir / "new", {"a.bin": b"same", "b.bin": b"y"})
        real_md5 = reconcile_module.md5_file

        def locked_md5(path, *args, **kwargs):
            if Path(path).name == "a.bin":
                raise PermissionError(errno.EPERM, "operation not permitted", str(path))
            return real_md5(path, *args, **kwargs)

        monkeypatch.setattr(reconcile_module, "md5_file", locked_md5)
        report = TreeReconciler(lock_retries=3, sleep=lambda _: None).reconcile(reference, candidate)

        assert list(report.failed) == ["a.bin"]
        assert report.modified == ["b.bin"]
        assert report.changed == ["b.bin"]
        assert (candidate / "a.bin").exists()
