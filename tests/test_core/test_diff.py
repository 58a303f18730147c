"""Tests for assetdelta.core.diff module."""

import json

import pytest

from assetdelta.core.diff import DiffResult, compare_snapshots, diff_manifests
from assetdelta.core.versions import find_snapshots
from assetdelta.formats.manifest import HashedManifest, ManifestError

H1, H2, H3, H4 = ("1" * 64, "2" * 64, "3" * 64, "4" * 64)


def _manifest(entries):
    return HashedManifest.from_mapping(entries)


class TestDiffManifests:
    """Test the pure diff function."""

    def test_added_and_changed(self):
        """Test the reference scenario."""
        old = _manifest({"x.bin": H1, "y.bin": H2})
        new = _manifest({"x.bin": H1, "y.bin": H3, "z.bin": H4})
        result = diff_manifests(old, new)
        assert result.added == ["z.bin"]
        assert result.changed == ["y.bin"]

    def test_identity(self):
        """Test diffing a manifest against itself is empty."""
        manifest = _manifest({"a": H1, "b": H2})
        assert diff_manifests(manifest, manifest).is_empty()

    def test_empty_old(self):
        """Test everything is added when the old manifest is empty."""
        result = diff_manifests(_manifest({}), _manifest({"b": H1, "a": H2}))
        assert result.added == ["a", "b"]
        assert result.changed == []

    def test_empty_new(self):
        """Test removals are never reported."""
        assert diff_manifests(_manifest({"a": H1}), _manifest({})).is_empty()

    def test_sorted_and_disjoint(self):
        """Test outputs are sorted, duplicate-free and disjoint."""
        old = _manifest({f"p{i}": H1 for i in range(0, 50, 2)})
        new = _manifest({f"p{i}": (H2 if i % 4 == 0 else H1) for i in range(50)})
        result = diff_manifests(old, new)
        assert result.added == sorted(set(result.added))
        assert result.changed == sorted(set(result.changed))
        assert not set(result.added) & set(result.changed)
        for path in result.added:
            assert path not in old and path in new
        for path in result.changed:
            assert old.get(path) != new.get(path)


class TestDiffResult:
    """Test DiffResult model."""

    def test_overlap_rejected(self):
        """Test a path cannot be both added and changed."""
        with pytest.raises(ValueError):
            DiffResult(added=["a"], changed=["a"])

    def test_record_conversion(self):
        """Test conversion to and from the persisted record."""
        result = DiffResult(added=["z"], changed=["y"])
        record = result.to_record()
        assert (record.new, record.change) == (["z"], ["y"])
        assert DiffResult.from_record(record) == result
        assert result.total == 2


class TestCompareSnapshots:
    """Test snapshot comparison with persistence."""

    def test_writes_record(self, app_config, write_snapshot):
        """Test the diff record is written under the diff directory."""
        write_snapshot("1.0.0.1", {"x.bin": H1, "y.bin": H2})
        write_snapshot("1.0.0.2", {"x.bin": H1, "y.bin": H3, "z.bin": H4})
        older, newer = find_snapshots(app_config.paths.manifests)

        result, record_path = compare_snapshots(older, newer, app_config.paths.diffs)

        assert record_path.name == "assetsList_from_1.0.0.1_to_1.0.0.2.json"
        assert json.loads(record_path.read_text()) == {"new": ["z.bin"], "change": ["y.bin"]}
        assert result.added == ["z.bin"]

    def test_malformed_snapshot(self, app_config, write_snapshot):
        """Test a snapshot without entries is a hard error."""
        write_snapshot("1.0.0.1", {"x.bin": H1})
        bad = app_config.paths.manifests / "AssetBundleInfo_1.0.0.2.txt"
        bad.write_text("no entries here\n")
        older, newer = find_snapshots(app_config.paths.manifests)
        with pytest.raises(ManifestError):
            compare_snapshots(older, newer, app_config.paths.diffs)
        assert not app_config.paths.diffs.exists()
