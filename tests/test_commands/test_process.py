"""Tests for post-download processing commands."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from assetdelta.commands.process import decode, extract, flatten, reconcile, segments


class TestProcessCommands:
    """Test extract, reconcile, segments, decode and flatten."""

    @pytest.fixture
    def runner(self):
        """Create CLI test runner."""
        return CliRunner()

    @pytest.fixture
    def mock_obj(self, mock_config, mock_console):
        """Context object with mocked config and console."""
        return {"config": mock_config, "console": mock_console, "verbose": False, "debug": False}

    def test_extract_without_tool(self, runner, mock_obj):
        """Test extraction fails when no extraction command is configured."""
        with patch("assetdelta.commands.process.Pipeline") as pipeline_cls:
            pipeline_cls.from_config.return_value.extract.side_effect = ValueError("No extractor configured")
            result = runner.invoke(extract, ["--version", "1.0.0.2"], obj=mock_obj)

        assert result.exit_code == 1
        assert "Error: No extractor configured" in mock_obj["console"].printed_lines

    def test_extract_success(self, runner, mock_obj):
        """Test extracted categories are listed."""
        with patch("assetdelta.commands.process.Pipeline") as pipeline_cls:
            pipeline_cls.from_config.return_value.extract.return_value = ["change", "new"]
            result = runner.invoke(extract, [], obj=mock_obj)

        assert result.exit_code == 0
        assert "Extracted 2 categories: change, new" in mock_obj["console"].printed_lines

    def test_reconcile_removes_unchanged(self, runner, cli_obj):
        """Test identical extracted files are removed from the change tree."""
        export_root = cli_obj["config"].paths.exports / "1.0.0.2"
        for category, content in (("change", b"v2"), ("change_old", b"v1")):
            (export_root / category / "Audio").mkdir(parents=True)
            (export_root / category / "Audio" / "same.wav").write_bytes(b"same")
            (export_root / category / "Audio" / "diff.wav").write_bytes(content)

        result = runner.invoke(reconcile, ["-V", "1.0.0.2"], obj=cli_obj)

        assert result.exit_code == 0
        assert "Removed (unchanged)" in result.output
        assert not (export_root / "change" / "Audio" / "same.wav").exists()
        assert (export_root / "change" / "Audio" / "diff.wav").exists()

    def test_reconcile_without_trees(self, runner, cli_obj):
        """Test a release without change trees is a no-op."""
        (cli_obj["config"].paths.exports / "1.0.0.2" / "new").mkdir(parents=True)
        result = runner.invoke(reconcile, ["-V", "1.0.0.2"], obj=cli_obj)
        assert result.exit_code == 0
        assert "nothing to reconcile" in result.output

    def test_segments_on_root(self, runner, cli_obj, temp_dir):
        """Test segments under an explicit root are merged."""
        root = temp_dir / "work"
        root.mkdir()
        (root / "voice-001.acb").write_bytes(b"A")
        (root / "voice-002.acb").write_bytes(b"B")

        result = runner.invoke(segments, [str(root), "--delete-sources"], obj=cli_obj)

        assert result.exit_code == 0
        assert "Merged" in result.output
        assert (root / "voice.acb").read_bytes() == b"AB"
        assert not (root / "voice-001.acb").exists()

    def test_segments_failure_reported(self, runner, cli_obj, temp_dir):
        """Test a broken group is reported without failing the command."""
        root = temp_dir / "work"
        root.mkdir()
        (root / "voice-001.acb").write_bytes(b"A")
        (root / "voice-003.acb").write_bytes(b"C")

        result = runner.invoke(segments, [str(root)], obj=cli_obj)

        assert result.exit_code == 0
        assert "missing" in result.output
        assert not (root / "voice.acb").exists()

    def test_decode_without_decoders(self, runner, cli_obj):
        """Test decoding needs configured decoder commands."""
        result = runner.invoke(decode, ["-V", "1.0.0.2"], obj=cli_obj)
        assert result.exit_code == 1
        assert "decoders must be configured" in result.output

    def test_flatten_root(self, runner, cli_obj, temp_dir):
        """Test single-child chains are collapsed."""
        root = temp_dir / "work"
        (root / "a" / "b").mkdir(parents=True)
        (root / "a" / "b" / "file.txt").write_text("x")

        result = runner.invoke(flatten, [str(root)], obj=cli_obj)

        assert result.exit_code == 0
        assert "Collapsed 1 directories" in result.output
        assert (root / "a.b" / "file.txt").exists()

    def test_flatten_without_versions(self, runner, cli_obj):
        """Test flatten without root or releases fails."""
        result = runner.invoke(flatten, [], obj=cli_obj)
        assert result.exit_code == 1
        assert "Error: No version directories" in result.output
