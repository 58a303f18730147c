"""Tests for download command module."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from assetdelta.commands.download import download, show_download_summary
from assetdelta.core.fetcher import FetchReport, FetchResult, FetchStatus
from assetdelta.core.pipeline import DownloadOutcome
from assetdelta.core.versions import VersionError


def _outcome(failed: int = 0) -> DownloadOutcome:
    new_results = [FetchResult("z.bin", FetchStatus.DOWNLOADED, bytes_written=2048)]
    new_results += [
        FetchResult(f"missing_{i}.bin", FetchStatus.FAILED, error="HTTP 404") for i in range(failed)
    ]
    return DownloadOutcome(
        version="1.0.0.2",
        old_version="1.0.0.1",
        reports={
            "new": FetchReport(results=new_results),
            "change": FetchReport(results=[FetchResult("y.bin", FetchStatus.SKIPPED)]),
        },
    )


class TestDownloadCommand:
    """Test download command functionality."""

    @pytest.fixture
    def runner(self):
        """Create CLI test runner."""
        return CliRunner()

    @pytest.fixture
    def plain_obj(self, cli_obj):
        """Context object with plain output so no live progress is drawn."""
        cli_obj["config"].output_format = "plain"
        return cli_obj

    def test_summary_lists_failures(self, mock_console):
        """Test the summary prints at most ten failures."""
        outcome = _outcome(failed=12)
        show_download_summary(outcome, mock_console)

        assert "Failed downloads (12), recorded in None:" in mock_console.printed_lines
        assert "  new/missing_0.bin" in mock_console.printed_lines
        assert "  ... and 2 more" in mock_console.printed_lines

    def test_download_success(self, runner, plain_obj):
        """Test a clean batch reports success."""
        with patch("assetdelta.commands.download.Pipeline") as pipeline_cls:
            pipeline_cls.from_config.return_value.download.return_value = _outcome()
            result = runner.invoke(download, ["--version", "1.0.0.2"], obj=plain_obj)

        assert result.exit_code == 0
        assert "Download Summary 1.0.0.1 -> 1.0.0.2" in result.output
        assert "All objects downloaded" in result.output
        call = pipeline_cls.from_config.return_value.download.call_args
        assert call.args == ("1.0.0.2",)
        assert call.kwargs["retry_failed"] is False

    def test_download_partial_failure_exit_zero(self, runner, plain_obj):
        """Test per-object failures are reported without failing the command."""
        with patch("assetdelta.commands.download.Pipeline") as pipeline_cls:
            pipeline_cls.from_config.return_value.download.return_value = _outcome(failed=1)
            result = runner.invoke(download, ["--retry-failed"], obj=plain_obj)

        assert result.exit_code == 0
        assert "new/missing_0.bin" in result.output
        assert "All objects downloaded" not in result.output
        assert pipeline_cls.from_config.return_value.download.call_args.kwargs["retry_failed"] is True

    def test_download_nothing(self, runner, plain_obj):
        """Test an empty plan."""
        with patch("assetdelta.commands.download.Pipeline") as pipeline_cls:
            pipeline_cls.from_config.return_value.download.return_value = DownloadOutcome(
                version="1.0.0.2", old_version="1.0.0.1"
            )
            result = runner.invoke(download, [], obj=plain_obj)

        assert result.exit_code == 0
        assert "Nothing to download" in result.output

    def test_download_without_record(self, runner, plain_obj):
        """Test a missing diff record exits with an error."""
        with patch("assetdelta.commands.download.Pipeline") as pipeline_cls:
            pipeline_cls.from_config.return_value.download.side_effect = VersionError("No diff record found")
            result = runner.invoke(download, [], obj=plain_obj)

        assert result.exit_code == 1
        assert "Error: No diff record found" in result.output
