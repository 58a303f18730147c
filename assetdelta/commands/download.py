"""Delta download command."""

from __future__ import annotations

import json
import sys
from typing import Any

import click
import structlog
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from assetdelta.core.config import AppConfig
from assetdelta.core.fetcher import FetchResult
from assetdelta.core.pipeline import DownloadOutcome, Pipeline
from assetdelta.core.registry import RegistryError
from assetdelta.core.utils import format_size
from assetdelta.core.versions import VersionError

logger = structlog.get_logger()


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    debug: bool = ctx.obj["debug"]
    return config, console, verbose, debug


def _output_json(data: dict[str, Any], console: Console) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2, default=str))


def show_download_summary(outcome: DownloadOutcome, console: Console) -> None:
    """Print per-category counts and the first failures."""
    table = Table(title=f"Download Summary {outcome.old_version} -> {outcome.version}")
    table.add_column("Category", style="cyan")
    table.add_column("Downloaded", style="green")
    table.add_column("Skipped", style="magenta")
    table.add_column("Failed", style="red")
    table.add_column("Size", style="blue")
    for category, report in outcome.reports.items():
        table.add_row(
            category,
            str(len(report.downloaded)),
            str(len(report.skipped)),
            str(len(report.failed)),
            format_size(report.bytes_total),
        )
    console.print(table)

    failed = outcome.failed
    if failed:
        console.print(f"[yellow]Failed downloads ({len(failed)}), recorded in {outcome.failed_record}:[/yellow]")
        for identifier in failed[:10]:
            console.print(f"  {identifier}")
        if len(failed) > 10:
            console.print(f"  ... and {len(failed) - 10} more")


@click.command()
@click.option("--version", "-V", "version_str", help="Target release (default: newest diff record)")
@click.option("--retry-failed", is_flag=True, help="Only retry the recorded failed downloads")
@click.pass_context
def download(ctx: click.Context, version_str: str | None, retry_failed: bool) -> None:
    """Download the objects listed in a diff record.

    Failures of individual objects do not abort the batch; they are written
    to the failed-download record for a later --retry-failed run.
    """
    config, console, verbose, _ = _get_context_objects(ctx)
    pipeline = Pipeline.from_config(config)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
            disable=config.output_format != "rich",
        ) as progress:
            task = progress.add_task("Downloading objects...", total=None)

            def on_result(result: FetchResult, completed: int, total: int) -> None:
                progress.update(task, completed=completed, total=total)
                if verbose and not result.ok:
                    progress.console.print(f"[red]✗ {result.identifier}: {result.error}[/red]")

            outcome = pipeline.download(version_str, retry_failed=retry_failed, progress_callback=on_result)
    except (VersionError, RegistryError, ValueError) as e:
        logger.error("download_failed", error=str(e))
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        _output_json(
            {
                "version": outcome.version,
                "old_version": outcome.old_version,
                "categories": {
                    category: {
                        "downloaded": len(report.downloaded),
                        "skipped": len(report.skipped),
                        "failed": report.failed,
                    }
                    for category, report in outcome.reports.items()
                },
                "failed_record": str(outcome.failed_record) if outcome.failed_record else None,
            },
            console,
        )
        return

    if not outcome.reports:
        console.print("[yellow]Nothing to download[/yellow]")
        return

    show_download_summary(outcome, console)
    if not outcome.failed:
        console.print("[green]All objects downloaded[/green]")
