"""End-to-end run command."""

from __future__ import annotations

import sys

import click
import httpx
import structlog
from rich.console import Console
from rich.table import Table

from assetdelta.commands.download import show_download_summary
from assetdelta.core.collaborators import DecodeError
from assetdelta.core.config import AppConfig
from assetdelta.core.fetcher import PermanentFetchError
from assetdelta.core.pipeline import Pipeline, PipelineResult
from assetdelta.core.registry import RegistryError
from assetdelta.core.retry import RetryExhaustedError
from assetdelta.core.versions import VersionError
from assetdelta.formats.manifest import ManifestError

logger = structlog.get_logger()


def _show_stages(result: PipelineResult, console: Console) -> None:
    table = Table(title="Pipeline Summary")
    table.add_column("Stage", style="cyan")
    table.add_column("Result", style="magenta")

    if result.snapshot:
        state = "downloaded" if result.snapshot.downloaded else "already present"
        table.add_row("Manifest", f"{result.snapshot.version} ({state})")
    if result.diff:
        table.add_row(
            "Diff",
            f"{result.diff.old} -> {result.diff.new}: "
            f"{len(result.diff.result.added)} added, {len(result.diff.result.changed)} changed",
        )
    if result.download:
        table.add_row(
            "Download",
            f"{result.download.downloaded} downloaded, {result.download.skipped} skipped, "
            f"{len(result.download.failed)} failed",
        )
    table.add_row("Extract", ", ".join(result.extracted) or "skipped")
    if result.reconcile:
        table.add_row("Reconcile", f"{len(result.reconcile.removed)} unchanged removed")
    if result.segments:
        table.add_row("Segments", f"{len(result.segments.merged)} merged, {len(result.segments.failed)} failed")
    if result.decode:
        table.add_row("Decode", f"{len(result.decode.decoded)} decoded, {len(result.decode.failed)} failed")
    table.add_row("Flatten", f"{len(result.flattened)} collapsed")
    console.print(table)


@click.command()
@click.argument("url", required=False)
@click.option("--version", "-V", "version_str", help="Release to process (URL derived from the registry)")
@click.pass_context
def run(ctx: click.Context, url: str | None, version_str: str | None) -> None:
    """Run every stage for one release.

    URL is the manifest URL of the release; without it the release is taken
    from --version or guessed from the newest registry entry.
    """
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]

    try:
        result = Pipeline.from_config(config).run(url, version_str)
    except (VersionError, RegistryError, ManifestError) as e:
        logger.error("pipeline_failed", error=str(e))
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except PermanentFetchError as e:
        logger.error("pipeline_failed", status=e.status_code, url=e.url)
        console.print(f"[red]Error: manifest not available (HTTP {e.status_code}): {e.url}[/red]")
        sys.exit(1)
    except (RetryExhaustedError, DecodeError, httpx.HTTPError, OSError) as e:
        logger.error("pipeline_failed", error=str(e))
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    _show_stages(result, console)
    if result.download and result.download.failed:
        show_download_summary(result.download, console)
