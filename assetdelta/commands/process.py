"""Post-download processing commands.

extract, reconcile, segments, decode and flatten each run one stage on a
release's working tree.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
import structlog
from rich.console import Console
from rich.table import Table

from assetdelta.core.collaborators import DecodeError
from assetdelta.core.config import AppConfig
from assetdelta.core.pipeline import Pipeline
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


def _fail(console: Console, event: str, error: Exception) -> NoReturn:
    logger.error(event, error=str(error))
    console.print(f"[red]Error: {error}[/red]")
    sys.exit(1)


def _summary(title: str, rows: list[tuple[str, int]], console: Console) -> None:
    table = Table(title=title)
    table.add_column("Result", style="cyan")
    table.add_column("Count", style="magenta")
    for label, count in rows:
        table.add_row(label, str(count))
    console.print(table)


version_option = click.option("--version", "-V", "version_str", help="Release to process (default: newest)")


@click.command()
@version_option
@click.pass_context
def extract(ctx: click.Context, version_str: str | None) -> None:
    """Run the configured extraction tool on each downloaded category."""
    config, console, _, _ = _get_context_objects(ctx)

    try:
        with console.status("Extracting bundles..."):
            categories = Pipeline.from_config(config).extract(version_str)
    except (VersionError, DecodeError, ValueError) as e:
        _fail(console, "extract_failed", e)

    if config.output_format == "json":
        _output_json({"categories": categories}, console)
        return
    console.print(f"[green]Extracted {len(categories)} categories: {', '.join(categories) or 'none'}[/green]")


@click.command()
@version_option
@click.pass_context
def reconcile(ctx: click.Context, version_str: str | None) -> None:
    """Remove changed files whose content matches the previous release."""
    config, console, verbose, _ = _get_context_objects(ctx)

    try:
        report = Pipeline.from_config(config).reconcile(version_str)
    except (VersionError, ValueError) as e:
        _fail(console, "reconcile_failed", e)

    if report is None:
        console.print("[yellow]change/change_old trees not found, nothing to reconcile[/yellow]")
        return

    if config.output_format == "json":
        _output_json(
            {
                "added": report.added,
                "modified": report.modified,
                "removed": report.removed,
                "failed": report.failed,
                "pruned_dirs": [str(p) for p in report.pruned_dirs],
            },
            console,
        )
        return

    _summary(
        "Reconciliation Summary",
        [
            ("Added", len(report.added)),
            ("Modified", len(report.modified)),
            ("Removed (unchanged)", len(report.removed)),
            ("Failed", len(report.failed)),
            ("Pruned directories", len(report.pruned_dirs)),
        ],
        console,
    )
    if verbose:
        for path in report.changed:
            console.print(f"  {path}")
    for path, error in report.failed.items():
        console.print(f"[yellow]Could not compare {path}: {error}[/yellow]")


@click.command()
@click.argument("root", required=False, type=click.Path(exists=True, file_okay=False, path_type=Path))
@version_option
@click.option(
    "--delete-sources/--keep-sources",
    default=None,
    help="Delete segments after a verified merge (default: from config)",
)
@click.pass_context
def segments(ctx: click.Context, root: Path | None, version_str: str | None, delete_sources: bool | None) -> None:
    """Reassemble split artifacts under ROOT (default: the release's export tree)."""
    config, console, _, _ = _get_context_objects(ctx)
    if delete_sources is not None:
        config.segments.delete_sources = delete_sources

    try:
        report = Pipeline.from_config(config).reassemble(version_str, root=root)
    except (VersionError, ValueError) as e:
        _fail(console, "segments_failed", e)

    if config.output_format == "json":
        _output_json(
            {
                "merged": [{"path": str(m.path), "segments": m.segments, "size": m.size} for m in report.merged],
                "failed": {e.group: str(e) for e in report.failed},
            },
            console,
        )
    else:
        _summary(
            "Segment Reassembly Summary",
            [("Merged", len(report.merged)), ("Already complete", len(report.complete)), ("Failed", len(report.failed))],
            console,
        )
        for error in report.failed:
            console.print(f"[red]✗ {error.group}: {error}[/red]")


@click.command()
@version_option
@click.pass_context
def decode(ctx: click.Context, version_str: str | None) -> None:
    """Unpack audio containers and decode their members."""
    config, console, _, _ = _get_context_objects(ctx)

    try:
        with console.status("Decoding containers..."):
            report = Pipeline.from_config(config).decode(version_str)
    except (VersionError, ValueError) as e:
        _fail(console, "decode_failed", e)

    if config.output_format == "json":
        _output_json(
            {
                "containers": [str(p) for p in report.containers],
                "decoded": len(report.decoded),
                "deduplicated": report.deduplicated,
                "failed": report.failed,
            },
            console,
        )
        return

    _summary(
        "Decode Summary",
        [
            ("Containers", len(report.containers)),
            ("Decoded files", len(report.decoded)),
            ("Unchanged removed", report.deduplicated),
            ("Failed", len(report.failed)),
        ],
        console,
    )
    for path, error in report.failed.items():
        console.print(f"[red]✗ {path}: {error}[/red]")


@click.command()
@click.argument("root", required=False, type=click.Path(exists=True, file_okay=False, path_type=Path))
@version_option
@click.pass_context
def flatten(ctx: click.Context, root: Path | None, version_str: str | None) -> None:
    """Collapse single-child directory chains under ROOT."""
    config, console, verbose, _ = _get_context_objects(ctx)

    try:
        collapsed = Pipeline.from_config(config).flatten(version_str, root=root)
    except (VersionError, ValueError) as e:
        _fail(console, "flatten_failed", e)

    if config.output_format == "json":
        _output_json({"collapsed": [str(p) for p in collapsed]}, console)
        return
    console.print(f"[green]Collapsed {len(collapsed)} directories[/green]")
    if verbose:
        for path in collapsed:
            console.print(f"  {path}")
