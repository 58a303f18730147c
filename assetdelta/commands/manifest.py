"""Manifest snapshot commands: fetch, diff and list versions."""

from __future__ import annotations

import json
import sys
from typing import Any

import click
import httpx
import structlog
from rich.console import Console
from rich.table import Table

from assetdelta.core.config import AppConfig
from assetdelta.core.fetcher import PermanentFetchError
from assetdelta.core.pipeline import Pipeline
from assetdelta.core.registry import RegistryError
from assetdelta.core.retry import RetryExhaustedError
from assetdelta.core.utils import format_size
from assetdelta.core.versions import VersionError, find_snapshots
from assetdelta.formats.manifest import ManifestError

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


@click.group("manifest", short_help="Fetch and compare manifest snapshots.")
def manifest_group() -> None:
    """Manifest snapshot operations."""


@manifest_group.command("fetch")
@click.argument("url", required=False)
@click.option("--version", "-V", "version_str", help="Release version to fetch (URL derived from the registry)")
@click.pass_context
def fetch_manifest(ctx: click.Context, url: str | None, version_str: str | None) -> None:
    """Download a manifest snapshot.

    Without URL the next release is guessed from the newest registry entry.
    """
    config, console, verbose, _ = _get_context_objects(ctx)

    try:
        with console.status("Fetching manifest snapshot..."):
            result = Pipeline.from_config(config).fetch_manifest(url, version_str)
    except (VersionError, RegistryError) as e:
        logger.error("manifest_fetch_failed", error=str(e))
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except PermanentFetchError as e:
        logger.error("manifest_fetch_failed", status=e.status_code, url=e.url)
        console.print(f"[red]Error: manifest not available (HTTP {e.status_code}): {e.url}[/red]")
        sys.exit(1)
    except (RetryExhaustedError, httpx.HTTPError, OSError) as e:
        logger.error("manifest_fetch_failed", error=str(e))
        console.print(f"[red]Error fetching manifest: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        _output_json(
            {
                "version": result.version,
                "path": str(result.path),
                "url": result.url,
                "downloaded": result.downloaded,
            },
            console,
        )
        return

    if result.downloaded:
        console.print(f"[green]Saved manifest {result.version} to {result.path}[/green]")
    else:
        console.print(f"[yellow]Manifest {result.version} already present: {result.path}[/yellow]")
    if verbose:
        console.print(f"Source: {result.url}")


@manifest_group.command("diff")
@click.option("--target", "-t", help="Newer version to compare against its predecessor (default: newest)")
@click.option("--show", "show_paths", is_flag=True, help="List the added and changed paths")
@click.pass_context
def diff_manifest(ctx: click.Context, target: str | None, show_paths: bool) -> None:
    """Compare a manifest snapshot with its predecessor."""
    config, console, _, _ = _get_context_objects(ctx)

    try:
        outcome = Pipeline.from_config(config).diff(target)
    except (VersionError, ManifestError) as e:
        logger.error("manifest_diff_failed", error=str(e))
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    result = outcome.result
    if config.output_format == "json":
        _output_json(
            {
                "old": str(outcome.old),
                "new": str(outcome.new),
                "added": result.added,
                "changed": result.changed,
                "record": str(outcome.record_path),
            },
            console,
        )
        return

    table = Table(title=f"Manifest Diff {outcome.old} -> {outcome.new}")
    table.add_column("Category", style="cyan")
    table.add_column("Count", style="magenta")
    table.add_row("Added", str(len(result.added)))
    table.add_row("Changed", str(len(result.changed)))
    table.add_row("Total", str(result.total))
    console.print(table)

    if show_paths:
        for path in result.added:
            console.print(f"[green]+ {path}[/green]")
        for path in result.changed:
            console.print(f"[yellow]~ {path}[/yellow]")

    console.print(f"Diff record saved to {outcome.record_path}")


@manifest_group.command("versions")
@click.pass_context
def list_versions(ctx: click.Context) -> None:
    """List stored manifest snapshots and registered releases."""
    config, console, _, _ = _get_context_objects(ctx)
    pipeline = Pipeline.from_config(config)

    try:
        registered = pipeline.registry.entries
    except RegistryError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    snapshots = list(reversed(find_snapshots(config.paths.manifests)))

    if config.output_format == "json":
        _output_json(
            {
                "snapshots": [
                    {"version": str(s.version), "path": str(s.path), "size": s.path.stat().st_size}
                    for s in snapshots
                ],
                "registry": {v: registered[v] for v in pipeline.registry.versions()},
            },
            console,
        )
        return

    if not snapshots and not registered:
        console.print("[yellow]No manifest snapshots found[/yellow]")
        return

    table = Table(title="Manifest Snapshots")
    table.add_column("Version", style="cyan")
    table.add_column("Size", style="magenta")
    table.add_column("Registered", style="green")
    for snapshot in snapshots:
        table.add_row(
            str(snapshot.version),
            format_size(snapshot.path.stat().st_size),
            "yes" if str(snapshot.version) in registered else "no",
        )
    console.print(table)
