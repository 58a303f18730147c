"""End-to-end orchestration of the delta tracking stages.

Each stage is a method taking an explicit version; the only place the
"latest version" directory convention is consulted is
``Pipeline.resolve_version``, called when a caller omits the version.

Working tree layout (all relative to ``paths.root``)::

    AssetBundleInfoUrl.json                 version registry
    AssetBundleInfo/AssetBundleInfo_<v>.txt manifest snapshots
    compare/assetsList_from_<a>_to_<b>.json diff records
    compare/failed_downloads_<b>.txt        failed downloads
    analysing/<b>/{new,change,change_old}/  raw bundle files
    assets/<b>/{new,change,change_old}/     extracted trees
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import structlog

from assetdelta.core.collaborators import (
    CodecDecoder,
    CommandCodecDecoder,
    CommandContainerDecoder,
    CommandExtractor,
    ContainerDecoder,
    Extractor,
)
from assetdelta.core.config import AppConfig
from assetdelta.core.decode import ContainerDecodePass, DecodeReport
from assetdelta.core.diff import DiffResult, compare_snapshots
from assetdelta.core.fetcher import FetchReport, FetchResult, ResilientFetcher
from assetdelta.core.flatten import flatten_tree
from assetdelta.core.reconcile import ReconcileReport, TreeReconciler
from assetdelta.core.registry import VersionRegistry
from assetdelta.core.segments import ReassemblyReport, SegmentReassembler
from assetdelta.core.snapshot import IncrementLastComponent, NextVersionStrategy, SnapshotFetcher, SnapshotResult
from assetdelta.core.versions import Version, VersionError, find_snapshots, latest_version_dir, select_pair
from assetdelta.formats.records import (
    DiffRecordParser,
    failed_record_filename,
    find_diff_record,
    read_failed_list,
    write_failed_list,
)

logger = structlog.get_logger()

NEW = "new"
CHANGE = "change"
CHANGE_OLD = "change_old"
CATEGORIES = (NEW, CHANGE, CHANGE_OLD)


@dataclass
class DiffOutcome:
    """Result of the diff stage."""

    old: Version
    new: Version
    result: DiffResult
    record_path: Path


@dataclass
class DownloadOutcome:
    """Result of the download stage, one fetch report per category."""

    version: str
    old_version: str
    reports: dict[str, FetchReport] = field(default_factory=dict)
    failed_record: Path | None = None

    @property
    def failed(self) -> list[str]:
        """Failed identifiers qualified by category (``change_old/path``)."""
        return [f"{category}/{identifier}" for category, report in self.reports.items() for identifier in report.failed]

    @property
    def downloaded(self) -> int:
        return sum(len(r.downloaded) for r in self.reports.values())

    @property
    def skipped(self) -> int:
        return sum(len(r.skipped) for r in self.reports.values())


@dataclass
class PipelineResult:
    """Per-stage results of a full run; stages that did not run stay None."""

    snapshot: SnapshotResult | None = None
    diff: DiffOutcome | None = None
    download: DownloadOutcome | None = None
    extracted: list[str] = field(default_factory=list)
    reconcile: ReconcileReport | None = None
    segments: ReassemblyReport | None = None
    decode: DecodeReport | None = None
    flattened: list[Path] = field(default_factory=list)


def split_qualified(entry: str) -> tuple[str, str] | None:
    """Split ``category/identifier`` into its parts, or None if unqualified."""
    category, _, identifier = entry.partition("/")
    if category not in CATEGORIES or not identifier:
        return None
    return category, identifier


class Pipeline:
    """Runs the stages against a configured working tree.

    Args:
        config: Application configuration
        extractor: Bundle extraction tool; the extract stage is skipped without one
        container_decoder: Container unpacker; decode is skipped without one
        codec_decoder: Audio decoder; decode is skipped without one
        strategy: Next-release guess for manifest fetches without a URL
        http_client: Sync client for manifest downloads
        transport: Async transport for object downloads
    """

    def __init__(
        self,
        config: AppConfig,
        extractor: Extractor | None = None,
        container_decoder: ContainerDecoder | None = None,
        codec_decoder: CodecDecoder | None = None,
        strategy: NextVersionStrategy | None = None,
        http_client: httpx.Client | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.paths = config.paths
        self.extractor = extractor
        self.container_decoder = container_decoder
        self.codec_decoder = codec_decoder
        self.strategy = strategy or IncrementLastComponent(step=config.version_step)
        self._http_client = http_client
        self._transport = transport
        self.registry = VersionRegistry(self.paths.registry_path)

    @classmethod
    def from_config(cls, config: AppConfig) -> Pipeline:
        """Build a pipeline whose collaborators are the configured commands."""
        decode = config.decode
        timeout = decode.command_timeout
        return cls(
            config,
            extractor=CommandExtractor(decode.extract_command, timeout) if decode.extract_command else None,
            container_decoder=(
                CommandContainerDecoder(decode.container_command, timeout) if decode.container_command else None
            ),
            codec_decoder=CommandCodecDecoder(decode.codec_command, timeout=timeout) if decode.codec_command else None,
        )

    def resolve_version(self, version: str | None = None) -> str:
        """Explicit version, or the newest version directory under downloads.

        Raises:
            VersionError: If no version is given and none can be discovered
        """
        if version:
            return str(Version.parse(version))
        found = latest_version_dir(self.paths.downloads)
        if found is None:
            raise VersionError(f"No version directories under {self.paths.downloads}")
        return found.name

    # Stage: manifest snapshot

    def fetch_manifest(self, url: str | None = None, version: str | None = None) -> SnapshotResult:
        """Download a manifest snapshot and register its URL."""
        with SnapshotFetcher(
            self.registry,
            self.paths.manifests,
            timeout=self.config.manifest_timeout,
            strategy=self.strategy,
            client=self._http_client,
        ) as fetcher:
            return fetcher.fetch(url, version)

    # Stage: diff

    def diff(self, target: str | None = None) -> DiffOutcome:
        """Diff a snapshot against its predecessor and persist the record."""
        older, newer = select_pair(find_snapshots(self.paths.manifests), target)
        result, record_path = compare_snapshots(older, newer, self.paths.diffs)
        return DiffOutcome(old=older.version, new=newer.version, result=result, record_path=record_path)

    # Stage: download

    def _fetch(
        self,
        identifiers: list[str],
        base_url: str,
        destination: Path,
        progress_callback: Callable[[FetchResult, int, int], None] | None,
    ) -> FetchReport:
        fetcher = ResilientFetcher(self.config.fetch, transport=self._transport)
        fetcher.progress_callback = progress_callback
        return fetcher.fetch_paths(identifiers, base_url, destination)

    def download(
        self,
        version: str | None = None,
        retry_failed: bool = False,
        progress_callback: Callable[[FetchResult, int, int], None] | None = None,
    ) -> DownloadOutcome:
        """Fetch the objects listed in a diff record into category folders.

        ``new`` and ``change`` come from the target release, ``change_old``
        (the changed paths as they were) from the previous release. With
        ``retry_failed`` only the failed-download record is retried.

        Raises:
            VersionError: If no diff record matches
            RegistryError: If the target release has no registered URL
        """
        record_path, old, new = find_diff_record(self.paths.diffs, version)
        version_name = str(new)
        record = DiffRecordParser().parse_file(record_path)

        plan: dict[str, list[str]] = {NEW: record.new, CHANGE: record.change, CHANGE_OLD: record.change}
        failed_path = self.paths.diffs / failed_record_filename(version_name)
        if retry_failed:
            plan = {category: [] for category in CATEGORIES}
            for entry in read_failed_list(failed_path):
                parsed = split_qualified(entry)
                if parsed is None:
                    logger.warning("failed_entry_unqualified", entry=entry)
                    continue
                plan[parsed[0]].append(parsed[1])

        sources = {NEW: self.registry.base_url(version_name), CHANGE: self.registry.base_url(version_name)}
        if str(old) in self.registry.entries:
            sources[CHANGE_OLD] = self.registry.base_url(str(old))
        elif plan[CHANGE_OLD]:
            logger.warning("previous_release_unregistered", version=str(old))

        outcome = DownloadOutcome(version=version_name, old_version=str(old))
        stage_root = self.paths.downloads / version_name
        for category in CATEGORIES:
            identifiers = plan.get(category, [])
            if not identifiers or category not in sources:
                continue
            logger.info("category_download_start", category=category, count=len(identifiers))
            outcome.reports[category] = self._fetch(
                identifiers, sources[category], stage_root / category, progress_callback
            )

        if retry_failed or outcome.reports:
            write_failed_list(failed_path, outcome.failed)
        outcome.failed_record = failed_path if failed_path.exists() else None
        logger.info(
            "download_complete",
            version=version_name,
            downloaded=outcome.downloaded,
            skipped=outcome.skipped,
            failed=len(outcome.failed),
        )
        return outcome

    # Stage: extract

    def extract(self, version: str | None = None) -> list[str]:
        """Run the extractor for each downloaded category.

        Returns:
            Categories extracted

        Raises:
            ValueError: If no extractor is configured
            DecodeError: If the extractor fails
        """
        if self.extractor is None:
            raise ValueError("No extractor configured")
        version_name = self.resolve_version(version)
        source_root = self.paths.downloads / version_name
        categories = sorted(d.name for d in source_root.iterdir() if d.is_dir()) if source_root.is_dir() else []
        for category in categories:
            output = self.paths.exports / version_name / category
            logger.info("extract_start", category=category, output=str(output))
            self.extractor.extract(source_root / category, output)
        return categories

    # Stage: reconcile

    def reconcile(self, version: str | None = None) -> ReconcileReport | None:
        """Drop extracted changed files identical to their old counterparts.

        Returns:
            Report, or None when either category tree is missing
        """
        export_root = self.paths.exports / self.resolve_version(version)
        change, change_old = export_root / CHANGE, export_root / CHANGE_OLD
        if not change.is_dir() or not change_old.is_dir():
            logger.info("reconcile_skipped", root=str(export_root))
            return None
        return TreeReconciler.from_config(self.config.reconcile).reconcile(change_old, change)

    # Stage: segments

    def reassemble(self, version: str | None = None, root: Path | None = None) -> ReassemblyReport:
        """Merge split artifacts under root (default: the version's export tree)."""
        if root is None:
            root = self.paths.exports / self.resolve_version(version)
        settings = self.config.segments
        reassembler = SegmentReassembler(
            extensions=settings.extensions,
            delete_sources=settings.delete_sources,
            output_dir=root / settings.output_subdir if settings.output_subdir else None,
        )
        return reassembler.reassemble(root)

    # Stage: decode

    def decode(self, version: str | None = None) -> DecodeReport:
        """Unpack and decode audio containers in the version's export tree.

        Raises:
            ValueError: If the decoders are not configured
        """
        if self.container_decoder is None or self.codec_decoder is None:
            raise ValueError("Container and codec decoders must be configured")
        settings = self.config.decode
        decode_pass = ContainerDecodePass(
            self.container_decoder,
            self.codec_decoder,
            container_extension=settings.container_extension,
            encoded_extension=settings.encoded_extension,
            key=settings.key,
            max_workers=settings.max_workers,
            delete_containers=settings.delete_containers,
            delete_encoded=settings.delete_encoded,
            reconciler=TreeReconciler.from_config(self.config.reconcile),
        )
        return decode_pass.decode_version(self.paths.exports / self.resolve_version(version))

    # Stage: flatten

    def flatten(self, version: str | None = None, root: Path | None = None) -> list[Path]:
        """Collapse single-child directory chains under root."""
        if root is None:
            root = self.paths.exports / self.resolve_version(version)
        return flatten_tree(root)

    def run(self, url: str | None = None, version: str | None = None) -> PipelineResult:
        """Run every stage for one release.

        Stages needing an unconfigured collaborator are skipped.
        """
        result = PipelineResult()
        result.snapshot = self.fetch_manifest(url, version)
        target = result.snapshot.version

        result.diff = self.diff(target)
        result.download = self.download(target)

        if self.extractor is None:
            logger.warning("stage_skipped", stage="extract", reason="no extractor configured")
            return result
        result.extracted = self.extract(target)

        result.reconcile = self.reconcile(target)
        result.segments = self.reassemble(target)
        if self.container_decoder is not None and self.codec_decoder is not None:
            result.decode = self.decode(target)
        else:
            logger.warning("stage_skipped", stage="decode", reason="no decoders configured")

        export_root = self.paths.exports / target
        if export_root.is_dir():
            result.flattened = self.flatten(root=export_root)
        logger.info("pipeline_complete", version=target)
        return result
