"""Manifest diff engine.

Compares two manifest snapshots and reports which paths a consumer of the
newer release has to fetch: paths that did not exist before, and paths
whose content hash differs. Removed paths are never reported.
"""

from __future__ import annotations

from pathlib import Path

import structlog
from pydantic import BaseModel, Field, model_validator

from assetdelta.core.versions import Snapshot
from assetdelta.formats.manifest import HashedManifest, ManifestParser
from assetdelta.formats.records import DiffRecord, DiffRecordParser, diff_record_filename

logger = structlog.get_logger()


class DiffResult(BaseModel):
    """Added and changed paths, each sorted and free of duplicates."""

    added: list[str] = Field(default_factory=list, description="Present only in the newer manifest")
    changed: list[str] = Field(default_factory=list, description="Present in both with different hashes")

    @model_validator(mode="after")
    def _check_disjoint(self) -> DiffResult:
        overlap = set(self.added) & set(self.changed)
        if overlap:
            raise ValueError(f"Paths cannot be both added and changed: {sorted(overlap)[:5]}")
        return self

    @property
    def total(self) -> int:
        return len(self.added) + len(self.changed)

    def is_empty(self) -> bool:
        return not self.added and not self.changed

    def to_record(self) -> DiffRecord:
        return DiffRecord(new=list(self.added), change=list(self.changed))

    @classmethod
    def from_record(cls, record: DiffRecord) -> DiffResult:
        return cls(added=sorted(set(record.new)), changed=sorted(set(record.change)))


def diff_manifests(old: HashedManifest, new: HashedManifest) -> DiffResult:
    """Compute the delta from old to new.

    Args:
        old: Manifest of the older release
        new: Manifest of the newer release

    Returns:
        DiffResult with lexicographically sorted paths
    """
    added: list[str] = []
    changed: list[str] = []
    for path, new_hash in new.entries.items():
        old_hash = old.entries.get(path)
        if old_hash is None:
            added.append(path)
        elif old_hash != new_hash:
            changed.append(path)

    added.sort()
    changed.sort()
    return DiffResult(added=added, changed=changed)


def compare_snapshots(
    older: Snapshot,
    newer: Snapshot,
    output_dir: Path,
    parser: ManifestParser | None = None,
) -> tuple[DiffResult, Path]:
    """Parse two snapshot files, diff them and persist the diff record.

    Args:
        older: Snapshot of the older release
        newer: Snapshot of the newer release
        output_dir: Directory receiving the diff record
        parser: Manifest parser to use

    Returns:
        Tuple of the diff result and the record path

    Raises:
        ManifestError: If either snapshot cannot be read or has no entries
    """
    parser = parser or ManifestParser()
    old_manifest = parser.parse_file(older.path)
    new_manifest = parser.parse_file(newer.path)

    result = diff_manifests(old_manifest, new_manifest)

    record_path = output_dir / diff_record_filename(older.version, newer.version)
    DiffRecordParser().build_file(result.to_record(), record_path)

    logger.info(
        "manifest_diff_complete",
        old=str(older.version),
        new=str(newer.version),
        added=len(result.added),
        changed=len(result.changed),
        record=str(record_path),
    )
    return result, record_path
