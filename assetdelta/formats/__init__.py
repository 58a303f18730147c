"""Parsers for manifest snapshots and persisted records."""

from assetdelta.formats.base import FormatParser
from assetdelta.formats.manifest import HashedManifest, ManifestError, ManifestParser
from assetdelta.formats.records import DiffRecord, DiffRecordParser

__all__ = [
    "DiffRecord",
    "DiffRecordParser",
    "FormatParser",
    "HashedManifest",
    "ManifestError",
    "ManifestParser",
]
