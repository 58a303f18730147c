"""Parser and builder for asset bundle manifest snapshots.

A manifest snapshot is a semi-structured text dump listing every asset of
one release. Lines of interest carry a path token followed somewhere later
by an ``@``-prefixed 64 hex char content hash:

    ... scenario/chara/res001 ... @3f2a...9c ...

Anything without a recognisable hash is ignored. The path is the last
path-shaped token (starting with a letter, ending with a letter or digit)
that appears before the hash.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field

from assetdelta.formats.base import FormatParser, decode_text

logger = structlog.get_logger()

HASH_PATTERN = re.compile(r"@([a-fA-F0-9]{64})")
PATH_PATTERN = re.compile(r"[A-Za-z][A-Za-z0-9_\-./]*[A-Za-z0-9]")


class ManifestError(ValueError):
    """Raised when a manifest snapshot cannot be used.

    Attributes:
        source: File or label the manifest came from
    """

    def __init__(self, message: str, *, source: str | None = None):
        self.source = source
        super().__init__(message)


class HashedManifest(BaseModel):
    """One release's path to content-hash mapping.

    Keys keep first-seen order; a repeated path keeps its last hash.
    """

    entries: dict[str, str] = Field(default_factory=dict, description="Asset path to content hash")
    source: str | None = Field(default=None, description="Where the manifest was read from")

    model_config = ConfigDict(frozen=True)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, path: object) -> bool:
        return path in self.entries

    def get(self, path: str) -> str | None:
        return self.entries.get(path)

    def paths(self) -> set[str]:
        return set(self.entries)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str], source: str | None = None) -> HashedManifest:
        return cls(entries=dict(mapping), source=source)


def extract_path_and_hash(line: str) -> tuple[str, str] | None:
    """Extract the (path, hash) pair from one manifest line.

    Args:
        line: A single line of manifest text

    Returns:
        Tuple of path and lowercase hash, or None when the line has no
        hash or no path-shaped token before it
    """
    hash_match = HASH_PATTERN.search(line)
    if not hash_match:
        return None

    path_matches = PATH_PATTERN.findall(line[:hash_match.start()])
    if not path_matches:
        return None

    return path_matches[-1], hash_match.group(1).lower()


class ManifestParser(FormatParser[HashedManifest]):
    """Parser for manifest snapshot text."""

    def parse(self, data: bytes | str, source: str | None = None) -> HashedManifest:
        """Parse manifest text.

        Args:
            data: Raw snapshot bytes or text
            source: Label for error messages and logging

        Returns:
            Parsed manifest

        Raises:
            ManifestError: If no line yields a valid entry
        """
        entries: dict[str, str] = {}
        skipped = 0
        for line in decode_text(data).splitlines():
            pair = extract_path_and_hash(line)
            if pair is None:
                if line.strip():
                    skipped += 1
                continue
            path, hash_value = pair
            entries[path] = hash_value

        if not entries:
            raise ManifestError(
                f"No valid manifest entries found in {source or 'input'}",
                source=source,
            )

        logger.debug("manifest_parsed", source=source, entries=len(entries), skipped_lines=skipped)
        return HashedManifest(entries=entries, source=source)

    def parse_file(self, path: Path) -> HashedManifest:
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            logger.error("Failed to read file", path=str(path), error=str(e))
            raise ManifestError(f"Cannot read manifest {path}: {e}", source=str(path)) from e
        return self.parse(data, source=str(path))

    def build(self, obj: HashedManifest) -> bytes:
        """Serialize a manifest as one ``path @hash`` line per entry."""
        lines = [f"{path} @{hash_value}" for path, hash_value in obj.entries.items()]
        return ("\n".join(lines) + "\n").encode("utf-8")
