"""Persisted diff and failed-download records.

Diff record (JSON), named ``assetsList_from_<old>_to_<new>.json``::

    {"new": ["path", ...], "change": ["path", ...]}

Failed-download record (plain text), named
``failed_downloads_<version>.txt``: one object identifier per line.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, ValidationError

from assetdelta.core.versions import Version, VersionError
from assetdelta.formats.base import FormatParser, decode_text

logger = structlog.get_logger()

DIFF_RECORD_RE = re.compile(
    r"^assetsList_from_(\d+\.\d+\.\d+\.\d+(?:\.\d+)?)_to_(\d+\.\d+\.\d+\.\d+(?:\.\d+)?)\.json$"
)


class DiffRecord(BaseModel):
    """Serialized manifest diff."""

    new: list[str] = Field(default_factory=list, description="Paths added in the newer release")
    change: list[str] = Field(default_factory=list, description="Paths whose hash changed")

    def all_paths(self) -> list[str]:
        """New paths followed by changed paths."""
        return [*self.new, *self.change]


class DiffRecordParser(FormatParser[DiffRecord]):
    """Parser for diff record JSON."""

    def parse(self, data: bytes | str) -> DiffRecord:
        try:
            return DiffRecord.model_validate(json.loads(decode_text(data)))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ValueError(f"Invalid diff record: {e}") from e

    def build(self, obj: DiffRecord) -> bytes:
        return (json.dumps(obj.model_dump(), indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def diff_record_filename(old: Version | str, new: Version | str) -> str:
    return f"assetsList_from_{old}_to_{new}.json"


def parse_diff_record_filename(name: str) -> tuple[Version, Version] | None:
    """Return the (old, new) versions embedded in a diff record filename."""
    match = DIFF_RECORD_RE.match(name)
    if not match:
        return None
    return Version.parse(match.group(1)), Version.parse(match.group(2))


def find_diff_record(directory: Path, target: str | None = None) -> tuple[Path, Version, Version]:
    """Locate a diff record.

    Args:
        directory: Directory holding diff records
        target: Newer version to look for; the highest target when None

    Returns:
        Tuple of (record path, old version, new version)

    Raises:
        VersionError: If no matching record exists
    """
    candidates: list[tuple[Version, Version, Path]] = []
    if directory.is_dir():
        for entry in directory.iterdir():
            parsed = parse_diff_record_filename(entry.name)
            if parsed is not None:
                candidates.append((parsed[1], parsed[0], entry))

    if target:
        wanted = Version.parse(target)
        candidates = [c for c in candidates if c[0] == wanted]

    if not candidates:
        suffix = f" for version {target}" if target else ""
        raise VersionError(f"No diff record found in {directory}{suffix}")

    new, old, path = max(candidates, key=lambda c: (c[0], c[1]))
    return path, old, new


def failed_record_filename(version: Version | str) -> str:
    return f"failed_downloads_{version}.txt"


def write_failed_list(path: Path, identifiers: list[str]) -> None:
    """Persist failed identifiers, or remove the record when there are none."""
    if not identifiers:
        path.unlink(missing_ok=True)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(identifiers) + "\n", encoding="utf-8")
    logger.info("failed_list_written", path=str(path), count=len(identifiers))


def read_failed_list(path: Path) -> list[str]:
    """Read a failed-download record, ignoring blanks and comments."""
    if not path.exists():
        return []
    lines = (line.strip() for line in path.read_text(encoding="utf-8").splitlines())
    return [line for line in lines if line and not line.startswith("#")]
