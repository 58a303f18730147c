"""Release version parsing, ordering and snapshot discovery.

Release versions look like ``9.3.0.170``. A release that was re-published
under the same number carries a fifth component, the re-release counter
(``9.3.0.170.2``); a missing counter means 1.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

import structlog

logger = structlog.get_logger()

SNAPSHOT_PREFIX = "AssetBundleInfo"

_VERSION_RE = re.compile(r"^(\d+\.\d+\.\d+\.\d+)(?:\.(\d+))?$")
_SNAPSHOT_RE = re.compile(rf"^{SNAPSHOT_PREFIX}_(\d+\.\d+\.\d+\.\d+(?:\.\d+)?)\.txt$")


class VersionError(ValueError):
    """Raised for unparseable or unresolvable version identifiers."""


@dataclass(frozen=True, order=True)
class Version:
    """Release version with its re-release counter.

    Ordering compares the four base components numerically, then the
    counter.
    """

    key: tuple[int, ...] = field(repr=False)
    base: str = field(compare=False)
    release: int = field(default=1, compare=False)

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse ``a.b.c.d`` or ``a.b.c.d.n``.

        Raises:
            VersionError: If the text is not a version string
        """
        match = _VERSION_RE.match(text.strip())
        if not match:
            raise VersionError(f"Invalid version string: {text!r}")
        base = match.group(1)
        release = int(match.group(2)) if match.group(2) else 1
        key = tuple(int(p) for p in base.split(".")) + (release,)
        return cls(key=key, base=base, release=release)

    def __str__(self) -> str:
        return f"{self.base}.{self.release}" if self.release > 1 else self.base


def version_key(text: str) -> tuple[int, ...]:
    """Lenient sort key for registry entries.

    Missing base components count as 0, unparseable parts are dropped,
    and a fifth component is read as the re-release counter.
    """
    parts = text.split(".")
    release = 1
    if len(parts) > 4:
        try:
            release = int(parts.pop()) or 1
        except ValueError:
            release = 1
    base: list[int] = []
    for part in parts:
        try:
            base.append(int(part))
        except ValueError:
            continue
    while len(base) < 4:
        base.append(0)
    return tuple(base[:4]) + (release,)


@dataclass(frozen=True)
class Snapshot:
    """A manifest snapshot file on disk."""

    version: Version
    path: Path


def snapshot_filename(version: Version | str) -> str:
    return f"{SNAPSHOT_PREFIX}_{version}.txt"


def parse_snapshot_filename(name: str) -> Version | None:
    """Extract the version from a snapshot filename, or None."""
    match = _SNAPSHOT_RE.match(name)
    if not match:
        return None
    return Version.parse(match.group(1))


def find_snapshots(directory: Path) -> list[Snapshot]:
    """List snapshot files in directory sorted oldest first."""
    if not directory.is_dir():
        return []
    snapshots = []
    for entry in directory.iterdir():
        if not entry.is_file():
            continue
        version = parse_snapshot_filename(entry.name)
        if version is not None:
            snapshots.append(Snapshot(version=version, path=entry))
    snapshots.sort(key=lambda s: s.version)
    return snapshots


def select_pair(snapshots: list[Snapshot], target: str | None = None) -> tuple[Snapshot, Snapshot]:
    """Pick the (older, newer) snapshots to compare.

    Without a target the two newest snapshots are used; with a target, the
    target and its immediate predecessor.

    Raises:
        VersionError: If fewer than two snapshots exist, the target is
            unknown, or the target is the oldest snapshot
    """
    if len(snapshots) < 2:
        raise VersionError(f"At least two snapshots are required, found {len(snapshots)}")

    if not target:
        return snapshots[-2], snapshots[-1]

    wanted = Version.parse(target)
    for index, snapshot in enumerate(snapshots):
        if snapshot.version == wanted:
            if index == 0:
                raise VersionError(f"Version {target} is the oldest snapshot; nothing to compare against")
            return snapshots[index - 1], snapshot
    raise VersionError(f"No snapshot found for version {target}")


def latest_version_dir(base_dir: Path) -> Path | None:
    """Return the subdirectory of base_dir with the highest version-like name.

    Directory names are compared with version_key, so ``9.3.0.170`` sorts
    after ``9.3.0.90``.
    """
    if not base_dir.is_dir():
        return None
    dirs = [d for d in base_dir.iterdir() if d.is_dir()]
    if not dirs:
        return None
    return max(dirs, key=lambda d: version_key(d.name))
