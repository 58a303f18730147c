"""Reassembly of artifacts that were split into numbered segments.

Producers split large artifacts into parts that carry an ordinal of at
least three digits, either before the extension or after it:

    voice_042-001.acb, voice_042-002.acb    -> voice_042.acb
    movie.bin.000, movie.bin.001            -> movie.bin

Every reassembly pass rescans the filesystem; nothing is cached between
passes, so a pass can be repeated after a crash. Segments are joined in
ascending ordinal order into a temporary file that replaces the final
name only after every segment was copied; a failed join leaves no output
behind.
"""

from __future__ import annotations

import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from assetdelta.core.integrity import IntegrityError, verify_contiguous, verify_file_size
from assetdelta.core.utils import chunked_read

logger = structlog.get_logger()

DASH_PATTERN = re.compile(r"^(?P<base>.+?)-(?P<ordinal>\d{3,})(?P<ext>\.[^.]+)$")
DOT_PATTERN = re.compile(r"^(?P<base>.+?)(?P<ext>\.[^.]+)\.(?P<ordinal>\d{3,})$")
PLAIN_PATTERN = re.compile(r"^(?P<base>.+?)(?P<ext>\.[^.]+)$")

COPY_CHUNK_SIZE = 1024 * 1024


class SegmentError(IntegrityError):
    """Raised when a segment group cannot be joined.

    Attributes:
        group: Output name of the failing group
    """

    def __init__(
        self,
        message: str,
        *,
        group: str,
        expected: str | int | None = None,
        actual: str | int | None = None,
    ):
        self.group = group
        super().__init__(message, expected=expected, actual=actual, artifact=group)


@dataclass(frozen=True)
class SegmentName:
    """Filename decomposed into base identity, extension and ordinal."""

    base: str
    ext: str
    ordinal: int | None

    @property
    def output_name(self) -> str:
        return f"{self.base}{self.ext}"


def parse_segment_name(name: str, extensions: list[str] | tuple[str, ...]) -> SegmentName | None:
    """Decompose a filename if its extension is one of extensions.

    Args:
        name: Bare filename
        extensions: Lowercase extensions with leading dot

    Returns:
        SegmentName (ordinal None for unsuffixed files) or None when the
        file is not a candidate
    """
    for pattern in (DASH_PATTERN, DOT_PATTERN):
        match = pattern.match(name)
        if match and match.group("ext").lower() in extensions:
            return SegmentName(match.group("base"), match.group("ext"), int(match.group("ordinal")))

    match = PLAIN_PATTERN.match(name)
    if match and match.group("ext").lower() in extensions:
        return SegmentName(match.group("base"), match.group("ext"), None)
    return None


def is_segment_file(name: str, extensions: list[str] | tuple[str, ...]) -> bool:
    """True when name carries an explicit segment ordinal."""
    parsed = parse_segment_name(name, extensions)
    return parsed is not None and parsed.ordinal is not None


@dataclass
class SegmentGroup:
    """Segments sharing a directory, base identity and extension.

    Attributes:
        directory: Directory the segments live in
        output_name: Name of the reassembled artifact
        members: (ordinal, path) pairs sorted by ordinal
        implicit: True when the group is a single unsuffixed file
    """

    directory: Path
    output_name: str
    members: list[tuple[int, Path]] = field(default_factory=list)
    implicit: bool = False

    @property
    def ordinals(self) -> list[int]:
        return [ordinal for ordinal, _ in self.members]

    @property
    def is_complete(self) -> bool:
        """A lone unsuffixed file is already the whole artifact."""
        return self.implicit and len(self.members) == 1


@dataclass
class MergedFile:
    """A reassembled artifact."""

    path: Path
    sources: list[Path]
    size: int

    @property
    def segments(self) -> int:
        return len(self.sources)


@dataclass
class ReassemblyReport:
    """Outcome of one reassembly pass."""

    merged: list[MergedFile] = field(default_factory=list)
    complete: list[Path] = field(default_factory=list)
    failed: list[SegmentError] = field(default_factory=list)


class SegmentReassembler:
    """Finds and joins segmented artifacts under a directory tree.

    Args:
        extensions: Extensions of artifacts that may be split
        delete_sources: Delete segments after a verified merge
        output_dir: Write merged files here (mirroring the relative
            directory) instead of beside their segments; unsuffixed
            artifacts are copied there as well
    """

    def __init__(
        self,
        extensions: list[str] | tuple[str, ...] = (".acb",),
        delete_sources: bool = False,
        output_dir: Path | None = None,
    ):
        self.extensions = tuple(e.lower() for e in extensions)
        self.delete_sources = delete_sources
        self.output_dir = output_dir

    def scan(self, root: Path) -> list[SegmentGroup]:
        """Group candidate files under root.

        Unsuffixed files sharing an identity with suffixed segments are
        treated as an earlier reassembly output and left out of the group.
        A suffixed file with no sibling segments is not a split artifact
        and is skipped.

        Returns:
            Groups sorted by directory and output name
        """
        output_root = self.output_dir.resolve() if self.output_dir else None
        explicit: dict[tuple[Path, str, str], SegmentGroup] = {}
        plain: dict[tuple[Path, str, str], SegmentGroup] = {}

        for dirpath, dirnames, filenames in os.walk(root):
            directory = Path(dirpath)
            if output_root is not None:
                dirnames[:] = [d for d in dirnames if (directory / d).resolve() != output_root]
            dirnames.sort()
            for name in sorted(filenames):
                parsed = parse_segment_name(name, self.extensions)
                if parsed is None:
                    continue
                key = (directory, parsed.base, parsed.ext.lower())
                if parsed.ordinal is None:
                    plain[key] = SegmentGroup(
                        directory=directory,
                        output_name=parsed.output_name,
                        members=[(0, directory / name)],
                        implicit=True,
                    )
                else:
                    group = explicit.setdefault(
                        key, SegmentGroup(directory=directory, output_name=parsed.output_name)
                    )
                    group.members.append((parsed.ordinal, directory / name))

        for key, group in list(explicit.items()):
            if len(group.members) <= 1:
                logger.debug("lone_segment_skipped", path=str(group.members[0][1]))
                del explicit[key]
                continue
            group.members.sort(key=lambda m: m[0])

        groups = list(explicit.values())
        groups.extend(g for key, g in plain.items() if key not in explicit)

        groups.sort(key=lambda g: (str(g.directory), g.output_name))
        return groups

    def destination_for(self, group: SegmentGroup, root: Path) -> Path:
        """Final path of a group's merged artifact."""
        if self.output_dir is None:
            return group.directory / group.output_name
        return self.output_dir / group.directory.relative_to(root) / group.output_name

    def merge(self, group: SegmentGroup, destination: Path) -> MergedFile:
        """Concatenate a group's segments into destination.

        Each segment is opened, streamed and closed before the next one is
        opened. The output appears at destination only after the last
        segment was copied and the size verified.

        Raises:
            SegmentError: If a segment is missing, unreadable, or the group
                has gaps in its ordinals
        """
        artifact = str(group.directory / group.output_name)
        try:
            verify_contiguous(group.ordinals, artifact)
        except IntegrityError as e:
            raise SegmentError(str(e), group=artifact, expected=e.expected, actual=e.actual) from e

        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".merge", dir=destination.parent)
        tmp_path = Path(tmp_name)
        written = 0
        expected = 0
        try:
            with os.fdopen(fd, "wb") as out:
                for ordinal, path in group.members:
                    with open(path, "rb") as src:
                        expected += os.fstat(src.fileno()).st_size
                        for chunk in chunked_read(src, COPY_CHUNK_SIZE):
                            out.write(chunk)
                            written += len(chunk)
                    logger.debug("segment_appended", group=artifact, ordinal=ordinal, segment=path.name)
            verify_file_size(tmp_path, expected)
            os.replace(tmp_path, destination)
        except (OSError, IntegrityError) as e:
            tmp_path.unlink(missing_ok=True)
            raise SegmentError(f"Failed to reassemble {artifact}: {e}", group=artifact) from e

        sources = [path for _, path in group.members]
        logger.info("segments_merged", output=str(destination), segments=len(sources), size=written)

        if self.delete_sources:
            for path in sources:
                try:
                    path.unlink(missing_ok=True)
                except OSError as e:
                    logger.warning("segment_delete_failed", segment=str(path), error=str(e))

        return MergedFile(path=destination, sources=sources, size=written)

    def copy_complete(self, group: SegmentGroup, destination: Path) -> Path:
        """Copy an already-complete artifact to destination atomically."""
        _, source = group.members[0]
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".copy", dir=destination.parent)
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            shutil.copyfile(source, tmp_path)
            os.replace(tmp_path, destination)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        return destination

    def reassemble(self, root: Path) -> ReassemblyReport:
        """Rescan root and reassemble every segmented artifact.

        A failing group is recorded in the report; the remaining groups
        are still processed.
        """
        report = ReassemblyReport()
        for group in self.scan(root):
            destination = self.destination_for(group, root)
            if group.is_complete:
                if self.output_dir is not None:
                    try:
                        report.complete.append(self.copy_complete(group, destination))
                    except OSError as e:
                        report.failed.append(SegmentError(f"Failed to copy {group.output_name}: {e}", group=str(destination)))
                else:
                    report.complete.append(group.members[0][1])
                continue

            try:
                report.merged.append(self.merge(group, destination))
            except SegmentError as e:
                logger.error("segment_group_failed", group=e.group, error=str(e))
                report.failed.append(e)

        logger.info(
            "reassembly_complete",
            root=str(root),
            merged=len(report.merged),
            complete=len(report.complete),
            failed=len(report.failed),
        )
        return report
