"""Integrity checks for reassembled and downloaded artifacts.

An artifact is only considered complete when its size matches what its
inputs add up to. Failures are raised as IntegrityError so callers can
drop the offending artifact without aborting sibling work.
"""

from __future__ import annotations

from pathlib import Path

import structlog

logger = structlog.get_logger()


class IntegrityError(Exception):
    """Raised when an artifact fails verification.

    Attributes:
        expected: Expected hash or size
        actual: Actual hash or size
        artifact: Name or path of the artifact being verified
    """

    def __init__(
        self,
        message: str,
        *,
        expected: str | int | None = None,
        actual: str | int | None = None,
        artifact: str | None = None,
    ):
        self.expected = expected
        self.actual = actual
        self.artifact = artifact
        super().__init__(message)


def verify_file_size(path: Path, expected_size: int) -> bool:
    """Verify a file on disk has the expected size.

    Args:
        path: File to check
        expected_size: Expected size in bytes

    Returns:
        True if the size matches

    Raises:
        IntegrityError: If the size does not match
    """
    actual_size = path.stat().st_size
    if actual_size != expected_size:
        raise IntegrityError(
            f"Size mismatch for {path.name}: expected {expected_size}, got {actual_size}",
            expected=expected_size,
            actual=actual_size,
            artifact=str(path),
        )
    return True


def verify_contiguous(ordinals: list[int], artifact: str) -> bool:
    """Verify sorted segment ordinals have no gaps.

    A sequence may start at 0 or 1 and must then increase by exactly one.

    Raises:
        IntegrityError: If an ordinal is missing or the start is unexpected
    """
    if not ordinals:
        raise IntegrityError(f"No segments for {artifact}", artifact=artifact)
    if len(set(ordinals)) != len(ordinals):
        raise IntegrityError(f"Duplicate segment ordinals for {artifact}", artifact=artifact)
    first = ordinals[0]
    if first not in (0, 1):
        raise IntegrityError(
            f"Segment sequence for {artifact} starts at {first}",
            expected=1,
            actual=first,
            artifact=artifact,
        )
    for expected, actual in enumerate(ordinals, start=first):
        if expected != actual:
            raise IntegrityError(
                f"Segment {expected} of {artifact} is missing",
                expected=expected,
                actual=actual,
                artifact=artifact,
            )
    return True
