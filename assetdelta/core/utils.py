"""Shared utilities for assetdelta."""

from __future__ import annotations

import hashlib
import os
from collections.abc import Iterator
from pathlib import Path, PurePosixPath
from typing import BinaryIO

HASH_HEX_LENGTH = 64


def chunked_read(
    stream: BinaryIO,
    chunk_size: int = 1024 * 1024
) -> Iterator[bytes]:
    """Read stream in chunks.

    Args:
        stream: Binary stream to read from
        chunk_size: Size of each chunk in bytes

    Yields:
        Data chunks as bytes

    Raises:
        ValueError: If chunk_size is not positive

    Example:
        >>> import io
        >>> stream = io.BytesIO(b"hello world")
        >>> chunks = list(chunked_read(stream, chunk_size=5))
        >>> chunks
        [b'hello', b' worl', b'd']
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        yield chunk


def md5_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    """Compute the MD5 digest of a file without loading it whole.

    Args:
        path: File to hash
        chunk_size: Read size in bytes

    Returns:
        Lowercase hex digest (32 chars)
    """
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in chunked_read(f, chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def format_size(size: int) -> str:
    """Format byte size as human-readable string.

    Args:
        size: Size in bytes

    Returns:
        Formatted string with appropriate unit (e.g., "1.5 MB")

    Example:
        >>> format_size(1024)
        '1.0 KB'
        >>> format_size(1048576)
        '1.0 MB'
    """
    if size < 0:
        return "0 B"

    size_float = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_float < 1024.0:
            if unit == "B":
                return f"{int(size_float)} {unit}"
            return f"{size_float:.1f} {unit}"
        size_float /= 1024.0
    return f"{size_float:.1f} PB"


def validate_hash_string(hash_str: str, length: int | None = HASH_HEX_LENGTH) -> bool:
    """Validate hex hash string.

    Args:
        hash_str: Hash string to validate
        length: Required number of hex characters, or None for any length

    Returns:
        True if valid hex string, False otherwise

    Example:
        >>> validate_hash_string("deadbeef", length=8)
        True
        >>> validate_hash_string("invalid", length=None)
        False
    """
    if not hash_str or hash_str != hash_str.strip() or " " in hash_str or "\t" in hash_str:
        return False
    if length is not None and len(hash_str) != length:
        return False
    try:
        bytes.fromhex(hash_str)
        return True
    except ValueError:
        return False


def normalize_identifier(identifier: str) -> str:
    """Normalize a remote object identifier into a clean relative path.

    Backslashes become forward slashes, leading slashes and ``.``
    segments are dropped.

    Raises:
        ValueError: If the identifier is empty or escapes its root
    """
    cleaned = identifier.strip().replace("\\", "/").lstrip("/")
    parts = [p for p in PurePosixPath(cleaned).parts if p not in ("", ".")]
    if not parts:
        raise ValueError(f"Empty object identifier: {identifier!r}")
    if ".." in parts or ":" in parts[0]:
        raise ValueError(f"Object identifier escapes destination root: {identifier!r}")
    return "/".join(parts)


def resolve_inside(root: Path, relative: str) -> Path:
    """Join a relative posix path onto root, refusing anything outside it."""
    root_resolved = root.resolve()
    target = (root_resolved / normalize_identifier(relative)).resolve()
    if not target.is_relative_to(root_resolved):
        raise ValueError(f"Path {relative!r} resolves outside {root}")
    return target


def list_files(root: Path) -> dict[str, Path]:
    """Recursively list regular files under root.

    Returns:
        Mapping of relative posix path to absolute path, sorted by key
    """
    files: dict[str, Path] = {}
    for dirpath, _dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for name in filenames:
            full = base / name
            files[full.relative_to(root).as_posix()] = full
    return dict(sorted(files.items()))
