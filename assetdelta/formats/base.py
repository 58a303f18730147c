"""Base classes for record parsers."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Generic, TypeVar

import structlog
from pydantic import BaseModel

logger = structlog.get_logger()

T = TypeVar("T", bound=BaseModel)


class FormatParser(ABC, Generic[T]):
    """Base class for text record parsers."""

    @abstractmethod
    def parse(self, data: bytes | str) -> T:
        """Parse record data.

        Args:
            data: Raw bytes or decoded text

        Returns:
            Parsed record object
        """
        ...

    def parse_file(self, path: Path) -> T:
        """Parse a record from file.

        Args:
            path: File path

        Returns:
            Parsed record object
        """
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            logger.error("Failed to read file", path=str(path), error=str(e))
            raise ValueError(f"Cannot read file {path}: {e}") from e
        return self.parse(data)

    @abstractmethod
    def build(self, obj: T) -> bytes:
        """Serialize a record object.

        Args:
            obj: Record object

        Returns:
            Encoded record bytes
        """
        ...

    def build_file(self, obj: T, path: Path) -> None:
        """Write a record to file atomically.

        The data goes to a sibling temporary file first and replaces the
        target only once fully written.

        Args:
            obj: Record object
            path: Output file path
        """
        path = Path(path)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(self.build(obj))
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            logger.error("Failed to write file", path=str(path), error=str(e))
            raise ValueError(f"Cannot write file {path}: {e}") from e


def decode_text(data: bytes | str) -> str:
    """Decode record bytes as UTF-8, tolerating a BOM."""
    if isinstance(data, str):
        return data
    return data.decode("utf-8-sig", errors="replace")
