"""Core functionality for assetdelta.

This module provides the building blocks used across the package:
- Configuration management
- Release version handling
- Retry policies and integrity checks
- Utility functions
"""

from assetdelta.core.config import AppConfig
from assetdelta.core.integrity import IntegrityError
from assetdelta.core.retry import RetryExhaustedError, RetryPolicy
from assetdelta.core.utils import (
    chunked_read,
    format_size,
    list_files,
    md5_file,
    normalize_identifier,
    validate_hash_string,
)
from assetdelta.core.versions import Version, VersionError

__all__ = [
    # Config
    "AppConfig",
    # Errors
    "IntegrityError",
    "RetryExhaustedError",
    "VersionError",
    # Retry
    "RetryPolicy",
    # Versions
    "Version",
    # Utilities
    "chunked_read",
    "format_size",
    "list_files",
    "md5_file",
    "normalize_identifier",
    "validate_hash_string",
]
