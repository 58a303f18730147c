"""Version to source-URL registry.

A JSON object mapping each known release version to the URL its manifest
snapshot was fetched from, kept sorted newest first:

    {
      "9.3.0.180": "https://host/.../Release/9.3.0.180/Android/AssetBundleInfo?t=...",
      "9.3.0.170": "..."
    }
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import structlog

from assetdelta.core.versions import version_key

logger = structlog.get_logger()

MANIFEST_URL_MARKER = "/AssetBundleInfo"


class RegistryError(ValueError):
    """Raised when the registry is unreadable or lacks a requested version."""


def base_url_from(manifest_url: str) -> str:
    """Asset download prefix for a manifest URL.

    Everything before ``/AssetBundleInfo`` plus a trailing slash.

    Example:
        >>> base_url_from("https://h/Release/1.0.0.1/AssetBundleInfo?t=1")
        'https://h/Release/1.0.0.1/'
    """
    return manifest_url.split(MANIFEST_URL_MARKER, 1)[0] + "/"


class VersionRegistry:
    """JSON-backed registry of release versions and their manifest URLs.

    Args:
        path: Registry file location
    """

    def __init__(self, path: Path):
        self.path = path
        self._entries: dict[str, str] | None = None

    @property
    def entries(self) -> dict[str, str]:
        """Registry contents, loaded lazily."""
        if self._entries is None:
            self._entries = self._load()
        return self._entries

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            raise RegistryError(f"Cannot read registry {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise RegistryError(f"Registry {self.path} must contain a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def versions(self) -> list[str]:
        """Known versions, newest first."""
        return sorted(self.entries, key=version_key, reverse=True)

    def latest(self) -> tuple[str, str] | None:
        """Newest (version, url) pair, or None for an empty registry."""
        versions = self.versions()
        if not versions:
            return None
        return versions[0], self.entries[versions[0]]

    def get(self, version: str) -> str:
        """URL recorded for version.

        Raises:
            RegistryError: If the version is not registered
        """
        try:
            return self.entries[version]
        except KeyError:
            raise RegistryError(f"Version {version} is not in registry {self.path}") from None

    def base_url(self, version: str) -> str:
        """Asset download prefix for a registered version."""
        return base_url_from(self.get(version))

    def set(self, version: str, url: str) -> None:
        """Record a URL and persist the registry."""
        self.entries[version] = url
        self.save()

    def save(self) -> None:
        """Write the registry sorted newest first, atomically."""
        ordered = {v: self.entries[v] for v in self.versions()}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(ordered, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self.path)
        logger.debug("registry_saved", path=str(self.path), versions=len(ordered))
