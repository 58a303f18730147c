"""Manifest snapshot download.

Resolves which release to fetch, downloads its manifest snapshot into the
manifest directory and records the source URL in the version registry.
When no URL is supplied the next release is guessed from the newest
registry entry through a pluggable strategy, because release numbering
rules are product policy rather than something derivable from the data.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
import structlog

from assetdelta.core.fetcher import PermanentFetchError, is_transient_fetch_error
from assetdelta.core.registry import RegistryError, VersionRegistry
from assetdelta.core.retry import RetryPolicy, retry_call
from assetdelta.core.versions import Version, VersionError, snapshot_filename

logger = structlog.get_logger()

RELEASE_VERSION_RE = re.compile(r"/Release/(\d+\.\d+\.\d+\.\d+)")


class NextVersionStrategy(Protocol):
    """Guesses the release that follows a known one."""

    def __call__(self, latest: str) -> str:
        ...


@dataclass(frozen=True)
class IncrementLastComponent:
    """Adds a fixed step to the last version component.

    ``9.3.0.170`` becomes ``9.3.0.180`` with the default step.
    """

    step: int = 10

    def __call__(self, latest: str) -> str:
        parts = latest.split(".")
        try:
            last = int(parts[-1])
        except ValueError:
            raise VersionError(f"Cannot increment version {latest!r}") from None
        parts[-1] = str(last + self.step)
        return ".".join(parts)


def extract_version_from_url(url: str) -> str | None:
    """Release version embedded as ``/Release/a.b.c.d`` in url."""
    match = RELEASE_VERSION_RE.search(url)
    return match.group(1) if match else None


def strip_timestamp(url: str) -> str:
    """Remove the ``t`` cache-busting query parameter."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "t"]
    return urlunsplit(parts._replace(query=urlencode(query)))


def ensure_timestamp(url: str, now: datetime | None = None) -> str:
    """Append a ``t=YYYYMMDDHHMMSS`` query parameter unless one is present.

    The origin rejects manifest requests without it.
    """
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(k == "t" for k, _ in query):
        return url
    stamp = (now or datetime.now(UTC)).strftime("%Y%m%d%H%M%S")
    query.append(("t", stamp))
    return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass
class SnapshotResult:
    """Outcome of a snapshot fetch."""

    version: str
    path: Path
    url: str
    downloaded: bool


class SnapshotFetcher:
    """Downloads manifest snapshots and maintains the version registry.

    Args:
        registry: Version to URL registry
        manifest_dir: Directory holding snapshot files
        timeout: Request timeout in seconds
        strategy: Next-release guess used when no URL is given
        client: Optional preconfigured httpx client
        sleep: Sleep function used between retries
    """

    def __init__(
        self,
        registry: VersionRegistry,
        manifest_dir: Path,
        timeout: float = 20.0,
        strategy: NextVersionStrategy | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.registry = registry
        self.manifest_dir = manifest_dir
        self.timeout = timeout
        self.strategy: NextVersionStrategy = strategy or IncrementLastComponent()
        self._client = client
        self._owns_client = client is None
        self.policy = RetryPolicy.exponential(3, 1.0)
        self._sleep = sleep

    @property
    def client(self) -> httpx.Client:
        """Get or create sync HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout, follow_redirects=True)
        return self._client

    def resolve(self, url: str | None = None, version: str | None = None) -> tuple[str, str]:
        """Work out the (version, url) pair to fetch.

        Args:
            url: Explicit manifest URL; the version is read from it
            version: Explicit version; the URL is derived from the newest
                registry entry

        Returns:
            Tuple of version string and timestamped URL

        Raises:
            VersionError: If no version can be read from the URL
            RegistryError: If a URL has to be derived from an empty registry
        """
        if url:
            url = url.strip()
            found = extract_version_from_url(url)
            if not found:
                raise VersionError(f"Cannot find a release version in URL: {url}")
            return found, ensure_timestamp(url)

        latest = self.registry.latest()
        if latest is None:
            raise RegistryError("Registry is empty; a manifest URL is required")
        latest_version, latest_url = latest

        if version:
            target = str(Version.parse(version))
        else:
            target = self.strategy(latest_version)
            logger.info("next_version_guessed", latest=latest_version, guess=target)

        template = strip_timestamp(self.registry.entries.get(target, latest_url))
        return target, ensure_timestamp(template.replace(latest_version, target))

    def fetch(self, url: str | None = None, version: str | None = None) -> SnapshotResult:
        """Fetch a snapshot unless it already exists locally.

        Raises:
            PermanentFetchError: If the origin answers 403/404
            RetryExhaustedError: If transient failures persist
        """
        version, resolved_url = self.resolve(url, version)
        path = self.manifest_dir / snapshot_filename(version)

        if path.exists():
            logger.info("snapshot_exists", version=version, path=str(path))
            return SnapshotResult(version=version, path=path, url=resolved_url, downloaded=False)

        logger.info("snapshot_download_start", version=version, url=resolved_url)
        kwargs = {"sleep": self._sleep} if self._sleep else {}
        data = retry_call(
            lambda: self._get(resolved_url),
            policy=self.policy,
            is_retryable=is_transient_fetch_error,
            operation=f"snapshot {version}",
            **kwargs,
        )

        self.manifest_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)

        self.registry.set(version, resolved_url)
        logger.info("snapshot_saved", version=version, path=str(path), size=len(data))
        return SnapshotResult(version=version, path=path, url=resolved_url, downloaded=True)

    def _get(self, url: str) -> bytes:
        response = self.client.get(url)
        if response.status_code in (403, 404):
            raise PermanentFetchError(
                f"HTTP {response.status_code} for {url}",
                status_code=response.status_code,
                url=url,
            )
        response.raise_for_status()
        return response.content

    def close(self) -> None:
        """Close HTTP client if this fetcher created it."""
        if self._client and self._owns_client:
            self._client.close()
            self._client = None

    def __enter__(self) -> SnapshotFetcher:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()
