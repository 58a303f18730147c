"""Resilient concurrent fetcher for remote bundle objects.

Downloads a flat list of objects relative to a base URL into a destination
root with:
- A fixed-size worker pool capping in-flight transfers
- Skip-if-present semantics, so repeated runs resume where they stopped
- Streaming into a temporary file that is renamed into place only once
  the whole body arrived
- Exponential backoff retry for transient failures, no retry for
  responses that will never succeed (403/404)

Failures are reported per object; one object's failure never cancels its
siblings.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from urllib.parse import quote

import httpx
import structlog

from assetdelta.core.config import FetchConfig
from assetdelta.core.integrity import IntegrityError
from assetdelta.core.retry import RetryExhaustedError, RetryPolicy, retry_async
from assetdelta.core.utils import normalize_identifier, resolve_inside

logger = structlog.get_logger()


class FetchStatus(StrEnum):
    """Terminal state of one fetch task."""
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    FAILED = "failed"


class PermanentFetchError(Exception):
    """Raised for responses that will not succeed on retry.

    Attributes:
        status_code: HTTP status returned by the server
        url: Requested URL
    """

    def __init__(self, message: str, *, status_code: int, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(message)


def is_transient_fetch_error(exc: BaseException) -> bool:
    """Classify a fetch failure as worth retrying.

    Terminal HTTP statuses are never retried; transport errors, timeouts,
    other HTTP errors, local I/O errors and truncated bodies are.
    """
    if isinstance(exc, PermanentFetchError):
        return False
    return isinstance(exc, (httpx.HTTPError, OSError, IntegrityError))


@dataclass(frozen=True)
class FetchTask:
    """One remote object to download.

    Attributes:
        identifier: Object path relative to the base URL
        url: Fully resolved source URL
        destination: Target file, always inside the destination root
    """

    identifier: str
    url: str
    destination: Path

    @classmethod
    def create(cls, identifier: str, base_url: str, dest_root: Path) -> FetchTask:
        """Resolve an identifier against a base URL and destination root.

        Raises:
            ValueError: If the identifier would escape the destination root
        """
        clean = normalize_identifier(identifier)
        url = f"{base_url.rstrip('/')}/{quote(clean, safe='/')}"
        return cls(identifier=identifier, url=url, destination=resolve_inside(dest_root, clean))


@dataclass
class FetchResult:
    """Outcome of a single fetch task.

    Attributes:
        identifier: Object identifier as submitted
        status: Terminal status
        attempts: Network attempts made (0 when skipped)
        bytes_written: Size of the downloaded body
        error: Error description if the task failed
    """

    identifier: str
    status: FetchStatus
    attempts: int = 0
    bytes_written: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not FetchStatus.FAILED


@dataclass
class FetchReport:
    """Aggregate outcome of a batch."""

    results: list[FetchResult] = field(default_factory=list)

    def _with_status(self, status: FetchStatus) -> list[str]:
        return sorted(r.identifier for r in self.results if r.status is status)

    @property
    def downloaded(self) -> list[str]:
        return self._with_status(FetchStatus.DOWNLOADED)

    @property
    def skipped(self) -> list[str]:
        return self._with_status(FetchStatus.SKIPPED)

    @property
    def failed(self) -> list[str]:
        return self._with_status(FetchStatus.FAILED)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def bytes_total(self) -> int:
        return sum(r.bytes_written for r in self.results)

    def errors(self) -> dict[str, str]:
        return {r.identifier: r.error or "" for r in self.results if not r.ok}


def build_tasks(
    identifiers: Iterable[str],
    base_url: str,
    dest_root: Path,
) -> tuple[list[FetchTask], list[FetchResult]]:
    """Create fetch tasks, rejecting unsafe identifiers.

    Duplicate identifiers are collapsed.

    Returns:
        Tuple of (tasks, failed results for rejected identifiers)
    """
    tasks: list[FetchTask] = []
    rejected: list[FetchResult] = []
    seen: set[str] = set()
    for identifier in identifiers:
        if identifier in seen:
            continue
        seen.add(identifier)
        try:
            tasks.append(FetchTask.create(identifier, base_url, dest_root))
        except ValueError as e:
            logger.warning("fetch_task_rejected", identifier=identifier, error=str(e))
            rejected.append(FetchResult(identifier=identifier, status=FetchStatus.FAILED, error=str(e)))
    return tasks, rejected


class ResilientFetcher:
    """Bounded worker pool downloading objects with retry and backoff.

    Args:
        config: Download settings (concurrency, retries, backoff, timeout)
        transport: Optional httpx transport, used by tests to mock the network
        sleep: Async sleep used between retries
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or FetchConfig()
        self.policy = RetryPolicy.exponential(self.config.max_retries, self.config.base_backoff)
        self._transport = transport
        self._sleep = sleep
        self._terminal_statuses = frozenset(self.config.terminal_statuses)
        self._progress_callback: Callable[[FetchResult, int, int], None] | None = None

    @property
    def progress_callback(self) -> Callable[[FetchResult, int, int], None] | None:
        """Get progress callback."""
        return self._progress_callback

    @progress_callback.setter
    def progress_callback(self, callback: Callable[[FetchResult, int, int], None] | None) -> None:
        """Set progress callback: (result, completed, total)."""
        self._progress_callback = callback

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.timeout,
            verify=self.config.verify_ssl,
            follow_redirects=True,
            headers={"User-Agent": self.config.user_agent},
            transport=self._transport,
        )

    async def fetch_all(self, tasks: list[FetchTask]) -> list[FetchResult]:
        """Download every task, at most ``concurrency`` at a time.

        Args:
            tasks: Tasks to process; completion order is unspecified

        Returns:
            One result per task, in completion order
        """
        if not tasks:
            return []

        queue: asyncio.Queue[FetchTask] = asyncio.Queue()
        for task in tasks:
            queue.put_nowait(task)

        results: list[FetchResult] = []
        lock = asyncio.Lock()
        total = len(tasks)
        num_workers = min(self.config.concurrency, total)

        async with self._make_client() as client:

            async def worker() -> None:
                while True:
                    try:
                        task = queue.get_nowait()
                    except asyncio.QueueEmpty:
                        break

                    result = await self._fetch_one(client, task)
                    async with lock:
                        results.append(result)
                        if self._progress_callback:
                            self._progress_callback(result, len(results), total)

            await asyncio.gather(*(worker() for _ in range(num_workers)))

        logger.info(
            "fetch_batch_complete",
            total=total,
            downloaded=sum(1 for r in results if r.status is FetchStatus.DOWNLOADED),
            skipped=sum(1 for r in results if r.status is FetchStatus.SKIPPED),
            failed=sum(1 for r in results if r.status is FetchStatus.FAILED),
        )
        return results

    async def _fetch_one(self, client: httpx.AsyncClient, task: FetchTask) -> FetchResult:
        """Run one task to a terminal state."""
        if task.destination.exists():
            logger.debug("fetch_skip_existing", identifier=task.identifier)
            return FetchResult(identifier=task.identifier, status=FetchStatus.SKIPPED)

        attempts = 0

        async def attempt() -> int:
            nonlocal attempts
            attempts += 1
            return await self._download(client, task)

        try:
            written = await retry_async(
                attempt,
                policy=self.policy,
                is_retryable=is_transient_fetch_error,
                operation=f"fetch {task.identifier}",
                sleep=self._sleep,
            )
        except PermanentFetchError as e:
            logger.warning("fetch_permanent_failure", identifier=task.identifier, status=e.status_code)
            return FetchResult(
                identifier=task.identifier,
                status=FetchStatus.FAILED,
                attempts=attempts,
                error=str(e),
            )
        except RetryExhaustedError as e:
            logger.warning("fetch_retries_exhausted", identifier=task.identifier, attempts=e.attempts)
            return FetchResult(
                identifier=task.identifier,
                status=FetchStatus.FAILED,
                attempts=attempts,
                error=str(e.last_error),
            )
        except Exception as e:
            logger.error("fetch_unexpected_error", identifier=task.identifier, error=str(e))
            return FetchResult(
                identifier=task.identifier,
                status=FetchStatus.FAILED,
                attempts=attempts,
                error=str(e),
            )

        logger.debug("fetch_complete", identifier=task.identifier, size=written, attempts=attempts)
        return FetchResult(
            identifier=task.identifier,
            status=FetchStatus.DOWNLOADED,
            attempts=attempts,
            bytes_written=written,
        )

    async def _download(self, client: httpx.AsyncClient, task: FetchTask) -> int:
        """Stream one object into place.

        Returns:
            Number of bytes written

        Raises:
            PermanentFetchError: For terminal HTTP statuses
            httpx.HTTPError: For transport failures and other HTTP errors
            IntegrityError: If the body is shorter than announced
        """
        destination = task.destination
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{destination.name}.", suffix=".part", dir=destination.parent
        )
        tmp_path = Path(tmp_name)
        written = 0
        try:
            with os.fdopen(fd, "wb") as f:
                async with client.stream("GET", task.url) as response:
                    if response.status_code in self._terminal_statuses:
                        raise PermanentFetchError(
                            f"HTTP {response.status_code} for {task.url}",
                            status_code=response.status_code,
                            url=task.url,
                        )
                    response.raise_for_status()

                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
                        written += len(chunk)

                    expected = response.headers.get("Content-Length")
                    if expected is not None and "Content-Encoding" not in response.headers:
                        if int(expected) != written:
                            raise IntegrityError(
                                f"Truncated body for {task.identifier}",
                                expected=int(expected),
                                actual=written,
                                artifact=task.identifier,
                            )

            if destination.exists():
                # Another run finished this object first
                tmp_path.unlink(missing_ok=True)
                return written
            os.replace(tmp_path, destination)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return written

    def run(self, tasks: list[FetchTask]) -> FetchReport:
        """Synchronously download tasks and return the aggregate report."""
        return FetchReport(results=asyncio.run(self.fetch_all(tasks)))

    def fetch_paths(self, identifiers: Iterable[str], base_url: str, dest_root: Path) -> FetchReport:
        """Build tasks for identifiers and download them.

        Unsafe identifiers are reported as failures without any request.
        """
        tasks, rejected = build_tasks(identifiers, base_url, dest_root)
        report = self.run(tasks)
        report.results.extend(rejected)
        return report
