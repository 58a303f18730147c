"""Retry helpers with a classified-error policy.

One policy object describes how many attempts an operation gets and how
long to wait between them; a predicate decides whether a given exception is
worth another attempt. The same helpers back remote fetches (exponential
backoff), and reads and deletes of files that are briefly locked by another
process (short fixed delay).
"""

from __future__ import annotations

import asyncio
import errno
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

# errno values reported while another process holds a file open exclusively
LOCKED_ERRNOS = frozenset({errno.EBUSY, errno.EPERM, errno.EACCES})


class RetryExhaustedError(Exception):
    """Raised when every attempt of a retryable operation failed.

    Attributes:
        attempts: Number of attempts made
        last_error: Exception raised by the final attempt
    """

    def __init__(self, message: str, *, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay schedule.

    Attributes:
        max_attempts: Total attempts, including the first one
        base_delay: Delay in seconds after the first failure
        multiplier: Growth factor per attempt (1.0 gives a fixed delay)
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given 1-based failed attempt."""
        return self.base_delay * (self.multiplier ** (attempt - 1))

    @classmethod
    def exponential(cls, max_attempts: int, base_delay: float) -> RetryPolicy:
        return cls(max_attempts=max_attempts, base_delay=base_delay, multiplier=2.0)

    @classmethod
    def fixed(cls, max_attempts: int, delay: float) -> RetryPolicy:
        return cls(max_attempts=max_attempts, base_delay=delay, multiplier=1.0)


def is_locked_error(exc: BaseException) -> bool:
    """True for OS errors raised on a file another process holds open."""
    return isinstance(exc, OSError) and exc.errno in LOCKED_ERRNOS


def retry_call(
    func: Callable[[], T],
    *,
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool],
    operation: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call func until it succeeds, a terminal error occurs, or attempts run out.

    Args:
        func: Zero-argument callable to invoke
        policy: Attempt budget and delays
        is_retryable: Predicate classifying an exception as transient
        operation: Label used in log events and error messages
        sleep: Sleep function (injectable for tests)

    Returns:
        Value returned by func

    Raises:
        RetryExhaustedError: If every attempt failed with a retryable error
        Exception: The original exception when it is not retryable
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func()
        except Exception as e:
            if not is_retryable(e):
                raise
            logger.debug("retry_attempt_failed", operation=operation, attempt=attempt, error=str(e))
            if attempt == policy.max_attempts:
                raise RetryExhaustedError(
                    f"{operation} failed after {attempt} attempts: {e}",
                    attempts=attempt,
                    last_error=e,
                ) from e
            sleep(policy.delay_for(attempt))

    raise AssertionError("unreachable")


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool],
    operation: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Async counterpart of retry_call.

    Args:
        factory: Callable creating a fresh awaitable for each attempt
        policy: Attempt budget and delays
        is_retryable: Predicate classifying an exception as transient
        operation: Label used in log events and error messages
        sleep: Async sleep function (injectable for tests)

    Returns:
        Value produced by the awaitable
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await factory()
        except Exception as e:
            if not is_retryable(e):
                raise
            logger.debug("retry_attempt_failed", operation=operation, attempt=attempt, error=str(e))
            if attempt == policy.max_attempts:
                raise RetryExhaustedError(
                    f"{operation} failed after {attempt} attempts: {e}",
                    attempts=attempt,
                    last_error=e,
                ) from e
            await sleep(policy.delay_for(attempt))

    raise AssertionError("unreachable")
