"""Tests for assetdelta.core.retry module."""

import asyncio
import errno

import pytest

from assetdelta.core.retry import (
    RetryExhaustedError,
    RetryPolicy,
    is_locked_error,
    retry_async,
    retry_call,
)


class TestRetryPolicy:
    """Test RetryPolicy delays and validation."""

    def test_exponential_delays(self):
        """Test delays double per attempt."""
        policy = RetryPolicy.exponential(max_attempts=4, base_delay=1.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_fixed_delays(self):
        """Test fixed policy keeps the same delay."""
        policy = RetryPolicy.fixed(max_attempts=5, delay=0.1)
        assert {policy.delay_for(n) for n in range(1, 5)} == {0.1}

    def test_invalid_values(self):
        """Test invalid budgets are rejected."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(base_delay=-1)


class TestIsLockedError:
    """Test locked-file classification."""

    def test_locked_errnos(self):
        """Test EBUSY and EPERM count as locked."""
        assert is_locked_error(OSError(errno.EBUSY, "busy"))
        assert is_locked_error(PermissionError(errno.EPERM, "perm"))

    def test_other_errors(self):
        """Test other errors are not locked errors."""
        assert not is_locked_error(FileNotFoundError(errno.ENOENT, "missing"))
        assert not is_locked_error(ValueError("x"))


class TestRetryCall:
    """Test synchronous retry helper."""

    def test_succeeds_after_transient_failures(self):
        """Test retries until success and sleeps between attempts."""
        calls = []
        sleeps = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise OSError(errno.EBUSY, "busy")
            return "ok"

        result = retry_call(
            flaky,
            policy=RetryPolicy.exponential(3, 0.5),
            is_retryable=is_locked_error,
            sleep=sleeps.append,
        )
        assert result == "ok"
        assert len(calls) == 3
        assert sleeps == [0.5, 1.0]

    def test_exhaustion(self):
        """Test exhausted retries raise RetryExhaustedError with the last error."""
        error = OSError(errno.EBUSY, "busy")

        def always_locked():
            raise error

        with pytest.raises(RetryExhaustedError) as exc_info:
            retry_call(
                always_locked,
                policy=RetryPolicy.fixed(5, 0.1),
                is_retryable=is_locked_error,
                sleep=lambda _: None,
            )
        assert exc_info.value.attempts == 5
        assert exc_info.value.last_error is error

    def test_non_retryable_raised_immediately(self):
        """Test terminal errors propagate without retry."""
        calls = []

        def broken():
            calls.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError, match="bad"):
            retry_call(broken, policy=RetryPolicy(), is_retryable=is_locked_error, sleep=lambda _: None)
        assert len(calls) == 1


class TestRetryAsync:
    """Test async retry helper."""

    def test_async_retry(self):
        """Test async retries with injected sleep."""
        attempts = []
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        async def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise TimeoutError("slow")
            return 42

        result = asyncio.run(
            retry_async(
                flaky,
                policy=RetryPolicy.exponential(3, 1.0),
                is_retryable=lambda e: isinstance(e, TimeoutError),
                sleep=fake_sleep,
            )
        )
        assert result == 42
        assert sleeps == [1.0]

    def test_async_exhaustion(self):
        """Test async exhaustion raises RetryExhaustedError."""

        async def fake_sleep(delay):
            return None

        async def failing():
            raise TimeoutError("slow")

        with pytest.raises(RetryExhaustedError) as exc_info:
            asyncio.run(
                retry_async(
                    failing,
                    policy=RetryPolicy.exponential(2, 1.0),
                    is_retryable=lambda e: isinstance(e, TimeoutError),
                    sleep=fake_sleep,
                )
            )
        assert exc_info.value.attempts == 2
