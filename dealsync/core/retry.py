"""
Rate limiting and retry helpers for quota-limited Google APIs.

Every outbound connector call goes through a token bucket and an
exponential-backoff retry:

    await with_rate_limit_and_retry(GMAIL_RATE_LIMITER, lambda: call())
"""

import asyncio
import errno
import logging
import math
import socket
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from googleapiclient.errors import HttpError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from dealsync.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRNOS = {errno.ECONNRESET, errno.ETIMEDOUT}


class RateLimiter:
    """
    In-process token bucket.

    The bucket starts full with ``burst_size`` tokens (defaults to the steady
    rate) and refills continuously at ``requests_per_second``. Callers that
    find the bucket empty sleep until a token is available, at most one
    second per iteration.
    """

    def __init__(
        self,
        requests_per_second: float,
        burst_size: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.requests_per_second = float(requests_per_second)
        self.max_tokens = float(burst_size or requests_per_second)
        self.tokens = self.max_tokens
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self.tokens = min(
                self.max_tokens,
                self.tokens + elapsed * self.requests_per_second,
            )
        self._last_refill = now

    async def acquire(self) -> None:
        """Take one token, waiting for replenishment if the bucket is empty."""
        self._refill()
        while self.tokens < 1:
            wait = (1 - self.tokens) / self.requests_per_second
            # Round up to whole milliseconds so a sleep always yields a token
            wait = min(math.ceil(wait * 1000) / 1000, 1.0)
            await self._sleep(wait)
            self._refill()
        self.tokens -= 1

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Acquire a token and run ``fn``."""
        await self.acquire()
        return await fn()


def _status_code(exc: BaseException) -> Optional[int]:
    """Pull an HTTP status out of the error types the connectors see."""
    if isinstance(exc, HttpError):
        return getattr(exc, "status_code", None) or int(exc.resp.status)
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable_error(exc: BaseException) -> bool:
    """
    Default retry predicate.

    Retries network failures (connection reset, timeouts, DNS lookup
    failures) and HTTP 429 / 5xx responses.
    """
    if isinstance(exc, (ConnectionResetError, TimeoutError, socket.gaierror)):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, OSError) and exc.errno in RETRYABLE_ERRNOS:
        return True

    status = _status_code(exc)
    if status is None:
        return False
    return status == 429 or 500 <= status < 600


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_multiplier: float = 2.0,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run ``fn`` with exponential backoff.

    Args:
        fn: Zero-argument coroutine factory. Must be safe to repeat.
        max_attempts: Total attempts including the first.
        initial_delay: Delay in seconds before the second attempt.
        max_delay: Cap applied to every individual delay.
        backoff_multiplier: Growth factor between delays.
        should_retry: Predicate deciding whether an error is transient.

    Returns:
        The first successful result. The last error is re-raised once
        attempts are exhausted or the error is not retryable.
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            f"API call failed (attempt {retry_state.attempt_number}/{max_attempts}), "
            f"retrying in {retry_state.next_action.sleep:.2f}s: {exc}"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=initial_delay,
            exp_base=backoff_multiplier,
            max=max_delay,
        ),
        retry=retry_if_exception(should_retry),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await fn()
    except Exception as e:
        attempts = retrying.statistics.get("attempt_number", 1)
        logger.error(f"API call failed after {attempts} attempt(s): {e}")
        raise


async def with_rate_limit_and_retry(
    limiter: RateLimiter,
    fn: Callable[[], Awaitable[T]],
    **retry_options,
) -> T:
    """Throttle through ``limiter`` and retry transient failures."""
    return await limiter.execute(lambda: with_retry(fn, **retry_options))


settings = get_settings()

# Gmail: 250 quota units/user/second, most calls cost 5 units
GMAIL_RATE_LIMITER = RateLimiter(
    requests_per_second=settings.gmail_requests_per_second,
    burst_size=settings.gmail_burst_size,
)

DRIVE_RATE_LIMITER = RateLimiter(
    requests_per_second=settings.drive_requests_per_second,
    burst_size=settings.drive_burst_size,
)
