"""Retry combinator and rate limiter shared by both fetch strategies."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import time
from typing import TypeVar

import loguru
from loguru import logger

from shopledger.core.errors import ErrorClassification, TransientUpstreamError
from shopledger.core.errors import classify_error as default_classify

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
ClassifyFn = Callable[[BaseException], ErrorClassification]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Attempt ``n`` (1-based) that fails waits
    ``base_delay * multiplier ** (n - 1)`` seconds before attempt ``n + 1``.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = "max_attempts must be >= 1"
            raise ValueError(msg)
        if self.base_delay < 0:
            msg = "base_delay must be >= 0"
            raise ValueError(msg)

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


class RetryLogger:
    """Handles logging for retried operations."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def retrying(
        self,
        operation: str,
        attempt: int,
        max_attempts: int,
        delay: float,
        error: BaseException,
        *,
        throttled: bool,
    ) -> None:
        self._logger.bind(
            operation=operation,
            attempt=attempt,
            max_attempts=max_attempts,
            delay=delay,
            throttled=throttled,
        ).warning(
            "{} failed (attempt {}/{}), retrying in {:.1f}s: {}",
            operation,
            attempt,
            max_attempts,
            delay,
            error,
        )

    def exhausted(self, operation: str, attempts: int, error: BaseException) -> None:
        self._logger.bind(operation=operation, attempts=attempts).error(
            "{} failed after {} attempt(s): {}", operation, attempts, error
        )


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    classify: ClassifyFn = default_classify,
    sleep: SleepFn = asyncio.sleep,
    operation: str = "operation",
    retry_logger: RetryLogger | None = None,
) -> T:
    """Run ``fn`` until it succeeds, a non-retryable error occurs, or attempts run out.

    Throttled errors carrying a ``retry_after`` hint wait at least that long.

    Raises:
        The last error raised by ``fn``.
    """
    log = retry_logger or RetryLogger()
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            classification = classify(e)
            if not classification.retryable or attempt >= policy.max_attempts:
                if classification.retryable:
                    log.exhausted(operation, attempt, e)
                raise

            delay = policy.delay_for(attempt)
            if isinstance(e, TransientUpstreamError) and e.retry_after is not None:
                delay = max(delay, e.retry_after)

            log.retrying(
                operation,
                attempt,
                policy.max_attempts,
                delay,
                e,
                throttled=classification.throttled,
            )
            await sleep(delay)
            attempt += 1


class RateLimiter:
    """Enforces a minimum delay between consecutive requests.

    One instance per tenant endpoint; safe to share between coroutines.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            if self._last is not None:
                wait = self._min_interval - (now - self._last)
                if wait > 0:
                    await self._sleep(wait)
                    now = self._clock()
            self._last = now
