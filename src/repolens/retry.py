"""Retry-with-backoff for every external call (GitHub API, LLM, embeddings).

Delay before attempt n+1 is ``base_delay * 2 ** (n - 1)``, capped at
``max_delay``. The last error is re-raised unchanged once attempts run out.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

T = TypeVar("T")

OnRetry = Callable[[int, BaseException], None]
Retryable = Callable[[BaseException], bool]


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt count and backoff curve shared by a component's external calls."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed *attempt* (1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        on_retry: OnRetry | None = None,
        max_attempts: int | None = None,
        retryable: Retryable | None = None,
    ) -> T:
        return await retry_with_backoff(
            fn,
            max_attempts=max_attempts or self.max_attempts,
            on_retry=on_retry,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            retryable=retryable,
        )


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    on_retry: OnRetry | None = None,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retryable: Retryable | None = None,
) -> T:
    """Await ``fn()`` up to *max_attempts* times.

    Args:
        fn: Zero-argument coroutine factory; called afresh for every attempt.
        max_attempts: Total attempts including the first (must be >= 1).
        on_retry: Called with (next_attempt_number, error) before each sleep.
        base_delay: Delay after the first failure, in seconds.
        max_delay: Upper bound for any single delay.
        retryable: Predicate deciding whether an error is worth another
            attempt. Errors it rejects are re-raised immediately.

    Returns:
        The first successful result.

    Raises:
        ValueError: If *max_attempts* < 1.
        Exception: The error from the final attempt.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    policy = RetryPolicy(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay)
    attempt = 1
    while True:
        try:
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if attempt >= max_attempts:
                raise
            if retryable is not None and not retryable(exc):
                raise
            delay = policy.delay_for(attempt)
            attempt += 1
            if on_retry is not None:
                on_retry(attempt, exc)
            else:
                logger.debug(f"Retrying in {delay:.1f}s (attempt {attempt}/{max_attempts}): {exc}")
            await asyncio.sleep(delay)
