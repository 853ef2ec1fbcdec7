"""Client-side request pacing, one instance per client.

A limiter combines two constraints: a minimum interval between consecutive
requests, and a hard block until the server-reported quota reset time.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping

from loguru import logger


class RateLimiter:
    """Serialises request starts so they respect the interval and any reset block.

    Args:
        min_interval: Minimum seconds between two request starts.
        reset_buffer: Extra seconds waited past a reported quota reset.
        clock: Wall-clock source in epoch seconds (reset headers are epoch based).
        sleep: Coroutine used to wait; patched in tests.
    """

    def __init__(
        self,
        min_interval: float = 0.0,
        reset_buffer: float = 1.0,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self.reset_buffer = reset_buffer
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request: float | None = None
        self._blocked_until = 0.0

    @property
    def blocked_until(self) -> float:
        return self._blocked_until

    def block_until(self, reset_epoch: float) -> None:
        """Refuse new requests until *reset_epoch* plus the reset buffer."""
        self._blocked_until = max(self._blocked_until, reset_epoch + self.reset_buffer)

    def observe(self, headers: Mapping[str, str]) -> None:
        """Read GitHub-style quota headers from a response.

        When ``x-ratelimit-remaining`` reaches zero the limiter blocks until
        ``x-ratelimit-reset``.
        """
        if headers.get("x-ratelimit-remaining") != "0":
            return
        reset = headers.get("x-ratelimit-reset")
        if reset is None:
            return
        try:
            reset_epoch = float(reset)
        except ValueError:
            logger.warning(f"Ignoring malformed x-ratelimit-reset header: {reset!r}")
            return
        self.block_until(reset_epoch)
        wait = max(0.0, self._blocked_until - self._clock())
        logger.warning(f"Rate limit exhausted; pausing requests for {wait:.0f}s")

    async def wait(self) -> None:
        """Sleep until the next request may start, then claim the slot."""
        async with self._lock:
            now = self._clock()
            delay = self._blocked_until - now
            if self._last_request is not None:
                delay = max(delay, self._last_request + self.min_interval - now)
            if delay > 0:
                await self._sleep(delay)
            self._last_request = self._clock()
