"""Local token-bucket admission control for outgoing REST calls.

This limiter only keeps the client under the exchange's request-weight
ceiling; the exchange's own limiter remains the hard boundary. On exhaustion
it sleeps the whole interval rather than the exact residual.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from perpbot.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Token bucket shared by every caller of one exchange client.

    Tokens are refilled in proportion to elapsed time and never beyond
    capacity. State is only mutated inside wait(), under an asyncio.Lock, so
    concurrent callers are admitted one at a time.

    Args:
        capacity: Maximum tokens (burst size).
        interval_ms: Time in milliseconds for a full refill.
        clock: Monotonic clock in seconds.
        sleep: Coroutine used to suspend on exhaustion.
    """

    def __init__(
        self,
        capacity: int,
        interval_ms: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if capacity <= 0 or interval_ms <= 0:
            raise ValueError("capacity and interval_ms must be positive")
        self._capacity = capacity
        self._interval_ms = interval_ms
        self._clock = clock
        self._sleep = sleep
        self._tokens = capacity
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> int:
        """Tokens currently available (for monitoring and tests)."""
        return self._tokens

    @property
    def capacity(self) -> int:
        return self._capacity

    async def wait(self) -> None:
        """Suspend until a token is available, then consume it. Never raises."""
        async with self._lock:
            self._refill()

            if self._tokens <= 0:
                logger.debug("rate_limit_exhausted", sleep_ms=self._interval_ms)
                await self._sleep(self._interval_ms / 1000)
                self._tokens = self._capacity
                self._last_refill = self._clock()

            self._tokens -= 1

    def _refill(self) -> None:
        now = self._clock()
        elapsed_ms = (now - self._last_refill) * 1000

        if elapsed_ms >= self._interval_ms:
            self._tokens = self._capacity
            self._last_refill = now
            return

        to_add = int(elapsed_ms * self._capacity // self._interval_ms)
        if to_add > 0:
            self._tokens = min(self._capacity, self._tokens + to_add)
            self._last_refill = now
