"""Token bucket rate limiting for outgoing requests.

One limiter is shared by every request the process makes, API pages and
media files alike, so the configured rate holds across all accounts and
download workers.
"""

import asyncio
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Token bucket rate limiter for async operations.

    Tokens are added to the bucket at a constant rate and each request
    consumes one, which allows short bursts while keeping the sustained
    rate at ``rate_per_second``.

    Usage:
        limiter = RateLimiter(rate_per_second=5.0)
        async with limiter:
            response = await session.get(url)

    Attributes:
        rate_per_second: Sustained rate limit (tokens per second)
        burst: Maximum bucket capacity (max burst size)
    """

    def __init__(self, rate_per_second: float, burst: Optional[int] = None):
        """Initialize rate limiter.

        Args:
            rate_per_second: Sustained rate limit (e.g., 1.0 for 1 req/sec)
            burst: Maximum burst size (default: rate * 2)

        Raises:
            ValueError: If rate_per_second is not positive
        """
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")

        self.rate_per_second = rate_per_second
        self.burst = burst if burst is not None else int(rate_per_second * 2)

        if self.burst < 1:
            self.burst = 1

        # Token bucket state
        self._tokens: float = float(self.burst)
        self._last_update: float = time.monotonic()
        self._lock = asyncio.Lock()

        logger.debug(
            f"RateLimiter initialized: {rate_per_second} req/s, "
            f"burst={self.burst}"
        )

    def _refill_tokens(self) -> None:
        """Refill tokens based on elapsed time since last update."""
        now = time.monotonic()
        elapsed = now - self._last_update

        self._tokens = min(
            self._tokens + elapsed * self.rate_per_second,
            float(self.burst),
        )
        self._last_update = now

    async def acquire(self) -> None:
        """Take one token, waiting until one is available.

        Waiters are served one at a time; the lock is held while sleeping
        so tokens are handed out in arrival order.
        """
        async with self._lock:
            while True:
                self._refill_tokens()

                if self._tokens >= 1:
                    self._tokens -= 1
                    return

                wait_time = (1 - self._tokens) / self.rate_per_second
                logger.debug(f"Rate limit reached, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)

    def get_available_tokens(self) -> float:
        """Get current number of available tokens (non-blocking)."""
        elapsed = time.monotonic() - self._last_update
        return min(
            self._tokens + elapsed * self.rate_per_second,
            float(self.burst),
        )

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        return False
