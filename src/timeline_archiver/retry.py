"""Retry logic with exponential backoff for API and media requests.

This module provides retry mechanisms with exponential backoff, jitter,
and error classification for handling transient failures. Rate-limit
responses carry a server-suggested wait which is honored up to a cap.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Set

import aiohttp

from .constants import (
    DEFAULT_BASE_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RATE_LIMIT_WAIT,
    DEFAULT_MAX_RETRIES,
    HTTP_BAD_REQUEST,
    HTTP_FORBIDDEN,
    HTTP_UNAUTHORIZED,
    PERMANENT_MISSING_STATUS_CODES,
    RETRYABLE_STATUS_CODES,
)
from .exceptions import (
    AccountError,
    APIError,
    AuthenticationError,
    DownloadError,
    MediaNotFoundError,
    NetworkError,
    RateLimitError,
)

logger = logging.getLogger(__name__)


@dataclass
class RetryStats:
    """Statistics about retry attempts."""
    total_attempts: int = 0
    total_delay: float = 0.0
    last_error: Optional[Exception] = None


class RetryStrategy:
    """Configurable retry strategy with exponential backoff.

    Implements exponential backoff with optional jitter to prevent
    thundering herd problems when several workers retry at once.

    Attributes:
        max_retries: Maximum number of retry attempts
        base_backoff: Base delay in seconds for exponential backoff
        max_backoff: Maximum delay in seconds (cap for exponential growth)
        jitter: Whether to add randomized jitter to backoff delays
        max_rate_limit_wait: Cap on a server-suggested rate-limit wait
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_backoff: float = DEFAULT_BASE_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        jitter: bool = True,
        max_rate_limit_wait: float = DEFAULT_MAX_RATE_LIMIT_WAIT,
    ):
        """Initialize retry strategy.

        Args:
            max_retries: Maximum number of retry attempts (default: 3)
            base_backoff: Base delay in seconds (default: 1.0)
            max_backoff: Maximum delay in seconds (default: 32.0)
            jitter: Add randomized jitter to delays (default: True)
            max_rate_limit_wait: Longest honored Retry-After in seconds

        Raises:
            ValueError: If parameters are invalid
        """
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_backoff <= 0:
            raise ValueError("base_backoff must be positive")
        if max_backoff < base_backoff:
            raise ValueError("max_backoff must be >= base_backoff")
        if max_rate_limit_wait < 0:
            raise ValueError("max_rate_limit_wait must be non-negative")

        self.max_retries = max_retries
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.jitter = jitter
        self.max_rate_limit_wait = max_rate_limit_wait

        self.retryable_status_codes: Set[int] = set(RETRYABLE_STATUS_CODES)
        self.non_retryable_status_codes: Set[int] = {
            HTTP_BAD_REQUEST,
            HTTP_UNAUTHORIZED,
            HTTP_FORBIDDEN,
            *PERMANENT_MISSING_STATUS_CODES,
        }

        logger.debug(
            f"RetryStrategy initialized: max_retries={max_retries}, "
            f"base_backoff={base_backoff}s, max_backoff={max_backoff}s, "
            f"jitter={jitter}"
        )

    def calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff delay for given attempt.

        Formula: min(base * 2^attempt, max_backoff)

        Args:
            attempt: Current retry attempt number (0-indexed)

        Returns:
            Delay in seconds before next retry
        """
        delay = self.base_backoff * (2 ** attempt)
        delay = min(delay, self.max_backoff)

        if self.jitter:
            delay = self.add_jitter(delay)

        return delay

    def add_jitter(self, delay: float) -> float:
        """Add randomized jitter to delay.

        Applies multiplicative jitter: delay * random(0.5, 1.5)

        Args:
            delay: Base delay in seconds

        Returns:
            Delay with jitter applied
        """
        jitter_factor = 0.5 + random.random()  # 0.5 to 1.5
        return delay * jitter_factor

    def get_delay(self, exception: Exception, attempt: int) -> float:
        """Delay before retrying after ``exception``.

        A rate-limit error carrying a server-suggested wait uses that wait,
        capped at ``max_rate_limit_wait``; anything else backs off.
        """
        retry_after = getattr(exception, "retry_after", None)
        if isinstance(exception, RateLimitError) and retry_after is not None:
            return min(max(retry_after, 0.0), self.max_rate_limit_wait)
        return self.calculate_backoff(attempt)

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if error is retryable based on exception and attempt count.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-indexed)

        Returns:
            True if the operation should be retried, False otherwise
        """
        # Check if we've exceeded max retries
        if attempt >= self.max_retries:
            logger.debug(f"Max retries ({self.max_retries}) exceeded")
            return False

        # Failures that another attempt cannot fix
        if isinstance(
            exception,
            (AuthenticationError, MediaNotFoundError, APIError, AccountError),
        ):
            logger.debug(f"{type(exception).__name__} is permanent, not retrying")
            return False

        if isinstance(exception, RateLimitError):
            return True

        if isinstance(exception, NetworkError):
            if exception.status_code is None:
                # Connection-level failure wrapped by the HTTP client
                return True
            return self.is_retryable_http_status(exception.status_code)

        if isinstance(exception, DownloadError):
            # Truncated or empty transfer
            return True

        # Check for network-related exceptions
        network_exceptions = (
            asyncio.TimeoutError,
            ConnectionError,
            aiohttp.ClientError,
        )

        if isinstance(exception, network_exceptions):
            logger.debug(f"Network error encountered: {type(exception).__name__}")
            return True

        logger.debug(f"Unknown exception type: {type(exception).__name__}, not retrying")
        return False

    def is_retryable_http_status(self, status: int) -> bool:
        """Check if HTTP status code is retryable.

        Args:
            status: HTTP status code

        Returns:
            True if status indicates a retryable error
        """
        if status in self.non_retryable_status_codes:
            logger.debug(f"Non-retryable HTTP status: {status}")
            return False

        if status in self.retryable_status_codes:
            logger.debug(f"Retryable HTTP status: {status}")
            return True

        # Retry on any 5xx status
        if 500 <= status < 600:
            logger.debug(f"Server error status: {status}, will retry")
            return True

        logger.debug(f"Non-retryable HTTP status: {status}")
        return False

    async def execute_async(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Call ``func`` until it succeeds or the retry budget is spent.

        Every attempt repeats the same call with the same arguments, so a
        paginated request keeps its position across retries.

        Returns:
            Result from func

        Raises:
            Exception: The last error once retries are exhausted or the
                error is not retryable
        """
        name = getattr(func, "__name__", repr(func))
        stats = RetryStats()
        attempt = 0

        while True:
            stats.total_attempts += 1
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                stats.last_error = e

                if not self.should_retry(e, attempt):
                    if attempt > 0:
                        logger.error(
                            f"{name} failed after {stats.total_attempts} attempts, "
                            f"total delay: {stats.total_delay:.2f}s: {e}"
                        )
                    raise

                delay = self.get_delay(e, attempt)
                stats.total_delay += delay

                logger.warning(
                    f"{name} failed (attempt {attempt + 1}/"
                    f"{self.max_retries + 1}): {type(e).__name__}: {e}. "
                    f"Retrying in {delay:.2f}s..."
                )

                await asyncio.sleep(delay)
                attempt += 1
                continue

            if attempt > 0:
                logger.info(
                    f"{name} succeeded after {attempt} "
                    f"retry(ies), total delay: {stats.total_delay:.2f}s"
                )
            return result
