"""Async HTTP client with rate limiting and error classification."""

import asyncio
import logging
import time
from typing import Any, Optional

import aiohttp
from aiohttp import ClientResponse, ClientTimeout

from .constants import (
    DEFAULT_RATE_LIMIT,
    DEFAULT_TIMEOUT,
    HTTP_FORBIDDEN,
    HTTP_TOO_MANY_REQUESTS,
    HTTP_UNAUTHORIZED,
    USER_AGENT,
)
from .exceptions import APIError, AuthenticationError, NetworkError, RateLimitError
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class AsyncHTTPClient:
    """Async HTTP client shared by the API client and the media downloader.

    Features:
    - Rate limiting with token bucket algorithm
    - Error statuses raised as typed exceptions (rate limit, auth, other)
    - Retry-After and x-rate-limit-reset headers surfaced on RateLimitError
    - Custom User-Agent
    - Proper resource management via context manager

    Retrying is left to the caller (see ``RetryStrategy``) so that a retried
    request is always the exact same request.

    Example:
        ```python
        async with AsyncHTTPClient(rate_limit=2.0) as client:
            data = await client.get_json("https://api.twitter.com/2/users/by/username/alice")
        ```
    """

    def __init__(
        self,
        rate_limit: float = DEFAULT_RATE_LIMIT,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = USER_AGENT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize the HTTP client.

        Args:
            rate_limit: Maximum requests per second
            timeout: Default request timeout in seconds
            user_agent: User-Agent header value
            session: Optional existing aiohttp session to use
        """
        self.rate_limit = rate_limit
        self.timeout = timeout
        self.user_agent = user_agent

        self._rate_limiter = RateLimiter(rate_per_second=rate_limit)

        # Session management
        self._session = session
        self._owns_session = session is None
        self._closed = False

        logger.debug(
            f"Initialized AsyncHTTPClient: rate_limit={rate_limit} req/s, "
            f"timeout={timeout}s"
        )

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure a session exists and return it."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.timeout),
                headers={'User-Agent': self.user_agent},
            )
            self._owns_session = True
            logger.debug("Created new aiohttp session")
        return self._session

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._closed:
            return

        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed aiohttp session")

        self._closed = True

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
        return False

    def _extract_retry_after(self, response: ClientResponse) -> Optional[float]:
        """Seconds to wait before retrying, from the response headers.

        ``Retry-After`` is given in seconds. The upstream API instead sends
        ``x-rate-limit-reset``, the epoch second at which the window resets.
        """
        retry_after = response.headers.get('Retry-After')
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                logger.warning(f"Could not parse Retry-After header: {retry_after}")

        reset = response.headers.get('x-rate-limit-reset')
        if reset:
            try:
                return max(0.0, float(reset) - time.time())
            except ValueError:
                logger.warning(f"Could not parse x-rate-limit-reset header: {reset}")

        return None

    async def _check_response_status(self, response: ClientResponse) -> None:
        """Check response status and raise appropriate exceptions.

        The response is released before raising.

        Raises:
            RateLimitError: If rate limited (429)
            AuthenticationError: If the credential is rejected (401/403)
            NetworkError: For other error status codes
        """
        if response.status < 400:
            return

        url = str(response.url)
        try:
            text = await response.text()
        except (aiohttp.ClientError, UnicodeDecodeError):
            text = ""
        finally:
            response.release()

        if response.status == HTTP_TOO_MANY_REQUESTS:
            raise RateLimitError(
                "Rate limited by server",
                status_code=response.status,
                url=url,
                retry_after=self._extract_retry_after(response),
            )

        if response.status in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN):
            raise AuthenticationError(
                "Request not authorized",
                details=text[:200] or None,
                status_code=response.status,
                url=url,
            )

        raise NetworkError(
            f"HTTP {response.status}: {response.reason}",
            details=text[:200] or None,
            status_code=response.status,
            url=url,
        )

    async def _request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> ClientResponse:
        """Make an HTTP request with rate limiting.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: URL to request
            **kwargs: Additional arguments to pass to session.request()

        Returns:
            HTTP response with a non-error status

        Raises:
            NetworkError: On connection failures and error statuses
        """
        session = await self._ensure_session()

        async with self._rate_limiter:
            logger.debug(f"{method} {url}")
            try:
                response = await session.request(method, url, **kwargs)
            except asyncio.TimeoutError as e:
                raise NetworkError("Request timed out", url=url) from e
            except aiohttp.ClientError as e:
                raise NetworkError("Request failed", details=str(e), url=url) from e

        await self._check_response_status(response)
        return response

    async def get(self, url: str, **kwargs: Any) -> ClientResponse:
        """Make a GET request.

        The caller owns the returned response and must release it, typically
        with ``async with response:``.
        """
        return await self._request('GET', url, **kwargs)

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        """Make a GET request and decode the JSON body.

        Raises:
            APIError: If the body is not valid JSON
            NetworkError: On request failures
        """
        response = await self.get(url, **kwargs)
        async with response:
            try:
                return await response.json(content_type=None)
            except ValueError as e:
                raise APIError("Malformed JSON response", details=str(e)) from e
            except asyncio.TimeoutError as e:
                raise NetworkError("Timed out reading response", url=url) from e
            except aiohttp.ClientError as e:
                raise NetworkError(
                    "Failed to read response", details=str(e), url=url
                ) from e

    def __repr__(self) -> str:
        """String representation of the client."""
        return (
            f"AsyncHTTPClient(rate_limit={self.rate_limit}, "
            f"timeout={self.timeout})"
        )
