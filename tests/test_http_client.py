"""Tests for the HTTP client module."""

import re
import time

import aiohttp
import pytest
from aioresponses import aioresponses

from timeline_archiver.constants import HTTP_OK
from timeline_archiver.exceptions import (
    APIError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
)
from timeline_archiver.http_client import AsyncHTTPClient

API_URL = re.compile(r"^https://api\.example\.com/data.*$")


class TestAsyncHTTPClient:
    """Tests for AsyncHTTPClient."""

    @pytest.mark.asyncio
    async def test_context_manager(self):
        """Test the session is created and closed by the context manager."""
        client = AsyncHTTPClient(rate_limit=100.0)

        async with client:
            assert client._session is not None
            assert not client._session.closed

        assert client._closed

    @pytest.mark.asyncio
    async def test_get_json(self):
        """Test a successful JSON request."""
        with aioresponses() as m:
            m.get(API_URL, status=200, payload={"data": {"id": "1"}})

            async with AsyncHTTPClient(rate_limit=100.0) as client:
                data = await client.get_json("https://api.example.com/data")

        assert data == {"data": {"id": "1"}}

    @pytest.mark.asyncio
    async def test_get_returns_response(self):
        """Test get returns the open response for streaming."""
        with aioresponses() as m:
            m.get(API_URL, status=200, body=b"bytes")

            async with AsyncHTTPClient(rate_limit=100.0) as client:
                response = await client.get("https://api.example.com/data")
                async with response:
                    assert response.status == HTTP_OK
                    assert await response.read() == b"bytes"

    @pytest.mark.asyncio
    async def test_rate_limit_with_retry_after(self):
        """Test 429 raises RateLimitError carrying Retry-After."""
        with aioresponses() as m:
            m.get(API_URL, status=429, headers={"Retry-After": "15"})

            async with AsyncHTTPClient(rate_limit=100.0) as client:
                with pytest.raises(RateLimitError) as exc_info:
                    await client.get_json("https://api.example.com/data")

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 15.0

    @pytest.mark.asyncio
    async def test_rate_limit_with_reset_header(self):
        """Test x-rate-limit-reset is turned into seconds to wait."""
        reset = int(time.time()) + 60
        with aioresponses() as m:
            m.get(API_URL, status=429, headers={"x-rate-limit-reset": str(reset)})

            async with AsyncHTTPClient(rate_limit=100.0) as client:
                with pytest.raises(RateLimitError) as exc_info:
                    await client.get_json("https://api.example.com/data")

        assert 50.0 <= exc_info.value.retry_after <= 61.0

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        """Test 401 raises AuthenticationError."""
        with aioresponses() as m:
            m.get(API_URL, status=401, body="Unauthorized")

            async with AsyncHTTPClient(rate_limit=100.0) as client:
                with pytest.raises(AuthenticationError) as exc_info:
                    await client.get_json("https://api.example.com/data")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_server_error(self):
        """Test other error statuses raise NetworkError with the status."""
        with aioresponses() as m:
            m.get(API_URL, status=503)

            async with AsyncHTTPClient(rate_limit=100.0) as client:
                with pytest.raises(NetworkError) as exc_info:
                    await client.get_json("https://api.example.com/data")

        assert exc_info.value.status_code == 503
        assert not isinstance(exc_info.value, RateLimitError)

    @pytest.mark.asyncio
    async def test_not_found(self):
        """Test 404 keeps its status for callers to classify."""
        with aioresponses() as m:
            m.get(API_URL, status=404)

            async with AsyncHTTPClient(rate_limit=100.0) as client:
                with pytest.raises(NetworkError) as exc_info:
                    await client.get("https://api.example.com/data")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_connection_error_wrapped(self):
        """Test transport failures become NetworkError without status."""
        with aioresponses() as m:
            m.get(API_URL, exception=aiohttp.ClientConnectionError("refused"))

            async with AsyncHTTPClient(rate_limit=100.0) as client:
                with pytest.raises(NetworkError) as exc_info:
                    await client.get_json("https://api.example.com/data")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        """Test an unparseable body raises APIError."""
        with aioresponses() as m:
            m.get(API_URL, status=200, body="not json")

            async with AsyncHTTPClient(rate_limit=100.0) as client:
                with pytest.raises(APIError):
                    await client.get_json("https://api.example.com/data")

    def test_repr(self):
        """Test string representation."""
        client = AsyncHTTPClient(rate_limit=2.0, timeout=10.0)

        assert repr(client) == "AsyncHTTPClient(rate_limit=2.0, timeout=10.0)"
