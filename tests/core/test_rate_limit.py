"""
Unit tests for rate limiting.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core import rate_limit
from app.core.rate_limit import RateLimitExceeded, check_rate_limit, client_ip, enforce_rate_limit


@pytest.fixture(autouse=True)
def clear_memory_store():
    rate_limit._memory_store.clear()
    yield
    rate_limit._memory_store.clear()


class TestMemoryFallback:
    """Tests for the in-process sliding window."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self):
        with patch("app.core.rate_limit.get_redis", new_callable=AsyncMock, return_value=None):
            results = [await check_rate_limit("rl:test", 3, 60) for _ in range(4)]

        assert results == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_enforce_raises_429(self):
        with patch("app.core.rate_limit.get_redis", new_callable=AsyncMock, return_value=None):
            await enforce_rate_limit("rl:verify:p_1", 1, 60)
            with pytest.raises(RateLimitExceeded) as exc_info:
                await enforce_rate_limit("rl:verify:p_1", 1, 60)

        assert exc_info.value.status_code == 429
        assert exc_info.value.detail["error"] == "RATE_LIMIT_EXCEEDED"
        assert exc_info.value.headers["Retry-After"] == "60"

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_memory(self):
        client = MagicMock()
        client.pipeline.side_effect = ConnectionError("redis gone")

        with patch("app.core.rate_limit.get_redis", new_callable=AsyncMock, return_value=client):
            assert await check_rate_limit("rl:test", 1, 60) is True

        assert "rl:test" in rate_limit._memory_store


class TestClientIp:
    """Tests for rate limit key addresses."""

    def test_forwarded_header(self):
        request = MagicMock()
        request.headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1"}

        assert client_ip(request) == "203.0.113.7"

    def test_direct_client(self):
        request = MagicMock()
        request.headers = {}
        request.client.host = "198.51.100.2"

        assert client_ip(request) == "198.51.100.2"
