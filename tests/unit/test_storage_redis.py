"""Unit tests for Redis client construction."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis.asyncio as redis

from trafficguard.storage.redis import close_redis_client, connect_redis, create_redis_client


@pytest.mark.unit
@pytest.mark.redis
class TestRedisClient:
    """Client factory and lifecycle helpers."""

    def test_plain_url(self):
        with patch("trafficguard.storage.redis.redis.from_url") as from_url:
            create_redis_client("redis://cache:6379/0", socket_timeout=2.0)

        args, kwargs = from_url.call_args
        assert args == ("redis://cache:6379/0",)
        assert kwargs["decode_responses"] is True
        assert kwargs["socket_timeout"] == 2.0
        assert kwargs["socket_connect_timeout"] == 2.0
        assert "ssl_cert_reqs" not in kwargs

    def test_tls_url(self):
        with patch("trafficguard.storage.redis.redis.from_url") as from_url:
            create_redis_client("rediss://cloud:6380/0")

        kwargs = from_url.call_args.kwargs
        assert kwargs["ssl_cert_reqs"] is None
        assert kwargs["ssl_check_hostname"] is False

    @pytest.mark.asyncio
    async def test_connect_retries_ping(self):
        client = MagicMock()
        client.ping = AsyncMock(side_effect=[redis.ConnectionError("loading"), True])

        with patch("trafficguard.storage.redis.create_redis_client", return_value=client):
            assert await connect_redis("redis://cache:6379/0") is client

        assert client.ping.await_count == 2
        client.aclose.assert_not_called()

    @pytest.mark.asyncio
    async def test_connect_closes_client_when_unreachable(self):
        client = MagicMock()
        client.ping = AsyncMock(side_effect=redis.ConnectionError("refused"))
        client.aclose = AsyncMock()

        with patch("trafficguard.storage.redis.create_redis_client", return_value=client):
            with pytest.raises(redis.ConnectionError):
                await connect_redis("redis://cache:6379/0")

        assert client.ping.await_count == 3
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close(self):
        client = AsyncMock()

        await close_redis_client(client)
        await close_redis_client(None)

        client.aclose.assert_awaited_once()
