# ==== REDIS CLIENT FOR THE SHARED RATE LIMIT STORE ==== #

"""
Redis client for the shared sorted-set store used by the rate limiter.

This module builds ``redis.asyncio`` clients with TLS support for cloud
deployments and verifies connectivity under a retry policy. Clients are
returned to the caller rather than cached in a module global; the runtime
layer owns their lifecycle.
"""

import redis.asyncio as redis

from trafficguard.resilience.retry_policies import create_redis_retry_policy


# ==== REDIS CLIENT FUNCTIONS ==== #


def create_redis_client(
    redis_url: str,
    socket_timeout: float = 5.0,
) -> redis.Redis:
    """
    Build a Redis client with SSL and connection management.

    No connection is opened until the first command.

    Args:
        redis_url (str): Redis connection URL (``redis://`` or ``rediss://``)
        socket_timeout (float): Connect and per-command timeout in seconds

    Returns:
        redis.Redis: Configured Redis client instance
    """
    # --► SSL CONFIGURATION FOR REDIS CLOUD
    ssl_config = {}
    if redis_url.startswith('rediss://'):
        ssl_config = {
            'ssl_cert_reqs': None,
            'ssl_check_hostname': False,
            'ssl_ca_certs': None
        }

    return redis.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=socket_timeout,
        socket_timeout=socket_timeout,
        socket_keepalive=True,
        health_check_interval=30,
        **ssl_config
    )


async def connect_redis(
    redis_url: str,
    socket_timeout: float = 5.0,
) -> redis.Redis:
    """
    Build a Redis client and validate the connection.

    The initial PING runs under the Redis retry policy so a store that is
    still starting up does not fail process startup outright.

    Args:
        redis_url (str): Redis connection URL
        socket_timeout (float): Connect and per-command timeout in seconds

    Returns:
        redis.Redis: Connected Redis client

    Raises:
        redis.ConnectionError: If Redis is still unreachable after retries
    """
    client = create_redis_client(redis_url, socket_timeout=socket_timeout)
    try:
        await create_redis_retry_policy().execute(client.ping)
    except Exception:
        await client.aclose()
        raise
    return client


async def close_redis_client(client: redis.Redis | None) -> None:
    """
    Close a Redis client connection and release its pool.

    Args:
        client (redis.Redis | None): Client to close; ``None`` is ignored
    """
    if client is not None:
        await client.aclose()
