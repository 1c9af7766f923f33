# ==== SHARED TEST FIXTURES AND CONFIGURATION ==== #

"""
Shared test fixtures for the resilience layer.

Provides an in-memory stand-in for the Redis sorted-set commands used by the
rate limiter, plus fresh alert managers, caches and breakers for each test.
"""

import os
from typing import Dict, Optional

import pytest
from loguru import logger


# ==== FORCE ENVIRONMENT SETUP BEFORE ANY IMPORTS ==== #

os.environ.update({
    "APP_ENV": "test",
    "REDIS_URL": "redis://localhost:6379/1",
    "LOG_LEVEL": "WARNING",
})

from trafficguard.resilience.alerts import AlertManager
from trafficguard.resilience.cache import TTLCache
from trafficguard.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from trafficguard.resilience.rate_limiter import RateLimiter


# ==== FAKE SORTED-SET STORE ==== #


def _parse_bound(bound) -> tuple[float, bool]:
    """Parse a Redis score bound into (value, exclusive)."""
    if isinstance(bound, str):
        if bound in ("-inf", "+inf", "inf"):
            return float(bound), False
        if bound.startswith("("):
            return float(bound[1:]), True
        return float(bound), False
    return float(bound), False


class FakeSortedSetRedis:
    """Just enough of ``redis.asyncio.Redis`` for the rate limiter.

    Set ``fail_with`` to an exception instance to make every command raise it.
    """

    def __init__(self):
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.expiries: Dict[str, int] = {}
        self.fail_with: Optional[BaseException] = None
        self.closed = False

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def zremrangebyscore(self, key, min_score, max_score) -> int:
        self._check()
        low, low_exclusive = _parse_bound(min_score)
        high, high_exclusive = _parse_bound(max_score)
        members = self.zsets.get(key, {})
        doomed = [
            member for member, score in members.items()
            if (score > low if low_exclusive else score >= low)
            and (score < high if high_exclusive else score <= high)
        ]
        for member in doomed:
            del members[member]
        return len(doomed)

    async def zcard(self, key) -> int:
        self._check()
        return len(self.zsets.get(key, {}))

    async def zadd(self, key, mapping) -> int:
        self._check()
        members = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in members)
        members.update({member: float(score) for member, score in mapping.items()})
        return added

    async def expire(self, key, seconds) -> bool:
        self._check()
        if key not in self.zsets:
            return False
        self.expiries[key] = seconds
        return True

    async def delete(self, *keys) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.zsets.pop(key, None) is not None:
                removed += 1
            self.expiries.pop(key, None)
        return removed

    async def aclose(self) -> None:
        self.closed = True


# ==== COMPONENT FIXTURES ==== #


@pytest.fixture
def fake_redis():
    """In-memory sorted-set store."""
    return FakeSortedSetRedis()


@pytest.fixture
def alert_manager():
    """Alert manager with the default bound."""
    return AlertManager()


@pytest.fixture
def rate_limiter(fake_redis):
    """Rate limiter over the fake store."""
    return RateLimiter(fake_redis)


@pytest.fixture
def cache():
    """TTL cache with a short default TTL."""
    return TTLCache(default_ttl_seconds=60, sweep_interval_seconds=0.01)


@pytest.fixture
def breaker():
    """Circuit breaker tripping after three failures."""
    return CircuitBreaker(
        "billing-api",
        CircuitBreakerConfig(failure_threshold=3, reset_timeout_ms=1_000),
    )


@pytest.fixture
def captured_records():
    """Collect loguru records emitted during the test."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)
