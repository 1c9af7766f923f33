"""
Distributed rate limiter using a sliding window log.

Every admitted request is recorded as a member of a Redis sorted set scored by
its timestamp in milliseconds. A check prunes members older than the window,
counts the rest and admits the request if the count is under the limit. State
lives in Redis, so any number of service instances share the same limits.

The prune/count/insert/expire sequence is not atomic. Requests racing on the
same key near the limit may all be admitted, over-admitting by at most the
number of racing requests minus one.
"""

import math
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

import redis.asyncio as redis

from trafficguard.exceptions import RateLimitExceededError, StoreUnavailableError
from trafficguard.observability.logging import get_logger
from trafficguard.observability.metrics import (
    rate_limit_decisions_total,
    rate_limit_store_failures_total,
)
from trafficguard.observability.tracing import get_tracer
from trafficguard.resilience.cache import TTLCache

if TYPE_CHECKING:
    from trafficguard.resilience.alerts import AlertManager

logger = get_logger(__name__)
tracer = get_tracer(__name__)

STORE_EXCEPTIONS = (
    redis.RedisError,
    ConnectionError,
    TimeoutError,
    OSError,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


class StoreFailurePolicy(Enum):
    """What a check does when the store cannot be reached."""
    RAISE = "raise"              # surface StoreUnavailableError
    FAIL_OPEN = "fail_open"      # admit the request
    FAIL_CLOSED = "fail_closed"  # deny the request


@dataclass(frozen=True)
class RateLimitConfig:
    """Limit for one quota bucket."""
    window_ms: int
    max_requests: int

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if self.max_requests <= 0:
            raise ValueError("max_requests must be positive")

    @property
    def expire_seconds(self) -> int:
        """TTL for the whole window set: one window plus a second of slack."""
        return math.ceil(self.window_ms / 1000) + 1


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    ``reset_at`` is ``now + window_ms`` in epoch milliseconds. The real reset
    depends on when the oldest counted request leaves the window; this value
    is always at or after it.
    """
    allowed: bool
    remaining: int
    reset_at: int
    limit: int

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds until ``reset_at``, for a Retry-After header."""
        return max(0, math.ceil((self.reset_at - _now_ms()) / 1000))


class RateLimiter:
    """
    Sliding window log rate limiter backed by Redis sorted sets.

    Keys are opaque to the limiter; callers typically use
    ``"{tenant_or_user}:{endpoint}"``. The Redis key is the key prefix plus
    the caller's key.

    With an alert manager attached, the first denial for a key raises a
    ``rate_limit_exceeded`` alert and later denials stay quiet until a full
    window has passed, tracked by short-lived markers in ``alert_markers``.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "rate_limit:",
        alert_manager: Optional["AlertManager"] = None,
        alert_markers: Optional[TTLCache] = None,
    ):
        self._redis = redis_client
        self.key_prefix = key_prefix
        self.alert_manager = alert_manager
        self.alert_markers = alert_markers if alert_markers is not None else TTLCache()

    def _redis_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    @staticmethod
    def _member(now: int) -> str:
        # Disambiguates requests admitted in the same millisecond
        return f"{now}-{secrets.token_hex(8)}"

    async def is_allowed(
        self,
        key: str,
        config: RateLimitConfig,
        on_store_failure: StoreFailurePolicy = StoreFailurePolicy.RAISE,
    ) -> RateLimitResult:
        """
        Check whether a request for ``key`` is within its limit and record it if so.

        Args:
            key: Identifier of the quota bucket
            config: Window length and request budget
            on_store_failure: Caller policy when Redis cannot be reached

        Returns:
            RateLimitResult with the decision, remaining budget and reset time

        Raises:
            StoreUnavailableError: If Redis fails and the policy is RAISE
        """
        now = _now_ms()
        redis_key = self._redis_key(key)

        with tracer.start_as_current_span("rate_limiter.is_allowed") as span:
            span.set_attribute("rate_limit.key", key)
            span.set_attribute("rate_limit.max_requests", config.max_requests)

            try:
                await self._redis.zremrangebyscore(redis_key, 0, f"({now - config.window_ms}")
                request_count = await self._redis.zcard(redis_key)
                allowed = request_count < config.max_requests

                if allowed:
                    await self._redis.zadd(redis_key, {self._member(now): now})
                    await self._redis.expire(redis_key, config.expire_seconds)
            except STORE_EXCEPTIONS as e:
                return self._handle_store_failure("is_allowed", key, config, on_store_failure, e)

            span.set_attribute("rate_limit.allowed", allowed)

        result = RateLimitResult(
            allowed=allowed,
            remaining=max(0, config.max_requests - request_count - 1),
            reset_at=now + config.window_ms,
            limit=config.max_requests,
        )

        if allowed:
            rate_limit_decisions_total.labels(outcome="allowed").inc()
        else:
            rate_limit_decisions_total.labels(outcome="denied").inc()
            logger.debug(
                "Rate limit exceeded",
                rate_limit_key=key,
                limit=config.max_requests,
                window_ms=config.window_ms,
            )
            if self.alert_manager is not None and self._first_denial_in_window(key, config):
                self.alert_manager.rate_limit_exceeded(key, config.max_requests)

        return result

    def _first_denial_in_window(self, key: str, config: RateLimitConfig) -> bool:
        marker = f"rate_limit_alert:{key}"
        if self.alert_markers.has(marker):
            return False
        self.alert_markers.set(marker, True, ttl_seconds=config.window_ms / 1000)
        return True

    async def enforce(
        self,
        key: str,
        config: RateLimitConfig,
        on_store_failure: StoreFailurePolicy = StoreFailurePolicy.RAISE,
    ) -> RateLimitResult:
        """Like :meth:`is_allowed`, but raise when the request is denied.

        Raises:
            RateLimitExceededError: If the request is over the limit
            StoreUnavailableError: If Redis fails and the policy is RAISE
        """
        result = await self.is_allowed(key, config, on_store_failure)
        if not result.allowed:
            raise RateLimitExceededError(
                key,
                limit=result.limit,
                remaining=result.remaining,
                reset_at=result.reset_at,
            )
        return result

    async def get_usage(self, key: str, window_ms: int) -> int:
        """Count requests inside the window without recording a new one.

        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        now = _now_ms()
        redis_key = self._redis_key(key)
        try:
            await self._redis.zremrangebyscore(redis_key, 0, f"({now - window_ms}")
            return await self._redis.zcard(redis_key)
        except STORE_EXCEPTIONS as e:
            self._record_store_failure("get_usage", key, StoreFailurePolicy.RAISE, e)
            raise StoreUnavailableError("get_usage", str(e)) from e

    async def reset(self, key: str) -> None:
        """Forget every recorded request for ``key``.

        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        try:
            await self._redis.delete(self._redis_key(key))
        except STORE_EXCEPTIONS as e:
            self._record_store_failure("reset", key, StoreFailurePolicy.RAISE, e)
            raise StoreUnavailableError("reset", str(e)) from e

    async def close(self) -> None:
        """Close the Redis connection."""
        await self._redis.aclose()

    def _record_store_failure(
        self,
        operation: str,
        key: str,
        policy: StoreFailurePolicy,
        error: BaseException,
    ) -> None:
        rate_limit_store_failures_total.labels(operation=operation, policy=policy.value).inc()
        logger.error(
            f"Rate limit store failure during {operation}",
            rate_limit_key=key,
            policy=policy.value,
            error_type=type(error).__name__,
            error=str(error),
        )

    def _handle_store_failure(
        self,
        operation: str,
        key: str,
        config: RateLimitConfig,
        policy: StoreFailurePolicy,
        error: BaseException,
    ) -> RateLimitResult:
        self._record_store_failure(operation, key, policy, error)

        if policy == StoreFailurePolicy.RAISE:
            raise StoreUnavailableError(operation, str(error)) from error

        allowed = policy == StoreFailurePolicy.FAIL_OPEN
        logger.warning(
            f"Rate limiting {policy.value} applied; request "
            f"{'allowed' if allowed else 'denied'} without a limit check",
            rate_limit_key=key,
        )
        return RateLimitResult(
            allowed=allowed,
            remaining=0,
            reset_at=_now_ms() + config.window_ms,
            limit=config.max_requests,
        )
