# ==== RESILIENCE LAYER WIRING ==== #

"""
Explicit wiring and lifecycle for the resilience layer.

One ``ResilienceLayer`` is built per process and passed to whatever needs a
cache, an alert sink, a breaker or the rate limiter. Nothing here is a module
global; start and stop are explicit so the host application can tie them to
its own startup and shutdown hooks.
"""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from trafficguard.observability.logging import get_logger, init_logging
from trafficguard.observability.tracing import init_tracing
from trafficguard.resilience.alerts import AlertManager, register_default_handlers
from trafficguard.resilience.cache import TTLCache
from trafficguard.resilience.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from trafficguard.resilience.rate_limiter import RateLimiter
from trafficguard.resilience.retry_policies import LinearBackoffPolicy, RetryConfig
from trafficguard.settings import Settings, get_settings
from trafficguard.storage.redis import close_redis_client, create_redis_client

logger = get_logger(__name__)


@dataclass
class ResilienceLayer:
    """The process-wide set of resilience components."""
    cache: TTLCache
    alerts: AlertManager
    breakers: CircuitBreakerRegistry
    rate_limiter: RateLimiter
    retry_config: RetryConfig
    redis_client: Optional[redis.Redis] = None
    # Only a client built by from_settings is closed on stop()
    owns_redis_client: bool = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        redis_client: Optional[redis.Redis] = None,
    ) -> "ResilienceLayer":
        """
        Build every component from application settings.

        Args:
            settings (Settings): Loaded application settings
            redis_client (Optional[redis.Redis]): Pre-built client; one is
                created from ``REDIS_URL`` when omitted. A passed-in client
                stays owned by the caller and is not closed by ``stop()``

        Returns:
            ResilienceLayer: Wired but not yet started
        """
        owns_redis_client = redis_client is None
        if owns_redis_client:
            redis_client = create_redis_client(
                settings.REDIS_URL,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            )

        alerts = AlertManager(max_alerts=settings.ALERT_LOG_SIZE)
        if settings.ALERT_DEFAULT_HANDLERS:
            register_default_handlers(alerts)

        cache = TTLCache(
            default_ttl_seconds=settings.CACHE_DEFAULT_TTL_SECONDS,
            sweep_interval_seconds=settings.CACHE_SWEEP_INTERVAL_SECONDS,
        )

        return cls(
            cache=cache,
            alerts=alerts,
            breakers=CircuitBreakerRegistry(
                default_config=CircuitBreakerConfig(
                    failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
                    reset_timeout_ms=settings.CIRCUIT_RESET_TIMEOUT_MS,
                ),
                alert_manager=alerts,
            ),
            rate_limiter=RateLimiter(
                redis_client,
                key_prefix=settings.RATE_LIMIT_KEY_PREFIX,
                alert_manager=alerts,
                alert_markers=cache,
            ),
            retry_config=RetryConfig(
                max_attempts=settings.RETRY_MAX_ATTEMPTS,
                delay_ms=settings.RETRY_DELAY_MS,
            ),
            redis_client=redis_client,
            owns_redis_client=owns_redis_client,
        )

    def retry_policy(self, service_name: str, retryable_exceptions: tuple = (Exception,)) -> LinearBackoffPolicy:
        """Retry policy for ``service_name`` using the configured defaults."""
        return LinearBackoffPolicy(
            self.retry_config,
            service_name=service_name,
            retryable_exceptions=retryable_exceptions,
        )

    async def start(self) -> None:
        """Start background work (the cache sweep). Requires a running loop."""
        self.cache.start()
        logger.info("Resilience layer started")

    async def stop(self) -> None:
        """Stop the cache sweep and close the Redis connection if the layer built it."""
        await self.cache.stop()
        if self.owns_redis_client:
            await close_redis_client(self.redis_client)
            self.redis_client = None
            self.owns_redis_client = False
        logger.info("Resilience layer stopped")


def bootstrap(settings: Optional[Settings] = None) -> ResilienceLayer:
    """
    Configure logging and tracing, then build the resilience layer.

    Args:
        settings (Optional[Settings]): Settings to use; loaded from the
            environment when omitted

    Returns:
        ResilienceLayer: Wired layer; call ``await layer.start()`` next
    """
    settings = settings or get_settings()
    init_logging(settings.LOG_LEVEL, serialize=settings.LOG_JSON)
    init_tracing(
        settings.OTEL_SERVICE_NAME or settings.SERVICE_NAME,
        environment=settings.APP_ENV,
        endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        headers=settings.OTEL_EXPORTER_OTLP_HEADERS,
    )
    return ResilienceLayer.from_settings(settings)
