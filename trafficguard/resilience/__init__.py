"""
Resilience patterns for a multi-tenant API service.

This module provides implementations of common resilience patterns:
- Rate Limiter: Distributed sliding window log over Redis sorted sets
- Circuit Breaker: Prevents cascading failures
- Retry: Automatic retry with linear backoff
- TTL Cache: In-process cache with per-entry expiry
- Alerts: Bounded alert log with per-category handlers
"""

from .alerts import (
    Alert,
    AlertCategory,
    AlertManager,
    AlertSeverity,
    register_default_handlers,
)
from .cache import CacheStats, TTLCache
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from .decorators import rate_limited, with_circuit_breaker, with_resilience, with_retry
from .rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
    StoreFailurePolicy,
)
from .retry_policies import (
    FixedDelayPolicy,
    LinearBackoffPolicy,
    RetryConfig,
    RetryPolicy,
    retry,
    retry_sync,
)

__all__ = [
    "Alert",
    "AlertCategory",
    "AlertManager",
    "AlertSeverity",
    "register_default_handlers",
    "CacheStats",
    "TTLCache",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "rate_limited",
    "with_circuit_breaker",
    "with_resilience",
    "with_retry",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimitResult",
    "StoreFailurePolicy",
    "FixedDelayPolicy",
    "LinearBackoffPolicy",
    "RetryConfig",
    "RetryPolicy",
    "retry",
    "retry_sync",
]
