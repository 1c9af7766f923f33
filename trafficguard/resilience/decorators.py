"""Decorators for applying resilience patterns to async functions."""

import functools
import inspect
from typing import Any, Awaitable, Callable, TypeVar

from .circuit_breaker import CircuitBreaker
from .rate_limiter import RateLimitConfig, RateLimiter, StoreFailurePolicy
from .retry_policies import RetryPolicy

T = TypeVar('T')

AsyncFunc = Callable[..., Awaitable[T]]


def _require_coroutine(func: Callable[..., Any], decorator_name: str) -> None:
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"{decorator_name} can only be used with async functions")


def with_circuit_breaker(breaker: CircuitBreaker):
    """Decorator to add circuit breaker protection to a function.

    Args:
        breaker: Breaker guarding the decorated dependency call

    Returns:
        Decorated function with circuit breaker protection
    """
    def decorator(func: AsyncFunc) -> AsyncFunc:
        _require_coroutine(func, "with_circuit_breaker")

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            return await breaker.execute(func, *args, **kwargs)
        return async_wrapper

    return decorator


def with_retry(policy: RetryPolicy):
    """Decorator to add retry logic to a function.

    Args:
        policy: Retry policy to apply

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: AsyncFunc) -> AsyncFunc:
        _require_coroutine(func, "with_retry")

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            return await policy.execute(func, *args, **kwargs)
        return async_wrapper

    return decorator


def with_resilience(breaker: CircuitBreaker, retry_policy: RetryPolicy):
    """Decorator to add both retry and circuit breaker protection.

    The breaker wraps the retrying call, so one exhausted retry sequence
    counts as a single failure and a retry loop cannot trip the breaker on
    its own.

    Args:
        breaker: Breaker guarding the dependency
        retry_policy: Retry policy applied inside the breaker

    Returns:
        Decorated function with full resilience protection
    """
    def decorator(func: AsyncFunc) -> AsyncFunc:
        retry_decorated = with_retry(retry_policy)(func)
        return with_circuit_breaker(breaker)(retry_decorated)

    return decorator


def rate_limited(
    limiter: RateLimiter,
    config: RateLimitConfig,
    key_func: Callable[..., str],
    on_store_failure: StoreFailurePolicy = StoreFailurePolicy.RAISE,
):
    """Decorator that enforces a rate limit before running the function.

    Args:
        limiter: Rate limiter backed by the shared store
        config: Window and request budget
        key_func: Builds the rate limit key from the call's arguments
        on_store_failure: Caller policy when the store is unreachable

    Raises:
        RateLimitExceededError: From the decorated call when over the limit
    """
    def decorator(func: AsyncFunc) -> AsyncFunc:
        _require_coroutine(func, "rate_limited")

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            await limiter.enforce(key_func(*args, **kwargs), config, on_store_failure)
            return await func(*args, **kwargs)
        return async_wrapper

    return decorator
