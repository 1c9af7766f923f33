"""Retry policies for fallible operations.

Backoff between attempts is linear: after attempt ``i`` the executor waits
``delay_ms * i`` before trying again. There is no jitter.
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as redis
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_incrementing,
)

from trafficguard.exceptions import RetryExhaustedError
from trafficguard.observability.logging import get_logger
from trafficguard.observability.metrics import retry_attempts_total, retry_failures_total

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    delay_ms: float = 1000
    wrap_exhausted: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay_ms < 0:
            raise ValueError("delay_ms must not be negative")


class RetryPolicy(ABC):
    """Abstract base class for retry policies.

    Subclasses choose the wait strategy; attempt counting, exception
    filtering, logging and metrics are shared.
    """

    def __init__(
        self,
        config: RetryConfig,
        service_name: str = "unknown",
        retryable_exceptions: tuple = (Exception,),
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.config = config
        self.service_name = service_name
        self.retryable_exceptions = retryable_exceptions
        # Overrides tenacity's sleep; mainly useful in tests
        self._sleep = sleep

    @abstractmethod
    def wait_strategy(self):
        """Get the tenacity wait strategy for this policy."""

    def _retrying_kwargs(self, operation_name: str) -> dict:
        kwargs = dict(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=self.wait_strategy(),
            retry=retry_if_exception_type(self.retryable_exceptions),
            before_sleep=self._before_sleep_callback(operation_name),
            reraise=False,
        )
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return kwargs

    def _before_sleep_callback(self, operation_name: str):
        """Callback before sleep between retries."""
        def callback(retry_state: RetryCallState) -> None:
            attempt = retry_state.attempt_number
            exception = retry_state.outcome.exception()
            retry_attempts_total.labels(
                service=self.service_name,
                operation=operation_name,
                attempt=str(attempt)
            ).inc()
            logger.warning(
                f"Retry {attempt}/{self.config.max_attempts} for {operation_name}",
                service=self.service_name,
                error_type=type(exception).__name__,
                error=str(exception),
                wait_seconds=retry_state.next_action.sleep,
            )

        return callback

    def _exhausted(self, error: RetryError, operation_name: str) -> BaseException:
        last_attempt = error.last_attempt
        exception = last_attempt.exception()
        retry_failures_total.labels(
            service=self.service_name,
            operation=operation_name,
            error_type=type(exception).__name__
        ).inc()
        logger.warning(
            f"Max attempts ({self.config.max_attempts}) exceeded for {operation_name}",
            service=self.service_name,
            error_type=type(exception).__name__,
            error=str(exception),
        )
        if self.config.wrap_exhausted:
            wrapped = RetryExhaustedError(exception, last_attempt.attempt_number)
            wrapped.__cause__ = exception
            return wrapped
        return exception

    async def execute(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` under this policy.

        ``fn`` may be a coroutine function or a plain callable.

        Raises:
            Exception: The last error (or ``RetryExhaustedError`` when
                ``wrap_exhausted`` is set) once attempts run out; a
                non-retryable error immediately.
        """
        operation_name = getattr(fn, "__name__", "operation")
        try:
            async for attempt in AsyncRetrying(**self._retrying_kwargs(operation_name)):
                with attempt:
                    result = fn(*args, **kwargs)
                    if inspect.isawaitable(result):
                        result = await result
                    return result
        except RetryError as error:
            failure = self._exhausted(error, operation_name)
        raise failure

    def execute_sync(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Synchronous counterpart of :meth:`execute`."""
        operation_name = getattr(fn, "__name__", "operation")
        try:
            for attempt in Retrying(**self._retrying_kwargs(operation_name)):
                with attempt:
                    return fn(*args, **kwargs)
        except RetryError as error:
            failure = self._exhausted(error, operation_name)
        raise failure


class LinearBackoffPolicy(RetryPolicy):
    """Wait ``delay_ms * attempt`` between attempts."""

    def wait_strategy(self):
        delay = self.config.delay_ms / 1000
        return wait_incrementing(start=delay, increment=delay)


class FixedDelayPolicy(RetryPolicy):
    """Wait ``delay_ms`` between every pair of attempts."""

    def wait_strategy(self):
        return wait_fixed(self.config.delay_ms / 1000)


async def retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay_ms: float = 1000,
) -> T:
    """Call ``fn`` until it succeeds or ``max_attempts`` calls have failed.

    Waits ``delay_ms * i`` after failed attempt ``i``. The error from the
    final attempt is re-raised unchanged.

    Example:
        >>> rates = await retry(lambda: client.fetch_rates(), max_attempts=5, delay_ms=200)
    """
    policy = LinearBackoffPolicy(RetryConfig(max_attempts=max_attempts, delay_ms=delay_ms))
    return await policy.execute(fn)


def retry_sync(
    fn: Callable[[], T],
    max_attempts: int = 3,
    delay_ms: float = 1000,
) -> T:
    """Blocking variant of :func:`retry`."""
    policy = LinearBackoffPolicy(RetryConfig(max_attempts=max_attempts, delay_ms=delay_ms))
    return policy.execute_sync(fn)


# Predefined retry policies for common dependencies

def create_redis_retry_policy() -> LinearBackoffPolicy:
    """Create retry policy for Redis operations."""
    config = RetryConfig(max_attempts=3, delay_ms=100)

    retryable_exceptions = (
        redis.ConnectionError,
        redis.TimeoutError,
        redis.BusyLoadingError,
        ConnectionError,
        TimeoutError,
    )

    return LinearBackoffPolicy(
        config=config,
        service_name="redis",
        retryable_exceptions=retryable_exceptions
    )


def create_http_retry_policy(max_attempts: int = 3, delay_ms: float = 1000) -> LinearBackoffPolicy:
    """Create retry policy for outbound HTTP calls to external dependencies."""
    config = RetryConfig(max_attempts=max_attempts, delay_ms=delay_ms)

    retryable_exceptions = (
        ConnectionError,
        TimeoutError,
        OSError,
    )

    return LinearBackoffPolicy(
        config=config,
        service_name="http_client",
        retryable_exceptions=retryable_exceptions
    )
