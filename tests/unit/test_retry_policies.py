"""Unit tests for retry policies."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis

from trafficguard.exceptions import RetryExhaustedError
from trafficguard.resilience.retry_policies import (
    FixedDelayPolicy,
    LinearBackoffPolicy,
    RetryConfig,
    create_http_retry_policy,
    create_redis_retry_policy,
    retry,
    retry_sync,
)


class FlakyError(Exception):
    pass


def flaky(*outcomes):
    """AsyncMock that raises or returns each outcome in turn."""
    return AsyncMock(side_effect=list(outcomes))


@pytest.mark.unit
class TestLinearBackoffPolicy:
    """Async execution under a linear backoff."""

    @pytest.mark.asyncio
    async def test_success_is_called_once(self):
        sleep = AsyncMock()
        fn = AsyncMock(return_value="rates")
        policy = LinearBackoffPolicy(RetryConfig(max_attempts=3, delay_ms=1000), sleep=sleep)

        assert await policy.execute(fn) == "rates"

        fn.assert_awaited_once()
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        sleep = AsyncMock()
        fn = flaky(FlakyError("1"), FlakyError("2"), "ok")
        policy = LinearBackoffPolicy(RetryConfig(max_attempts=3, delay_ms=1000), sleep=sleep)

        assert await policy.execute(fn) == "ok"
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_exhaustion_rethrows_last_error(self):
        sleep = AsyncMock()
        errors = [FlakyError("first"), FlakyError("second"), FlakyError("third")]
        fn = flaky(*errors)
        policy = LinearBackoffPolicy(RetryConfig(max_attempts=3, delay_ms=1000), sleep=sleep)

        with pytest.raises(FlakyError) as exc_info:
            await policy.execute(fn)

        assert exc_info.value is errors[-1]
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_waits_grow_linearly(self):
        sleep = AsyncMock()
        fn = flaky(FlakyError("1"), FlakyError("2"), FlakyError("3"))
        policy = LinearBackoffPolicy(RetryConfig(max_attempts=3, delay_ms=1000), sleep=sleep)

        with pytest.raises(FlakyError):
            await policy.execute(fn)

        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(self):
        sleep = AsyncMock()
        fn = flaky(FlakyError("only"))
        policy = LinearBackoffPolicy(RetryConfig(max_attempts=1, delay_ms=1000), sleep=sleep)

        with pytest.raises(FlakyError):
            await policy.execute(fn)

        fn.assert_awaited_once()
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        sleep = AsyncMock()
        fn = flaky(KeyError("missing"))
        policy = LinearBackoffPolicy(
            RetryConfig(max_attempts=3, delay_ms=10),
            retryable_exceptions=(FlakyError,),
            sleep=sleep,
        )

        with pytest.raises(KeyError):
            await policy.execute(fn)

        fn.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wrap_exhausted(self):
        sleep = AsyncMock()
        last = FlakyError("last")
        fn = flaky(FlakyError("first"), last)
        policy = LinearBackoffPolicy(
            RetryConfig(max_attempts=2, delay_ms=10, wrap_exhausted=True), sleep=sleep
        )

        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.execute(fn)

        assert exc_info.value.last_error is last
        assert exc_info.value.attempts == 2
        assert exc_info.value.__cause__ is last
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_arguments_are_forwarded(self):
        fn = AsyncMock(return_value=42)
        policy = LinearBackoffPolicy(RetryConfig(), sleep=AsyncMock())

        await policy.execute(fn, "EUR", base="USD")

        fn.assert_awaited_once_with("EUR", base="USD")

    @pytest.mark.asyncio
    async def test_plain_callable(self):
        fn = MagicMock(side_effect=[FlakyError("x"), "sync-ok"])
        policy = LinearBackoffPolicy(RetryConfig(delay_ms=5), sleep=AsyncMock())

        assert await policy.execute(fn) == "sync-ok"


@pytest.mark.unit
class TestSyncExecution:
    """Blocking execution."""

    def test_execute_sync_linear_waits(self):
        sleep = MagicMock()
        fn = MagicMock(side_effect=[FlakyError("1"), FlakyError("2"), "done"])
        policy = LinearBackoffPolicy(RetryConfig(max_attempts=3, delay_ms=500), sleep=sleep)

        assert policy.execute_sync(fn) == "done"
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_execute_sync_exhaustion(self):
        last = FlakyError("last")
        fn = MagicMock(side_effect=[FlakyError("first"), last])
        policy = LinearBackoffPolicy(RetryConfig(max_attempts=2, delay_ms=1), sleep=MagicMock())

        with pytest.raises(FlakyError) as exc_info:
            policy.execute_sync(fn)

        assert exc_info.value is last

    def test_fixed_delay(self):
        sleep = MagicMock()
        fn = MagicMock(side_effect=[FlakyError("1"), FlakyError("2"), "done"])
        policy = FixedDelayPolicy(RetryConfig(max_attempts=3, delay_ms=250), sleep=sleep)

        policy.execute_sync(fn)

        assert [c.args[0] for c in sleep.call_args_list] == [0.25, 0.25]

    def test_config_validation(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)
        with pytest.raises(ValueError):
            RetryConfig(delay_ms=-1)


@pytest.mark.unit
class TestRetryHelpers:
    """Module-level helpers and policy factories."""

    @pytest.mark.asyncio
    async def test_retry_helper(self):
        fn = flaky(FlakyError("1"), "ok")

        assert await retry(fn, max_attempts=2, delay_ms=0) == "ok"
        assert fn.await_count == 2

    def test_retry_sync_helper(self):
        fn = MagicMock(side_effect=[FlakyError("1"), FlakyError("2")])

        with pytest.raises(FlakyError):
            retry_sync(fn, max_attempts=2, delay_ms=0)

        assert fn.call_count == 2

    def test_redis_policy(self):
        policy = create_redis_retry_policy()

        assert policy.service_name == "redis"
        assert policy.config.max_attempts == 3
        assert policy.config.delay_ms == 100
        assert redis.ConnectionError in policy.retryable_exceptions

    def test_http_policy(self):
        policy = create_http_retry_policy(max_attempts=5, delay_ms=200)

        assert policy.service_name == "http_client"
        assert policy.config.max_attempts == 5
        assert TimeoutError in policy.retryable_exceptions
