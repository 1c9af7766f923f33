"""
Circuit Breaker pattern implementation for resilience.

Prevents cascading failures by temporarily stopping requests to failing services.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from trafficguard.exceptions import CircuitOpenError
from trafficguard.observability.logging import get_logger
from trafficguard.observability.metrics import (
    circuit_breaker_rejections_total,
    circuit_breaker_state,
    circuit_breaker_transitions_total,
)

if TYPE_CHECKING:
    from trafficguard.resilience.alerts import AlertManager

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5
    reset_timeout_ms: float = 60_000
    expected_exception: type = Exception

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.reset_timeout_ms <= 0:
            raise ValueError("reset_timeout_ms must be positive")


class CircuitBreaker:
    """
    Circuit breaker guarding one dependency.

    States:
    - CLOSED: Normal operation, calls pass through and failures are counted
    - OPEN: Calls fail fast with CircuitOpenError until the reset timeout has
      elapsed since the last failure
    - HALF_OPEN: A single trial call is let through; success closes the
      circuit, failure reopens it

    Only the trial decides how HALF_OPEN ends. Calls admitted earlier that
    finish while the trial is running still count failures, but never move
    the breaker out of HALF_OPEN. The trial is identified by the task that
    was admitted for it.

    The OPEN to HALF_OPEN move happens lazily on the next call; there is no
    background timer. State changes are serialized with an asyncio lock so one
    instance can be shared by concurrent tasks; the protected call itself
    runs outside the lock.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        alert_manager: Optional["AlertManager"] = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.alert_manager = alert_manager

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self._trial_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        circuit_breaker_state.labels(breaker=name).set(_STATE_GAUGE_VALUES[self.state])

    async def __aenter__(self):
        """Async context manager entry."""
        await self._before_call()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if exc_type is None:
            await self._on_success()
        elif issubclass(exc_type, self.config.expected_exception):
            await self._on_failure(exc_val)
        else:
            await self._release_trial()
        return False  # Don't suppress exceptions

    async def _before_call(self) -> None:
        async with self._lock:
            if self.state == CircuitState.OPEN:
                if not self._reset_timeout_elapsed():
                    self._reject()
                self._transition(CircuitState.HALF_OPEN)

            if self.state == CircuitState.HALF_OPEN:
                if self._trial_task is not None:
                    self._reject()
                self._trial_task = asyncio.current_task()

    def _is_trial(self) -> bool:
        return self._trial_task is not None and self._trial_task is asyncio.current_task()

    def _reject(self) -> None:
        circuit_breaker_rejections_total.labels(breaker=self.name).inc()
        raise CircuitOpenError(self.name, retry_after=self._retry_after())

    def _reset_timeout_elapsed(self) -> bool:
        if self.last_failure_time is None:
            return True
        elapsed_ms = (time.time() - self.last_failure_time) * 1000
        return elapsed_ms > self.config.reset_timeout_ms

    def _retry_after(self) -> Optional[float]:
        if self.last_failure_time is None:
            return None
        remaining = self.last_failure_time + self.config.reset_timeout_ms / 1000 - time.time()
        return max(0.0, remaining)

    async def _on_success(self) -> None:
        async with self._lock:
            if not self._is_trial():
                return
            self._trial_task = None
            if self.state == CircuitState.HALF_OPEN:
                self.failure_count = 0
                self._transition(CircuitState.CLOSED)

    async def _on_failure(self, error: Optional[BaseException]) -> None:
        async with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()

            if self._is_trial():
                self._trial_task = None
                self._open(error)
            elif (
                self.state == CircuitState.CLOSED
                and self.failure_count >= self.config.failure_threshold
            ):
                self._open(error)

    async def _release_trial(self) -> None:
        async with self._lock:
            if self._is_trial():
                self._trial_task = None

    def _open(self, error: Optional[BaseException]) -> None:
        self._transition(CircuitState.OPEN)
        self._notify_open(error)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self.state
        self.state = new_state
        circuit_breaker_state.labels(breaker=self.name).set(_STATE_GAUGE_VALUES[new_state])
        circuit_breaker_transitions_total.labels(
            breaker=self.name,
            from_state=old_state.value,
            to_state=new_state.value
        ).inc()
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit breaker '{self.name}' {old_state.value} -> {new_state.value}",
            breaker=self.name,
            failure_count=self.failure_count,
        )

    def _notify_open(self, error: Optional[BaseException]) -> None:
        if self.alert_manager is None:
            return
        self.alert_manager.dependency_unavailable(
            self.name,
            error=f"{type(error).__name__}: {error}" if error is not None else None,
            failure_count=self.failure_count,
        )

    async def execute(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute ``func`` with circuit breaker protection.

        ``func`` may be a coroutine function or a plain callable.

        Raises:
            CircuitOpenError: If the circuit is open; ``func`` is not called
            Exception: Whatever ``func`` raised, unchanged
        """
        async with self:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

    # Name used by the decorator helpers
    call = execute

    def is_open(self) -> bool:
        """Check if circuit breaker is open."""
        return self.state == CircuitState.OPEN

    def is_closed(self) -> bool:
        """Check if circuit breaker is closed."""
        return self.state == CircuitState.CLOSED

    def is_half_open(self) -> bool:
        """Check if circuit breaker is half open."""
        return self.state == CircuitState.HALF_OPEN

    def get_state(self) -> str:
        """Current state name, e.g. ``"CLOSED"``."""
        return self.state.name

    def reset(self) -> None:
        """Force the breaker back to CLOSED and forget past failures."""
        if self.state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)
        self.failure_count = 0
        self.last_failure_time = None
        self._trial_task = None

    def get_stats(self) -> dict:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.config.failure_threshold,
            "reset_timeout_ms": self.config.reset_timeout_ms,
            "last_failure_time": self.last_failure_time
        }


class CircuitBreakerRegistry:
    """Named circuit breakers for one process.

    One registry is built by the runtime layer and passed to whoever needs
    a breaker, so each dependency name maps to exactly one breaker.
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        alert_manager: Optional["AlertManager"] = None,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self.alert_manager = alert_manager
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Get or create a circuit breaker by name.

        ``config`` only applies when the breaker is first created.
        """
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                name,
                config=config or self.default_config,
                alert_manager=self.alert_manager,
            )
        return self._breakers[name]

    def get_all(self) -> Dict[str, CircuitBreaker]:
        """Get all registered circuit breakers."""
        return self._breakers.copy()

    def reset(self, name: str) -> bool:
        """Reset a circuit breaker by name."""
        breaker = self._breakers.get(name)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def get_stats(self) -> Dict[str, dict]:
        """Get statistics for all circuit breakers."""
        return {name: cb.get_stats() for name, cb in self._breakers.items()}

    def get_open(self) -> Dict[str, dict]:
        """Statistics for breakers currently open."""
        return {name: cb.get_stats() for name, cb in self._breakers.items() if cb.is_open()}
