"""Error taxonomy for the resilience layer.

Every error carries the HTTP status code the calling HTTP layer is expected to
map it to. The mapping is a convention; nothing in this package speaks HTTP.
"""

from typing import Optional


class ResilienceError(Exception):
    """Base class for errors raised by the resilience layer."""
    status_code: int = 500

    def __init__(self, message: str = "Resilience layer error"):
        self.message = message
        super().__init__(message)


class StoreUnavailableError(ResilienceError):
    """Raised when the shared sorted-set store cannot be reached.

    The underlying I/O error is kept as ``__cause__``.
    """
    status_code = 503

    def __init__(self, operation: str, detail: str | None = None):
        self.operation = operation
        message = f"Rate limit store unavailable during {operation}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class CircuitOpenError(ResilienceError):
    """Raised instead of calling a dependency whose circuit is open."""
    status_code = 503

    def __init__(self, name: str, retry_after: float | None = None):
        self.name = name
        self.retry_after = retry_after
        message = f"Circuit breaker '{name}' is OPEN"
        if retry_after is not None:
            message += f"; retry after {retry_after:.2f}s"
        super().__init__(message)


class RetryExhaustedError(ResilienceError):
    """Raised when a wrapping retry policy gives up.

    ``last_error`` is the exception from the final attempt, not a synthetic one.
    """
    status_code = 502

    def __init__(self, last_error: BaseException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"Gave up after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )


class RateLimitExceededError(ResilienceError):
    """Raised by ``RateLimiter.enforce`` when a request is denied.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, key: str, limit: int, remaining: int = 0, reset_at: Optional[int] = None):
        self.key = key
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        super().__init__(f"Rate limit of {limit} requests exceeded for '{key}'")


class AlertHandlerError(ResilienceError):
    """Describes an alert handler that raised.

    Built for logging only; ``AlertManager.trigger`` never lets it escape.
    """

    def __init__(self, category: str, handler_name: str, error: BaseException):
        self.category = category
        self.handler_name = handler_name
        self.error = error
        super().__init__(
            f"Alert handler '{handler_name}' for category '{category}' failed: "
            f"{type(error).__name__}: {error}"
        )
