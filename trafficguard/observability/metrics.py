# ==== PROMETHEUS METRICS ==== #

"""
Prometheus metrics for the resilience layer.

Counters and gauges live at module level so every component instance in the
process reports into the same default registry.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    generate_latest,
    REGISTRY
)


# ==== RATE LIMITER METRICS ==== #

rate_limit_decisions_total = Counter(
    "trafficguard_rate_limit_decisions_total",
    "Rate limit decisions by outcome",
    ["outcome"]  # allowed, denied
)

rate_limit_store_failures_total = Counter(
    "trafficguard_rate_limit_store_failures_total",
    "Rate limit checks that could not reach the store, by caller policy",
    ["operation", "policy"]
)


# ==== CIRCUIT BREAKER METRICS ==== #

circuit_breaker_state = Gauge(
    "trafficguard_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["breaker"]
)

circuit_breaker_transitions_total = Counter(
    "trafficguard_circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["breaker", "from_state", "to_state"]
)

circuit_breaker_rejections_total = Counter(
    "trafficguard_circuit_breaker_rejections_total",
    "Calls rejected without invoking the dependency",
    ["breaker"]
)


# ==== RETRY METRICS ==== #

retry_attempts_total = Counter(
    "trafficguard_retry_attempts_total",
    "Total retry attempts",
    ["service", "operation", "attempt"]
)

retry_failures_total = Counter(
    "trafficguard_retry_failures_total",
    "Total retry failures after all attempts",
    ["service", "operation", "error_type"]
)


# ==== CACHE METRICS ==== #

cache_hits_total = Counter(
    "trafficguard_cache_hits_total",
    "Total cache hits",
    ["operation"]
)

cache_misses_total = Counter(
    "trafficguard_cache_misses_total",
    "Total cache misses",
    ["operation"]
)

cache_swept_entries_total = Counter(
    "trafficguard_cache_swept_entries_total",
    "Expired entries reclaimed by the background sweep"
)


# ==== ALERT METRICS ==== #

alerts_triggered_total = Counter(
    "trafficguard_alerts_triggered_total",
    "Alerts triggered by severity and category",
    ["severity", "category"]
)

alert_handler_failures_total = Counter(
    "trafficguard_alert_handler_failures_total",
    "Alert handlers that raised",
    ["category"]
)


def render_metrics() -> tuple[bytes, str]:
    """Render the default registry for a scrape endpoint.

    Returns:
        Exposition payload and its content type
    """
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
