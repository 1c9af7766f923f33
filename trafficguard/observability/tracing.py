# ==== OPENTELEMETRY TRACING CONFIGURATION ==== #

"""
OpenTelemetry tracing configuration for trafficguard.

Sets up OTLP export and Redis auto-instrumentation when an exporter endpoint
is configured; without one, spans go to the default no-op provider.
"""

from typing import Any, Dict

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.instrumentation.redis import RedisInstrumentor

from trafficguard.observability.logging import get_logger

logger = get_logger(__name__)


def init_tracing(
    service_name: str,
    environment: str | None = None,
    endpoint: str | None = None,
    headers: str | None = None,
) -> bool:
    """
    Initialize OpenTelemetry tracing.

    Args:
        service_name (str): Name of the service for tracing identification
        environment (str | None): Deployment environment recorded on every span
        endpoint (str | None): OTLP gRPC endpoint; tracing stays disabled without it
        headers (str | None): Comma-separated ``key=value`` exporter headers

    Returns:
        bool: True when an exporter was installed
    """
    # Allow local runs without an APM backend
    if not endpoint:
        return False

    attributes = {"service.name": service_name}
    if environment:
        attributes["deployment.environment"] = environment
    resource = Resource.create(attributes)
    provider = TracerProvider(resource=resource)

    exporter = OTLPSpanExporter(
        endpoint=endpoint,
        headers=_parse_headers(headers)
    )

    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    _setup_auto_instrumentation()
    return True


def _parse_headers(headers_str: str | None) -> Dict[str, str]:
    """Parse OTLP headers from a comma-separated ``key=value`` string."""
    headers: Dict[str, str] = {}
    if not headers_str:
        return headers

    for part in headers_str.split(","):
        if "=" in part:
            key, value = part.split("=", 1)
            headers[key.strip()] = value.strip()

    return headers


def _setup_auto_instrumentation() -> None:
    try:
        RedisInstrumentor().instrument()
    except Exception as e:
        # Don't fail startup if instrumentation fails
        logger.warning("Failed to setup Redis auto-instrumentation", error=str(e))


def get_tracer(name: str) -> Any:
    """Get a tracer instance for the given module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Tracer instance
    """
    return trace.get_tracer(name)
