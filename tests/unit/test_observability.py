"""Unit tests for logging, metrics and tracing setup."""

from unittest.mock import patch

import pytest

from trafficguard.observability.logging import get_logger
from trafficguard.observability.metrics import alerts_triggered_total, render_metrics
from trafficguard.observability.tracing import _parse_headers, init_tracing
from trafficguard.resilience.alerts import AlertCategory, AlertManager, AlertSeverity


@pytest.mark.unit
class TestContextualLogger:
    """Structured context binding."""

    def test_keyword_context_is_bound(self, captured_records):
        get_logger("trafficguard.test").warning("Rate limit exceeded", rate_limit_key="acme")

        [record] = [r for r in captured_records if r["message"] == "Rate limit exceeded"]
        assert record["level"].name == "WARNING"
        assert record["extra"]["rate_limit_key"] == "acme"
        assert record["extra"]["logger_name"] == "trafficguard.test"

    def test_exception_includes_traceback(self, captured_records):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            get_logger("trafficguard.test").exception("Handler failed")

        [record] = [r for r in captured_records if r["message"] == "Handler failed"]
        assert record["level"].name == "ERROR"
        assert record["exception"] is not None

    def test_critical_alert_logs_at_critical(self, captured_records):
        AlertManager().trigger(AlertSeverity.CRITICAL, AlertCategory.AVAILABILITY, "db down")

        [record] = [r for r in captured_records if "db down" in r["message"]]
        assert record["level"].name == "CRITICAL"
        assert record["message"] == "[ALERT] [CRITICAL] [availability] db down"


@pytest.mark.unit
class TestMetrics:
    """Prometheus exposition."""

    def test_render_includes_counters(self):
        alerts_triggered_total.labels(severity="info", category="system").inc()

        payload, content_type = render_metrics()

        assert b"trafficguard_alerts_triggered_total" in payload
        assert b"trafficguard_rate_limit_decisions_total" in payload
        assert content_type.startswith("text/plain")


@pytest.mark.unit
class TestTracing:
    """Tracing bootstrap."""

    def test_disabled_without_endpoint(self):
        assert init_tracing("trafficguard") is False

    def test_parse_headers(self):
        assert _parse_headers("api-key=abc, x-team = core,broken") == {
            "api-key": "abc",
            "x-team": "core",
        }
        assert _parse_headers(None) == {}

    def test_environment_recorded_on_resource(self):
        module = "trafficguard.observability.tracing"
        with patch(f"{module}.TracerProvider") as provider_cls, \
             patch(f"{module}.OTLPSpanExporter") as exporter_cls, \
             patch(f"{module}.BatchSpanProcessor"), \
             patch(f"{module}.trace.set_tracer_provider") as set_provider, \
             patch(f"{module}.RedisInstrumentor"):
            assert init_tracing("svc", environment="staging", endpoint="http://otel:4317") is True

        resource = provider_cls.call_args.kwargs["resource"]
        assert resource.attributes["service.name"] == "svc"
        assert resource.attributes["deployment.environment"] == "staging"
        exporter_cls.assert_called_once_with(endpoint="http://otel:4317", headers={})
        set_provider.assert_called_once_with(provider_cls.return_value)
