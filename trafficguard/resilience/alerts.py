"""
In-process alert sink for threshold-crossing events.

Producers call :meth:`AlertManager.trigger` (or one of the preset helpers).
Each alert is appended to a bounded log, written to the structured log at a
level matching its severity, and handed synchronously to every handler
registered for its category. Handler failures are logged and swallowed, so a
broken pager integration never fails the request that raised the alert.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from trafficguard.exceptions import AlertHandlerError
from trafficguard.observability.logging import get_logger
from trafficguard.observability.metrics import (
    alert_handler_failures_total,
    alerts_triggered_total,
)

logger = get_logger(__name__)


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AlertCategory(Enum):
    """Alert categories."""
    SECURITY = "security"
    PERFORMANCE = "performance"
    AVAILABILITY = "availability"
    BILLING = "billing"
    QUOTA = "quota"
    SYSTEM = "system"


@dataclass
class Alert:
    """A single alert. Only ``resolved`` changes after creation."""
    severity: AlertSeverity
    category: AlertCategory
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "resolved": self.resolved,
        }


AlertHandler = Callable[[Alert], None]


# Preset name -> (severity, category, message)
ALERT_PRESETS: Dict[str, Tuple[AlertSeverity, AlertCategory, str]] = {
    "rate_limit_exceeded": (AlertSeverity.WARNING, AlertCategory.QUOTA, "Rate limit exceeded"),
    "quota_exceeded": (AlertSeverity.WARNING, AlertCategory.QUOTA, "Monthly quota exceeded"),
    "auth_failure": (
        AlertSeverity.WARNING, AlertCategory.SECURITY, "Multiple authentication failures detected"
    ),
    "high_error_rate": (AlertSeverity.ERROR, AlertCategory.PERFORMANCE, "High error rate detected"),
    "slow_response_time": (
        AlertSeverity.WARNING, AlertCategory.PERFORMANCE, "Slow response time detected"
    ),
    "payment_failed": (AlertSeverity.ERROR, AlertCategory.BILLING, "Payment processing failed"),
    "database_error": (AlertSeverity.CRITICAL, AlertCategory.AVAILABILITY, "Database connection error"),
    "dependency_unavailable": (
        AlertSeverity.CRITICAL, AlertCategory.AVAILABILITY, "Dependency unavailable"
    ),
    "high_memory_usage": (AlertSeverity.WARNING, AlertCategory.SYSTEM, "High memory usage detected"),
}

# Authentication failures above this count escalate to CRITICAL
AUTH_FAILURE_CRITICAL_THRESHOLD = 10


class AlertManager:
    """
    Bounded alert log with per-category handlers.

    The log keeps the most recent ``max_alerts`` alerts; older ones are
    dropped silently. Handlers run synchronously inside :meth:`trigger`, so
    slow handlers slow down the caller.
    """

    def __init__(self, max_alerts: int = 1000):
        if max_alerts < 1:
            raise ValueError("max_alerts must be at least 1")
        self.max_alerts = max_alerts
        self._alerts: Deque[Alert] = deque(maxlen=max_alerts)
        self._handlers: Dict[AlertCategory, List[AlertHandler]] = {}

    def __len__(self) -> int:
        return len(self._alerts)

    def trigger(
        self,
        severity: AlertSeverity,
        category: AlertCategory,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> Alert:
        """Record an alert, log it and run the category's handlers."""
        alert = Alert(
            severity=severity,
            category=category,
            message=message,
            details=dict(details) if details is not None else None,
        )
        self._alerts.append(alert)
        alerts_triggered_total.labels(severity=severity.value, category=category.value).inc()

        log_message = f"[ALERT] [{severity.name}] [{category.value}] {message}"
        log_context = {
            "alert_severity": severity.value,
            "alert_category": category.value,
            "alert_details": alert.details,
        }
        if severity == AlertSeverity.CRITICAL:
            logger.critical(log_message, **log_context)
        elif severity == AlertSeverity.ERROR:
            logger.error(log_message, **log_context)
        elif severity == AlertSeverity.WARNING:
            logger.warning(log_message, **log_context)
        else:
            logger.info(log_message, **log_context)

        for handler in list(self._handlers.get(category, ())):
            try:
                handler(alert)
            except Exception as e:
                failure = AlertHandlerError(
                    category.value, getattr(handler, "__name__", repr(handler)), e
                )
                alert_handler_failures_total.labels(category=category.value).inc()
                logger.exception(
                    "Alert handler error",
                    alert_category=category.value,
                    handler=failure.handler_name,
                    error=failure.message,
                )

        return alert

    def on_alert(self, category: AlertCategory, handler: AlertHandler) -> None:
        """Register ``handler`` for alerts in ``category``."""
        self._handlers.setdefault(category, []).append(handler)

    def remove_handler(self, category: AlertCategory, handler: AlertHandler) -> bool:
        """Unregister a handler; returns whether it was registered."""
        handlers = self._handlers.get(category, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def get_recent_alerts(
        self,
        limit: int = 100,
        category: Optional[AlertCategory] = None,
    ) -> List[Alert]:
        """Most recent alerts first, optionally filtered by category."""
        if limit <= 0:
            return []
        alerts = [a for a in self._alerts if category is None or a.category == category]
        return alerts[-limit:][::-1]

    def get_unresolved_alerts(self, category: Optional[AlertCategory] = None) -> List[Alert]:
        """Unresolved alerts in the order they were triggered."""
        return [
            a for a in self._alerts
            if not a.resolved and (category is None or a.category == category)
        ]

    def resolve_alert(self, index: int) -> bool:
        """Mark the alert at ``index`` of the retained log (oldest is 0) resolved.

        Returns False when there is no alert at that position.
        """
        if not 0 <= index < len(self._alerts):
            return False
        self._alerts[index].resolved = True
        return True

    def clear_alerts(self) -> None:
        self._alerts.clear()

    def get_stats(self) -> Dict[str, Any]:
        by_severity: Dict[str, int] = {}
        by_category: Dict[str, int] = {}
        unresolved = 0
        for alert in self._alerts:
            by_severity[alert.severity.value] = by_severity.get(alert.severity.value, 0) + 1
            by_category[alert.category.value] = by_category.get(alert.category.value, 0) + 1
            if not alert.resolved:
                unresolved += 1
        return {
            "total": len(self._alerts),
            "unresolved": unresolved,
            "by_severity": by_severity,
            "by_category": by_category,
        }

    # ==== PRESET ALERTS ==== #

    def trigger_preset(
        self,
        name: str,
        severity: Optional[AlertSeverity] = None,
        **details: Any,
    ) -> Alert:
        """Trigger one of :data:`ALERT_PRESETS` with ``details`` attached.

        Raises:
            KeyError: If ``name`` is not a known preset
        """
        preset_severity, category, message = ALERT_PRESETS[name]
        return self.trigger(severity or preset_severity, category, message, details)

    def rate_limit_exceeded(self, user_id: str, limit: int) -> Alert:
        return self.trigger_preset("rate_limit_exceeded", user_id=user_id, limit=limit)

    def quota_exceeded(self, user_id: str, used: int, limit: int) -> Alert:
        return self.trigger_preset("quota_exceeded", user_id=user_id, used=used, limit=limit)

    def auth_failure(self, failure_type: str, attempts: int, ip: str) -> Alert:
        severity = (
            AlertSeverity.CRITICAL
            if attempts > AUTH_FAILURE_CRITICAL_THRESHOLD
            else AlertSeverity.WARNING
        )
        return self.trigger_preset(
            "auth_failure", severity=severity, type=failure_type, attempts=attempts, ip=ip
        )

    def high_error_rate(self, error_rate: float, threshold: float) -> Alert:
        return self.trigger_preset("high_error_rate", error_rate=error_rate, threshold=threshold)

    def slow_response_time(self, endpoint: str, response_time: float, threshold: float) -> Alert:
        return self.trigger_preset(
            "slow_response_time",
            endpoint=endpoint,
            response_time=response_time,
            threshold=threshold,
        )

    def payment_failed(self, user_id: str, amount: float, reason: Optional[str] = None) -> Alert:
        return self.trigger_preset("payment_failed", user_id=user_id, amount=amount, reason=reason)

    def database_error(self, error: str) -> Alert:
        return self.trigger_preset("database_error", error=error)

    def dependency_unavailable(self, dependency: str, **details: Any) -> Alert:
        return self.trigger_preset("dependency_unavailable", dependency=dependency, **details)

    def high_memory_usage(self, percentage: float, threshold: float) -> Alert:
        return self.trigger_preset("high_memory_usage", percentage=percentage, threshold=threshold)


def register_default_handlers(manager: AlertManager) -> None:
    """Escalate critical security and availability alerts in the log.

    These are the hooks a deployment replaces with pager or chat integrations.
    """

    def escalate_security(alert: Alert) -> None:
        if alert.severity == AlertSeverity.CRITICAL:
            logger.critical("CRITICAL SECURITY ALERT", alert=alert.to_dict())

    def escalate_availability(alert: Alert) -> None:
        if alert.severity == AlertSeverity.CRITICAL:
            logger.critical("CRITICAL AVAILABILITY ALERT", alert=alert.to_dict())

    manager.on_alert(AlertCategory.SECURITY, escalate_security)
    manager.on_alert(AlertCategory.AVAILABILITY, escalate_availability)
