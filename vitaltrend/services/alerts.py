"""
Alert emission boundary.

Turns a persisted, alerting trend record into an AlertEvent, decides whether
it is worth re-sending, and dispatches it to the notification handlers.
"""

import inspect
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Protocol

import structlog

from vitaltrend.domain.models import (
    AlertEvent,
    AlertSeverity,
    ClinicalSignificance,
    TrendRecord,
)

logger = structlog.get_logger(__name__)

AlertHandler = Callable[[AlertEvent], Awaitable[None] | None]

_SEVERITY_BY_SIGNIFICANCE = {
    ClinicalSignificance.CRITICAL: AlertSeverity.CRITICAL,
    ClinicalSignificance.HIGH: AlertSeverity.HIGH,
    ClinicalSignificance.MODERATE: AlertSeverity.MEDIUM,
    ClinicalSignificance.LOW: AlertSeverity.LOW,
    ClinicalSignificance.NONE: AlertSeverity.LOW,
}


class AlertEmitter(Protocol):
    """Receives alerts. Delivery and notification-level dedup happen behind it."""

    async def emit(self, event: AlertEvent) -> None: ...


class AlertEmissionPolicy:
    """
    Suppresses repeats of an alert that is already standing.

    Emits when the new record alerts and either the previous record did not,
    or clinical significance went up.
    """

    def should_emit(self, previous: TrendRecord | None, current: TrendRecord) -> bool:
        if not current.alert_triggered:
            return False
        if previous is None or not previous.alert_triggered:
            return True
        return current.clinical_significance.rank > previous.clinical_significance.rank


def build_alert_event(record: TrendRecord) -> AlertEvent:
    severity = _SEVERITY_BY_SIGNIFICANCE[record.clinical_significance]
    return AlertEvent(
        patient_id=record.patient_id,
        workspace_id=record.workspace_id,
        metric_name=record.metric_name,
        direction=record.trend_direction,
        velocity=record.trend_velocity,
        mean=record.statistical_analysis.mean,
        interpretation=record.ai_interpretation,
        severity=severity,
        clinical_significance=record.clinical_significance,
        urgency_level=8 if severity == AlertSeverity.CRITICAL else 6,
        trend_id=record.trend_id,
    )


class AlertDispatcher:
    """Keeps a bounded history of emitted alerts and fans them out to handlers."""

    def __init__(
        self, handlers: list[AlertHandler] | None = None, history_size: int = 1000
    ) -> None:
        self.alert_history: deque[AlertEvent] = deque(maxlen=history_size)
        self.handlers: list[AlertHandler] = handlers or [self._log_alert_handler]
        self.logger = logger.bind(component="alert_dispatcher")

    def add_handler(self, handler: AlertHandler) -> None:
        self.handlers.append(handler)

    async def emit(self, event: AlertEvent) -> None:
        self.alert_history.append(event)

        for handler in self.handlers:
            try:
                outcome = handler(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                self.logger.error(
                    "alert_dispatch_failed",
                    error=str(e),
                    alert_title=event.title,
                    patient_id=event.patient_id,
                )

    def _log_alert_handler(self, event: AlertEvent) -> None:
        self.logger.warning(
            "trend_alert",
            title=event.title,
            severity=event.severity.value,
            patient_id=event.patient_id,
            workspace_id=event.workspace_id,
            direction=event.direction.value,
            velocity=round(event.velocity, 3),
            mean=round(event.mean, 2),
            urgency_level=event.urgency_level,
        )
