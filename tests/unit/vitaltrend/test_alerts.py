"""
Tests for alert emission.

Covers:
- AlertEmissionPolicy: first alert, continuing alert, escalation, resolution
- build_alert_event: severity and urgency mapping
- AlertDispatcher: sync and async handlers, failing handlers, bounded history
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from vitaltrend.domain.models import (
    AlertEvent,
    AlertSeverity,
    ClinicalSignificance,
    TrendRecord,
)
from vitaltrend.services.alerts import AlertDispatcher, AlertEmissionPolicy, build_alert_event

RecordFactory = Callable[..., TrendRecord]


class TestAlertEmissionPolicy:
    @pytest.fixture
    def policy(self) -> AlertEmissionPolicy:
        return AlertEmissionPolicy()

    def test_first_alert_is_emitted(
        self, policy: AlertEmissionPolicy, make_record: RecordFactory
    ) -> None:
        assert policy.should_emit(None, make_record())

    def test_non_alerting_record_is_never_emitted(
        self, policy: AlertEmissionPolicy, make_record: RecordFactory
    ) -> None:
        quiet = make_record(alert_triggered=False, clinical_significance=ClinicalSignificance.LOW)

        assert not policy.should_emit(None, quiet)

    def test_transition_into_alerting_is_emitted(
        self, policy: AlertEmissionPolicy, make_record: RecordFactory
    ) -> None:
        previous = make_record(
            alert_triggered=False, clinical_significance=ClinicalSignificance.MODERATE
        )

        assert policy.should_emit(previous, make_record())

    def test_continuing_alert_is_suppressed(
        self, policy: AlertEmissionPolicy, make_record: RecordFactory
    ) -> None:
        assert not policy.should_emit(make_record(), make_record())

    def test_escalation_is_emitted(
        self, policy: AlertEmissionPolicy, make_record: RecordFactory
    ) -> None:
        critical = make_record(clinical_significance=ClinicalSignificance.CRITICAL)

        assert policy.should_emit(make_record(), critical)

    def test_de_escalation_is_suppressed(
        self, policy: AlertEmissionPolicy, make_record: RecordFactory
    ) -> None:
        critical = make_record(clinical_significance=ClinicalSignificance.CRITICAL)

        assert not policy.should_emit(critical, make_record())


class TestBuildAlertEvent:
    @pytest.mark.parametrize(
        "significance,severity,urgency",
        [
            (ClinicalSignificance.CRITICAL, AlertSeverity.CRITICAL, 8),
            (ClinicalSignificance.HIGH, AlertSeverity.HIGH, 6),
        ],
    )
    def test_severity_and_urgency(
        self,
        make_record: RecordFactory,
        significance: ClinicalSignificance,
        severity: AlertSeverity,
        urgency: int,
    ) -> None:
        record = make_record(clinical_significance=significance)

        event = build_alert_event(record)

        assert event.severity == severity
        assert event.urgency_level == urgency
        assert event.trend_id == record.trend_id

    def test_payload(self, make_record: RecordFactory) -> None:
        event = build_alert_event(make_record())

        assert event.title == "Worsening Trend: heartRate"
        assert event.patient_id == "patient-1"
        assert event.workspace_id == "ward-7"
        assert event.velocity == 10.0
        assert event.mean == 85.0
        assert event.interpretation == "Heart rate rising."


class TestAlertDispatcher:
    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self, make_record: RecordFactory) -> None:
        received: list[str] = []

        def sync_handler(event: AlertEvent) -> None:
            received.append(f"sync:{event.metric_name}")

        async def async_handler(event: AlertEvent) -> None:
            received.append(f"async:{event.metric_name}")

        dispatcher = AlertDispatcher(handlers=[sync_handler, async_handler])

        await dispatcher.emit(build_alert_event(make_record()))

        assert received == ["sync:heartRate", "async:heartRate"]
        assert len(dispatcher.alert_history) == 1

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self, make_record: RecordFactory) -> None:
        received: list[AlertEvent] = []

        def broken(event: AlertEvent) -> None:
            raise RuntimeError("pager offline")

        dispatcher = AlertDispatcher(handlers=[broken])
        dispatcher.add_handler(received.append)

        await dispatcher.emit(build_alert_event(make_record()))

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_default_handler_logs(self, make_record: RecordFactory) -> None:
        dispatcher = AlertDispatcher()

        await dispatcher.emit(build_alert_event(make_record()))

        assert len(dispatcher.handlers) == 1
        assert len(dispatcher.alert_history) == 1

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, make_record: RecordFactory) -> None:
        dispatcher = AlertDispatcher(handlers=[lambda event: None], history_size=3)

        for _ in range(5):
            await dispatcher.emit(build_alert_event(make_record()))

        assert len(dispatcher.alert_history) == 3
