"""Shared fixtures for the trend pipeline tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from vitaltrend.config import DEFAULT_TRACKED_METRICS
from vitaltrend.domain.models import (
    AlertEvent,
    ClinicalSignificance,
    MetricDefinition,
    MetricSample,
    PatientProfile,
    StatisticalAnalysis,
    TrendDirection,
    TrendRecord,
)


class RecordingEmitter:
    """AlertEmitter that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[AlertEvent] = []

    async def emit(self, event: AlertEvent) -> None:
        self.events.append(event)


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def metrics() -> list[MetricDefinition]:
    return list(DEFAULT_TRACKED_METRICS)


@pytest.fixture
def definitions(metrics: list[MetricDefinition]) -> dict[str, MetricDefinition]:
    return {m.metric_name: m for m in metrics}


@pytest.fixture
def patient() -> PatientProfile:
    return PatientProfile(
        patient_id="patient-1", workspace_id="ward-7", name="Test Patient", age=67, gender="F"
    )


@pytest.fixture
def hourly_samples(now: datetime) -> Callable[[list[float]], list[MetricSample]]:
    """Build one sample per hour, the last one at `now`."""

    def build(values: list[float]) -> list[MetricSample]:
        start = now - timedelta(hours=len(values) - 1)
        return [
            MetricSample(timestamp=start + timedelta(hours=i), value=v)
            for i, v in enumerate(values)
        ]

    return build


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def make_record(now: datetime) -> Callable[..., TrendRecord]:
    """Build a heart-rate TrendRecord; keyword arguments override any field."""

    def build(**overrides: Any) -> TrendRecord:
        samples = [
            MetricSample(timestamp=now - timedelta(hours=3 - i), value=70.0 + 10 * i)
            for i in range(4)
        ]
        fields: dict[str, Any] = {
            "patient_id": "patient-1",
            "workspace_id": "ward-7",
            "metric_name": "heartRate",
            "data_points": samples,
            "trend_direction": TrendDirection.INCREASING,
            "trend_velocity": 10.0,
            "statistical_analysis": StatisticalAnalysis(
                mean=85.0, slope=10.0, stddev=11.18, min=70.0, max=100.0, count=4, r_squared=1.0
            ),
            "ai_interpretation": "Heart rate rising.",
            "clinical_significance": ClinicalSignificance.HIGH,
            "alert_triggered": True,
            "period_start": now - timedelta(hours=24),
            "period_end": now,
            "data_point_count": 4,
            "latest_sample_at": now,
            "calculated_at": now,
        }
        fields.update(overrides)
        return TrendRecord(**fields)

    return build
