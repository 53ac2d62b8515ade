"""
Tests for the HTTP surface using FastAPI's TestClient.

Covers:
- POST /api/ai/trends/auto-create: batch response, validation and missing patients
- GET /api/ai/trends: listing with filters
- POST /api/ai/trends: on-demand calculation and insufficient data
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient

from vitaltrend.adapters.memory import (
    InMemoryPatientDirectory,
    InMemoryTrendStore,
    InMemoryVitalSignsRepository,
)
from vitaltrend.api import create_app
from vitaltrend.config import AppConfig
from vitaltrend.domain.models import PatientProfile
from vitaltrend.services.orchestrator import build_orchestrator
from vitaltrend.services.samples import VitalRecord

PATIENT = "patient-1"


@pytest.fixture
def client(patient: PatientProfile, emitter: Any) -> TestClient:
    start = datetime.now(UTC)
    records = [
        VitalRecord(
            record_id=f"vitals-{i}",
            patient_id=PATIENT,
            created_at=start - timedelta(hours=4 - i),
            content={"heartRate": 70 + 10 * i, "respiratory_rate": 16},
        )
        for i in range(4)
    ]
    config = AppConfig()
    orchestrator = build_orchestrator(
        config,
        InMemoryVitalSignsRepository(records),
        InMemoryPatientDirectory([patient]),
        InMemoryTrendStore(),
        emitter=emitter,
    )
    return TestClient(create_app(orchestrator=orchestrator, config=config))


class TestAutoCreate:
    def test_creates_trends(self, client: TestClient, emitter: Any) -> None:
        response = client.post("/api/ai/trends/auto-create", json={"patient_id": PATIENT})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["created"] == 2
        assert body["updated"] == 0
        assert body["failed"] == 0
        assert body["created_metrics"] == ["heartRate", "respiratoryRate"]
        assert body["failed_metrics"] == []
        assert len(emitter.events) == 1

    def test_second_call_skips(self, client: TestClient) -> None:
        client.post("/api/ai/trends/auto-create", json={"patient_id": PATIENT})

        body = client.post(
            "/api/ai/trends/auto-create", json={"patient_id": PATIENT, "update_existing": True}
        ).json()

        assert body["created"] == 0
        assert body["updated"] == 0
        assert {"metric": "heartRate", "reason": "up_to_date"} in body["skipped_metrics"]

    def test_missing_patient_id(self, client: TestClient) -> None:
        response = client.post("/api/ai/trends/auto-create", json={"period_hours": 24})

        assert response.status_code == 400
        assert response.json() == {"error": "patient_id required"}

    def test_unknown_patient(self, client: TestClient) -> None:
        response = client.post("/api/ai/trends/auto-create", json={"patient_id": "nobody"})

        assert response.status_code == 404
        assert response.json() == {"error": "Patient not found: nobody"}

    @pytest.mark.parametrize("payload", [{"patient_id": PATIENT, "period_hours": "soon"}, {}])
    def test_invalid_body(self, client: TestClient, payload: dict[str, Any]) -> None:
        response = client.post("/api/ai/trends/auto-create", json=payload)

        assert response.status_code == 400
        assert "error" in response.json()

    def test_period_too_long(self, client: TestClient) -> None:
        response = client.post(
            "/api/ai/trends/auto-create", json={"patient_id": PATIENT, "period_hours": 10000}
        )

        assert response.status_code == 400
        assert "period_hours" in response.json()["error"]


class TestListTrends:
    def test_lists_created_trends(self, client: TestClient) -> None:
        client.post("/api/ai/trends/auto-create", json={"patient_id": PATIENT})

        body = client.get("/api/ai/trends", params={"patient_id": PATIENT}).json()

        assert body["total"] == 2
        assert {t["metric_name"] for t in body["trends"]} == {"heartRate", "respiratoryRate"}

    def test_filter_and_limit(self, client: TestClient) -> None:
        client.post("/api/ai/trends/auto-create", json={"patient_id": PATIENT})

        filtered = client.get(
            "/api/ai/trends", params={"patient_id": PATIENT, "metric_name": "heartRate"}
        ).json()
        limited = client.get("/api/ai/trends", params={"patient_id": PATIENT, "limit": 1}).json()

        assert filtered["total"] == 1
        assert filtered["trends"][0]["trend_direction"] == "increasing"
        assert filtered["trends"][0]["alert_triggered"] is True
        assert limited["total"] == 1

    def test_requires_patient_id(self, client: TestClient) -> None:
        response = client.get("/api/ai/trends")

        assert response.status_code == 400
        assert "error" in response.json()


class TestCalculateTrend:
    def test_calculates_one_metric(self, client: TestClient) -> None:
        response = client.post(
            "/api/ai/trends",
            json={"patient_id": PATIENT, "metric_name": "respiratoryRate", "period_hours": 24},
        )

        assert response.status_code == 200
        trend = response.json()["trend"]
        assert trend["metric_name"] == "respiratoryRate"
        assert trend["trend_direction"] == "stable"
        assert trend["data_point_count"] == 4

    def test_insufficient_data(self, client: TestClient) -> None:
        response = client.post(
            "/api/ai/trends", json={"patient_id": PATIENT, "metric_name": "temperature"}
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Insufficient data for trend analysis"
        assert body["message"] == "At least 2 data points required for temperature, found 0"

    def test_unknown_metric(self, client: TestClient) -> None:
        response = client.post(
            "/api/ai/trends", json={"patient_id": PATIENT, "metric_name": "bloodGlucose"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Unknown metric: bloodGlucose"}
