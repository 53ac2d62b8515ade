"""
In-process implementations of the pipeline's storage collaborators.

Suitable for tests, the CLI and single-process deployments. The trend store
serializes writes per (patient_id, metric_name), which is what makes its
conditional upsert atomic.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager
from datetime import datetime

import structlog

from vitaltrend.domain.freshness import decide_action
from vitaltrend.domain.models import (
    PatientProfile,
    ReconcileAction,
    TrendRecord,
    UpsertResult,
)
from vitaltrend.services.samples import VitalRecord

logger = structlog.get_logger(__name__)


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: defaultdict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class InMemoryVitalSignsRepository:
    """Vital-sign records kept in a list per patient."""

    def __init__(self, records: list[VitalRecord] | None = None) -> None:
        self._records: defaultdict[str, list[VitalRecord]] = defaultdict(list)
        for record in records or []:
            self.add(record)

    def add(self, record: VitalRecord) -> None:
        self._records[record.patient_id].append(record)

    async def fetch_vital_records(
        self, patient_id: str, since: datetime | None
    ) -> list[VitalRecord]:
        records = self._records.get(patient_id, [])
        if since is not None:
            records = [r for r in records if r.created_at >= since]
        return sorted(records, key=lambda r: r.created_at)


class InMemoryPatientDirectory:
    """Patient lookup backed by a dict."""

    def __init__(self, patients: list[PatientProfile] | None = None) -> None:
        self._patients = {p.patient_id: p for p in patients or []}

    def add(self, patient: PatientProfile) -> None:
        self._patients[patient.patient_id] = patient

    async def get_patient(self, patient_id: str) -> PatientProfile | None:
        return self._patients.get(patient_id)


class InMemoryTrendStore:
    """TrendStore with per-key serialized conditional upserts."""

    def __init__(self) -> None:
        self._rows: defaultdict[tuple[str, str], list[TrendRecord]] = defaultdict(list)
        self._locks = KeyedLock()
        self.logger = logger.bind(component="in_memory_trend_store")

    async def find_active(
        self, patient_id: str, metric_name: str, since: datetime
    ) -> TrendRecord | None:
        return self._newest_active(patient_id, metric_name, since)

    async def conditional_upsert(
        self, record: TrendRecord, *, active_since: datetime, update_existing: bool
    ) -> UpsertResult:
        key = (record.patient_id, record.metric_name)
        async with self._locks.hold(key):
            existing = self._newest_active(record.patient_id, record.metric_name, active_since)
            action = decide_action(existing, record.latest_sample_at, update_existing)

            if action == ReconcileAction.SKIP:
                return UpsertResult(action=action, record=existing, previous=existing)

            if existing is None:
                self._rows[key].append(record)
                return UpsertResult(action=ReconcileAction.CREATE, record=record)

            updated = record.model_copy(
                update={"trend_id": existing.trend_id, "created_at": existing.created_at}
            )
            rows = self._rows[key]
            rows[rows.index(existing)] = updated
            return UpsertResult(action=action, record=updated, previous=existing)

    async def list_trends(
        self, patient_id: str, limit: int = 10, metric_name: str | None = None
    ) -> list[TrendRecord]:
        rows = [
            row
            for (pid, name), records in self._rows.items()
            if pid == patient_id and (metric_name is None or name == metric_name)
            for row in records
        ]
        rows.sort(key=lambda r: r.calculated_at, reverse=True)
        return rows[:limit]

    def count(self, patient_id: str, metric_name: str) -> int:
        return len(self._rows.get((patient_id, metric_name), []))

    def _newest_active(
        self, patient_id: str, metric_name: str, since: datetime
    ) -> TrendRecord | None:
        active = [
            r for r in self._rows.get((patient_id, metric_name), []) if r.calculated_at >= since
        ]
        return max(active, key=lambda r: r.calculated_at, default=None)
