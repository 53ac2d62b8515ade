"""
Trend reconciliation: create, update in place, or skip a metric's trend record.

The write is a single conditional upsert on the store, which re-checks the
freshness decision against whatever row exists at commit time. Two triggers
racing on the same (patient_id, metric_name) therefore produce one row: the
loser sees the winner's calculated_at and skips.
"""

from datetime import datetime, timedelta
from typing import Protocol

import structlog

from vitaltrend.domain.errors import PersistenceError
from vitaltrend.domain.freshness import decide_action
from vitaltrend.domain.models import ReconcileAction, TrendRecord, UpsertResult

logger = structlog.get_logger(__name__)


class TrendStore(Protocol):
    """Persistence for trend records. Implementations must make upserts atomic per key."""

    async def find_active(
        self, patient_id: str, metric_name: str, since: datetime
    ) -> TrendRecord | None:
        """Newest record for the key calculated at or after `since`."""
        ...

    async def conditional_upsert(
        self, record: TrendRecord, *, active_since: datetime, update_existing: bool
    ) -> UpsertResult:
        """Atomically apply decide_action against the current row and write."""
        ...

    async def list_trends(
        self, patient_id: str, limit: int = 10, metric_name: str | None = None
    ) -> list[TrendRecord]: ...


class TrendReconciler:
    """Owns every write of a TrendRecord."""

    def __init__(self, store: TrendStore) -> None:
        self.store = store
        self.logger = logger.bind(component="trend_reconciler")

    async def existing_trend(
        self, patient_id: str, metric_name: str, now: datetime, period_hours: float
    ) -> TrendRecord | None:
        try:
            return await self.store.find_active(
                patient_id, metric_name, now - timedelta(hours=period_hours)
            )
        except Exception as e:
            raise PersistenceError(f"Failed to read trend for {metric_name}: {e}") from e

    def plan(
        self,
        existing: TrendRecord | None,
        latest_sample_at: datetime | None,
        update_existing: bool,
    ) -> ReconcileAction:
        return decide_action(existing, latest_sample_at, update_existing)

    async def commit(
        self, record: TrendRecord, *, period_hours: float, update_existing: bool
    ) -> UpsertResult:
        active_since = record.calculated_at - timedelta(hours=period_hours)
        try:
            result = await self.store.conditional_upsert(
                record, active_since=active_since, update_existing=update_existing
            )
        except Exception as e:
            raise PersistenceError(f"Failed to save trend for {record.metric_name}: {e}") from e

        self.logger.info(
            "trend_reconciled",
            action=result.action.value,
            patient_id=record.patient_id,
            metric_name=record.metric_name,
            direction=record.trend_direction.value,
            alert_triggered=record.alert_triggered,
        )
        return result

    async def list_trends(
        self, patient_id: str, limit: int = 10, metric_name: str | None = None
    ) -> list[TrendRecord]:
        try:
            return await self.store.list_trends(patient_id, limit=limit, metric_name=metric_name)
        except Exception as e:
            raise PersistenceError(f"Failed to list trends for {patient_id}: {e}") from e
