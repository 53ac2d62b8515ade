"""
Create/update/skip decision for a metric's trend record.

The latest sample timestamp acts as a logical clock: a trend is only
recomputed when a sample newer than its calculated_at exists.
"""

from datetime import datetime

from vitaltrend.domain.models import ReconcileAction, TrendRecord


def decide_action(
    existing: TrendRecord | None,
    latest_sample_at: datetime | None,
    update_existing: bool,
) -> ReconcileAction:
    if existing is None:
        return ReconcileAction.CREATE
    if not update_existing or latest_sample_at is None:
        return ReconcileAction.SKIP
    if latest_sample_at > existing.calculated_at:
        return ReconcileAction.UPDATE
    return ReconcileAction.SKIP
