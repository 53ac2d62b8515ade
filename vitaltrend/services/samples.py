"""
Sample extraction from raw vital-sign records.

Vital-sign records are free-form mappings entered by different clients, so a
metric may appear under several field names (heartRate, heart_rate, hr, ...)
and blood pressure may arrive as "120/80" or {"systolic": 120, ...}.
"""

import math
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field

from vitaltrend.domain.models import MetricDefinition, MetricSample

logger = structlog.get_logger(__name__)


class VitalRecord(BaseModel):
    """One stored vital-signs entry."""

    model_config = ConfigDict(frozen=True)

    record_id: str
    patient_id: str
    created_at: datetime
    content: dict[str, Any] = Field(default_factory=dict)
    deleted_at: datetime | None = None


class VitalSignsRepository(Protocol):
    """Raw measurement storage."""

    async def fetch_vital_records(
        self, patient_id: str, since: datetime | None
    ) -> list[VitalRecord]: ...


class SampleExtractor(Protocol):
    """Returns ordered, deduplicated, non-deleted samples for one metric."""

    async def extract_samples(
        self,
        patient_id: str,
        metric_name: str,
        period_hours: float,
        now: datetime | None = None,
    ) -> list[MetricSample]: ...

    async def latest_sample_time(
        self, patient_id: str, metric_name: str, now: datetime | None = None
    ) -> datetime | None: ...


class VitalSignsSampleExtractor:
    """SampleExtractor over a VitalSignsRepository."""

    def __init__(
        self, repository: VitalSignsRepository, definitions: Iterable[MetricDefinition]
    ) -> None:
        self.repository = repository
        self._definitions = {d.metric_name: d for d in definitions}
        self.logger = logger.bind(component="sample_extractor")

    async def extract_samples(
        self,
        patient_id: str,
        metric_name: str,
        period_hours: float,
        now: datetime | None = None,
    ) -> list[MetricSample]:
        """Samples taken in the `period_hours` ending at `now` (wall time by default)."""
        until = now or datetime.now(UTC)
        since = until - timedelta(hours=period_hours)
        records = await self.repository.fetch_vital_records(patient_id, since)

        samples = self._samples(records, metric_name, until)
        samples.sort(key=lambda s: s.timestamp)
        self.logger.debug(
            "samples_extracted",
            patient_id=patient_id,
            metric_name=metric_name,
            records=len(records),
            samples=len(samples),
        )
        return samples

    async def latest_sample_time(
        self, patient_id: str, metric_name: str, now: datetime | None = None
    ) -> datetime | None:
        """Timestamp of the newest live record carrying a value for `metric_name`."""
        records = await self.repository.fetch_vital_records(patient_id, None)
        samples = self._samples(records, metric_name, now)
        return max((s.timestamp for s in samples), default=None)

    def _samples(
        self, records: Iterable[VitalRecord], metric_name: str, until: datetime | None
    ) -> list[MetricSample]:
        field_names = self.field_names(metric_name)
        seen: set[str] = set()
        samples: list[MetricSample] = []

        for record in records:
            if record.deleted_at is not None or record.record_id in seen:
                continue
            if until is not None and record.created_at > until:
                continue
            seen.add(record.record_id)

            value = self._read_value(record.content, metric_name, field_names)
            if value is None:
                continue
            samples.append(MetricSample(timestamp=record.created_at, value=value))
        return samples

    def field_names(self, metric_name: str) -> list[str]:
        definition = self._definitions.get(metric_name)
        names = [metric_name, *(definition.aliases if definition else [])]
        snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in metric_name).lstrip("_")
        names.extend([snake, metric_name.lower()])
        return list(dict.fromkeys(names))

    def _read_value(
        self, content: Mapping[str, Any], metric_name: str, field_names: list[str]
    ) -> float | None:
        for name in field_names:
            value = _to_number(content.get(name))
            if value is not None:
                return value

        lowered = metric_name.lower()
        if "systolic" in lowered:
            return _blood_pressure_part(content, "systolic")
        if "diastolic" in lowered:
            return _blood_pressure_part(content, "diastolic")
        return None


def _blood_pressure_part(content: Mapping[str, Any], part: str) -> float | None:
    raw = content.get("blood_pressure", content.get("bloodPressure"))

    if isinstance(raw, str):
        pieces = raw.split("/")
        if len(pieces) != 2:
            return None
        return _to_number(pieces[0] if part == "systolic" else pieces[1])

    if isinstance(raw, Mapping):
        short = "sbp" if part == "systolic" else "dbp"
        for key in (part, f"{part}_bp", short):
            value = _to_number(raw.get(key))
            if value is not None:
                return value
    return None


def _to_number(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None
