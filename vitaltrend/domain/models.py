"""
Domain models for vital-sign trend analysis.

These models represent the core clinical concepts and are framework-agnostic.
They use Pydantic for validation; everything that crosses a component
boundary is immutable.
"""

import uuid
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TrendDirection(str, Enum):
    """Discrete direction of a metric over a trend window."""

    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    VOLATILE = "volatile"
    INSUFFICIENT_DATA = "insufficient_data"


class ClinicalSignificance(str, Enum):
    """Coarse severity attached to a trend, ordered from none to critical."""

    NONE = "none"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SIGNIFICANCE_ORDER.index(self)


_SIGNIFICANCE_ORDER = [
    ClinicalSignificance.NONE,
    ClinicalSignificance.LOW,
    ClinicalSignificance.MODERATE,
    ClinicalSignificance.HIGH,
    ClinicalSignificance.CRITICAL,
]


class AlertSeverity(str, Enum):
    """Severity levels understood by the notification layer."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReconcileAction(str, Enum):
    """What the reconciler decided to do with a metric's trend record."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


class MetricSample(BaseModel):
    """A single numeric measurement of one metric."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    value: float = Field(allow_inf_nan=False)


class MetricThresholds(BaseModel):
    """Clinically meaningful limits for one metric.

    Slopes are expressed in metric units per hour.
    """

    model_config = ConfigDict(frozen=True)

    direction_slope: float = Field(gt=0.0, description="|slope| marking a directional trend")
    volatility_cv: float = Field(gt=0.0, description="Coefficient of variation marking noise")
    urgent_slope: float = Field(gt=0.0, description="|slope| that is alert-worthy when adverse")
    normal_low: float | None = None
    normal_high: float | None = None
    critical_low: float | None = None
    critical_high: float | None = None
    adverse_direction: Literal["increasing", "decreasing", "both"] = "both"

    @model_validator(mode="after")
    def bands_are_ordered(self) -> "MetricThresholds":
        if self.urgent_slope < self.direction_slope:
            raise ValueError("urgent_slope must not be below direction_slope")
        for low, high, name in (
            (self.normal_low, self.normal_high, "normal"),
            (self.critical_low, self.critical_high, "critical"),
        ):
            if low is not None and high is not None and low > high:
                raise ValueError(f"{name} band is inverted: {low} > {high}")
        return self

    def is_adverse(self, direction: TrendDirection) -> bool:
        if direction not in (TrendDirection.INCREASING, TrendDirection.DECREASING):
            return False
        return self.adverse_direction in ("both", direction.value)

    def outside_critical(self, value: float) -> bool:
        return (self.critical_low is not None and value < self.critical_low) or (
            self.critical_high is not None and value > self.critical_high
        )

    def outside_normal(self, value: float) -> bool:
        return (self.normal_low is not None and value < self.normal_low) or (
            self.normal_high is not None and value > self.normal_high
        )


class MetricDefinition(BaseModel):
    """A tracked metric: its name, unit, source field aliases and thresholds."""

    model_config = ConfigDict(frozen=True)

    metric_name: str = Field(min_length=1)
    display_name: str = ""
    unit: str = ""
    aliases: list[str] = Field(default_factory=list)
    thresholds: MetricThresholds

    @property
    def label(self) -> str:
        return self.display_name or self.metric_name


class StatisticalAnalysis(BaseModel):
    """Descriptive and regression statistics over one sample sequence."""

    model_config = ConfigDict(frozen=True)

    mean: float
    slope: float = Field(description="OLS slope of value vs. elapsed hours")
    stddev: float = Field(ge=0.0, description="Population standard deviation")
    min: float
    max: float
    count: int = Field(ge=0)
    r_squared: float | None = Field(default=None, ge=0.0, le=1.0)

    @property
    def is_defined(self) -> bool:
        return self.count >= 2

    @property
    def coefficient_of_variation(self) -> float:
        if self.mean == 0:
            return 0.0
        return self.stddev / abs(self.mean)


class TrendWindow(BaseModel):
    """The bounded interval a trend was computed over."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    metric_name: str
    period_start: datetime
    period_end: datetime

    @classmethod
    def ending_at(
        cls, patient_id: str, metric_name: str, period_end: datetime, period_hours: float
    ) -> "TrendWindow":
        return cls(
            patient_id=patient_id,
            metric_name=metric_name,
            period_start=period_end - timedelta(hours=period_hours),
            period_end=period_end,
        )


class PatientProfile(BaseModel):
    """Patient identity and demographics used as narrative context."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    workspace_id: str
    name: str | None = None
    age: int | None = None
    gender: str | None = None


class Interpretation(BaseModel):
    """Outcome of the interpretation and alert policy for one metric."""

    model_config = ConfigDict(frozen=True)

    ai_interpretation: str = Field(min_length=1)
    clinical_significance: ClinicalSignificance
    should_alert: bool
    narrative_available: bool = False


class TrendRecord(BaseModel):
    """Persisted conclusion about one metric of one patient."""

    model_config = ConfigDict(frozen=True)

    trend_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    patient_id: str
    workspace_id: str
    metric_type: str = "vital_signs"
    metric_name: str
    data_points: list[MetricSample]
    trend_direction: TrendDirection
    trend_velocity: float
    statistical_analysis: StatisticalAnalysis
    ai_interpretation: str
    clinical_significance: ClinicalSignificance
    alert_triggered: bool
    period_start: datetime
    period_end: datetime
    data_point_count: int = Field(ge=0)
    latest_sample_at: datetime
    calculated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def window(self) -> TrendWindow:
        return TrendWindow(
            patient_id=self.patient_id,
            metric_name=self.metric_name,
            period_start=self.period_start,
            period_end=self.period_end,
        )


class AlertEvent(BaseModel):
    """Structured alert handed to the notification layer."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    workspace_id: str
    metric_name: str
    direction: TrendDirection
    velocity: float
    mean: float
    interpretation: str
    severity: AlertSeverity
    clinical_significance: ClinicalSignificance
    urgency_level: int = Field(ge=1, le=10)
    trend_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def title(self) -> str:
        return f"Worsening Trend: {self.metric_name}"


class UpsertResult(BaseModel):
    """What a conditional upsert actually did."""

    model_config = ConfigDict(frozen=True)

    action: ReconcileAction
    record: TrendRecord | None
    previous: TrendRecord | None = None


class FailedMetric(BaseModel):
    metric: str
    error: str


class SkippedMetric(BaseModel):
    metric: str
    reason: Literal["up_to_date", "insufficient_data"]


class BatchResult(BaseModel):
    """Per-metric outcome of one orchestrator pass."""

    patient_id: str
    created_metrics: list[str] = Field(default_factory=list)
    updated_metrics: list[str] = Field(default_factory=list)
    failed_metrics: list[FailedMetric] = Field(default_factory=list)
    skipped_metrics: list[SkippedMetric] = Field(default_factory=list)
    alerts_emitted: int = 0

    @property
    def created(self) -> int:
        return len(self.created_metrics)

    @property
    def updated(self) -> int:
        return len(self.updated_metrics)

    @property
    def failed(self) -> int:
        return len(self.failed_metrics)

    def to_response(self) -> dict[str, Any]:
        response: dict[str, Any] = {
            "success": True,
            "created": self.created,
            "updated": self.updated,
            "failed": self.failed,
            "skipped": len(self.skipped_metrics),
            "created_metrics": list(self.created_metrics),
            "updated_metrics": list(self.updated_metrics),
            "failed_metrics": [f.model_dump() for f in self.failed_metrics],
            "skipped_metrics": [s.model_dump() for s in self.skipped_metrics],
        }
        nothing_done = not (self.created_metrics or self.updated_metrics or self.failed_metrics)
        if nothing_done and all(s.reason == "up_to_date" for s in self.skipped_metrics):
            response["message"] = "All trends already exist and are up to date"
        return response
