"""
Clinical interpretation of a trend using rules plus an optional Pydantic AI narrative.

Key architectural decisions:
- The alert decision and clinical significance come from deterministic rules
- The AI narrative only annotates; its own alert suggestion is logged, never used
- Bounded timeout and a circuit breaker around the narrative call
- Templated fallback text whenever the narrative is unavailable
"""

import asyncio
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol, cast

import structlog
from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.models import Model

from vitaltrend.domain.errors import CollaboratorUnavailable
from vitaltrend.domain.models import (
    ClinicalSignificance,
    Interpretation,
    MetricDefinition,
    MetricSample,
    MetricThresholds,
    PatientProfile,
    StatisticalAnalysis,
    TrendDirection,
)
from vitaltrend.services.result import Result

logger = structlog.get_logger(__name__)

DIRECTION_LABELS = {
    TrendDirection.INCREASING: "Increasing",
    TrendDirection.DECREASING: "Decreasing",
    TrendDirection.STABLE: "Stable",
    TrendDirection.VOLATILE: "Volatile",
    TrendDirection.INSUFFICIENT_DATA: "Insufficient data",
}

ALERTING_SIGNIFICANCE = frozenset({ClinicalSignificance.HIGH, ClinicalSignificance.CRITICAL})


class TrendNarrative(BaseModel):
    """Structured narrative returned by the language model."""

    interpretation: str = Field(min_length=1, max_length=1200)
    significance_note: str = Field(default="", max_length=300)
    suggested_alert: bool = Field(
        default=False, description="Model's opinion only; the alert rules decide"
    )


class NarrativeRequest(BaseModel):
    """Everything the narrative collaborator may look at."""

    metric_type: str = "vital_signs"
    metric: MetricDefinition
    stats: StatisticalAnalysis
    direction: TrendDirection
    samples: list[MetricSample]
    patient: PatientProfile | None = None


class NarrativeGenerator(Protocol):
    """Produces a human-readable explanation of a trend. May be slow or fail."""

    async def generate(self, request: NarrativeRequest) -> TrendNarrative: ...


class AlertRules:
    """Deterministic significance and alert rules over per-metric bands."""

    def assess(
        self,
        metric: MetricDefinition | None,
        stats: StatisticalAnalysis,
        direction: TrendDirection,
        latest_value: float | None,
    ) -> ClinicalSignificance:
        if direction == TrendDirection.INSUFFICIENT_DATA:
            return ClinicalSignificance.NONE

        if metric is None:
            # no bands for untracked metrics: only direction speaks
            if direction in (TrendDirection.INCREASING, TrendDirection.DECREASING):
                return ClinicalSignificance.LOW
            return ClinicalSignificance.NONE

        t = metric.thresholds
        adverse = t.is_adverse(direction)

        if t.outside_critical(stats.mean):
            return ClinicalSignificance.CRITICAL
        if latest_value is not None and t.outside_critical(latest_value):
            return ClinicalSignificance.HIGH
        if adverse and abs(stats.slope) >= t.urgent_slope:
            return ClinicalSignificance.HIGH
        if t.outside_normal(stats.mean):
            return ClinicalSignificance.MODERATE
        if adverse or direction == TrendDirection.VOLATILE:
            return ClinicalSignificance.LOW
        return ClinicalSignificance.NONE

    @staticmethod
    def should_alert(significance: ClinicalSignificance) -> bool:
        return significance in ALERTING_SIGNIFICANCE


class CircuitBreakerState:
    """
    Circuit breaker for narrative calls.

    One instance guards the provider for the whole process, so every metric of
    every batch shares it. While half-open only a single trial call is let
    through; another is allowed only if that trial never reports back within
    `recovery_timeout`.
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time: datetime | None = None
        self.trial_started_at: datetime | None = None
        self.state = "closed"  # closed, open, half-open

    def can_execute(self) -> bool:
        if self.state == "closed":
            return True

        now = datetime.now(UTC)
        if self.state == "half-open":
            if self.trial_started_at and not self._elapsed(self.trial_started_at, now):
                return False
        elif not self.last_failure_time or not self._elapsed(self.last_failure_time, now):
            return False

        self.state = "half-open"
        self.trial_started_at = now
        return True

    def record_success(self) -> None:
        self.failure_count = 0
        self.trial_started_at = None
        self.state = "closed"

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = datetime.now(UTC)
        self.trial_started_at = None

        if self.state == "half-open" or self.failure_count >= self.failure_threshold:
            self.state = "open"

    def _elapsed(self, since: datetime, now: datetime) -> bool:
        return (now - since).total_seconds() >= self.recovery_timeout


class PydanticAINarrativeGenerator:
    """
    Narrative collaborator backed by a Pydantic AI agent with typed output.

    Design principles:
    - Single responsibility: explains the trend, does not decide on alerts
    - Context-aware: patient demographics, statistics and recent samples
    """

    def __init__(
        self,
        model: str | Model = "openai:gpt-4o-mini",
        temperature: float = 0.3,
        max_tokens: int = 500,
        retries: int = 1,
    ) -> None:
        self.logger = logger.bind(component="narrative_generator")
        self.agent = Agent(
            model,
            output_type=TrendNarrative,
            system_prompt=self._build_system_prompt(),
            model_settings={"temperature": temperature, "max_tokens": max_tokens},
            retries=retries,
        )

    def _build_system_prompt(self) -> str:
        return """You are an experienced acute-care physician reviewing vital-sign trends.

Explain the trend you are given in 2-3 plain sentences for the care team.
Work from the numbers provided even when patient details are missing.

Key principles:
1. Describe what the values are doing and whether that is clinically concerning
2. Mention the rate of change when it matters
3. Do not invent measurements or history you were not given
4. Keep significance_note to one short phrase"""

    async def generate(self, request: NarrativeRequest) -> TrendNarrative:
        result = await self.agent.run(self._build_user_prompt(request))
        narrative = cast(TrendNarrative, cast(Any, result).output)
        self.logger.debug(
            "narrative_generated",
            metric_name=request.metric.metric_name,
            length=len(narrative.interpretation),
        )
        return narrative

    def _build_user_prompt(self, request: NarrativeRequest) -> str:
        metric = request.metric
        stats = request.stats
        unit = metric.unit

        if request.patient is not None:
            patient = request.patient
            patient_info = (
                f"- Name: {patient.name or 'Unknown'}\n"
                f"- Age: {patient.age if patient.age is not None else 'Unknown'}\n"
                f"- Gender: {patient.gender or 'Unknown'}"
            )
        else:
            patient_info = "- General patient profile (no details available)"

        recent = request.samples[-10:]
        sample_lines = [
            f"- {s.timestamp.strftime('%Y-%m-%d %H:%M')}: {s.value}{unit}" for s in recent
        ]
        r_squared = f"\n- R²: {stats.r_squared:.3f}" if stats.r_squared is not None else ""

        return f"""Interpret this patient metric trend.

PATIENT:
{patient_info}

METRIC: {metric.label} ({request.metric_type})
DIRECTION: {DIRECTION_LABELS[request.direction]}

STATISTICS:
- Mean: {stats.mean:.2f}{unit}
- Standard deviation: {stats.stddev:.2f}
- Minimum: {stats.min}
- Maximum: {stats.max}
- Slope: {stats.slope:.4f}{unit} per hour{r_squared}

SAMPLES ({len(request.samples)} total, {len(recent)} most recent):
{chr(10).join(sample_lines)}"""


class InterpretationPolicy:
    """
    Combines rule-based significance with an optional narrative.

    The narrative call is bounded by `timeout_seconds`; timeouts, errors and an
    open circuit all degrade to a templated interpretation.
    """

    def __init__(
        self,
        definitions: Iterable[MetricDefinition],
        generator: NarrativeGenerator | None = None,
        rules: AlertRules | None = None,
        timeout_seconds: float = 10.0,
        circuit_breaker: CircuitBreakerState | None = None,
    ) -> None:
        self._definitions = {d.metric_name: d for d in definitions}
        self.generator = generator
        self.rules = rules or AlertRules()
        self.timeout_seconds = timeout_seconds
        self.circuit_breaker = circuit_breaker or CircuitBreakerState()
        self.logger = logger.bind(component="interpretation_policy")

    async def evaluate(
        self,
        metric_name: str,
        stats: StatisticalAnalysis,
        direction: TrendDirection,
        samples: Sequence[MetricSample],
        patient: PatientProfile | None = None,
        metric_type: str = "vital_signs",
    ) -> Interpretation:
        metric = self._definitions.get(metric_name)
        ordered = sorted(samples, key=lambda s: s.timestamp)

        if direction == TrendDirection.INSUFFICIENT_DATA:
            return Interpretation(
                ai_interpretation=self._insufficient_text(metric_name, stats, len(ordered)),
                clinical_significance=ClinicalSignificance.NONE,
                should_alert=False,
            )

        latest_value = ordered[-1].value if ordered else None
        significance = self.rules.assess(metric, stats, direction, latest_value)
        should_alert = self.rules.should_alert(significance)

        request = NarrativeRequest(
            metric_type=metric_type,
            metric=metric or _untracked(metric_name),
            stats=stats,
            direction=direction,
            samples=ordered,
            patient=patient,
        )
        outcome = await self._request_narrative(request)

        if outcome.is_err():
            self.logger.warning(
                "narrative_unavailable",
                metric_name=metric_name,
                error=str(outcome.unwrap_err()),
            )
            return Interpretation(
                ai_interpretation=self.fallback_text(request),
                clinical_significance=significance,
                should_alert=should_alert,
            )

        narrative = outcome.unwrap()
        if narrative.suggested_alert != should_alert:
            self.logger.info(
                "narrative_alert_disagreement",
                metric_name=metric_name,
                suggested_alert=narrative.suggested_alert,
                rule_alert=should_alert,
            )

        return Interpretation(
            ai_interpretation=narrative.interpretation,
            clinical_significance=significance,
            should_alert=should_alert,
            narrative_available=True,
        )

    async def _request_narrative(
        self, request: NarrativeRequest
    ) -> Result[TrendNarrative, CollaboratorUnavailable]:
        if self.generator is None:
            return Result.err(CollaboratorUnavailable("narrative generator not configured"))

        if not self.circuit_breaker.can_execute():
            return Result.err(CollaboratorUnavailable("narrative circuit open"))

        try:
            narrative = await asyncio.wait_for(
                self.generator.generate(request), timeout=self.timeout_seconds
            )
        except TimeoutError:
            self.circuit_breaker.record_failure()
            return Result.err(
                CollaboratorUnavailable(f"narrative timed out after {self.timeout_seconds}s")
            )
        except Exception as e:
            self.circuit_breaker.record_failure()
            return Result.err(CollaboratorUnavailable(f"narrative failed: {e}"))

        self.circuit_breaker.record_success()
        return Result.ok(narrative)

    @staticmethod
    def fallback_text(request: NarrativeRequest) -> str:
        stats = request.stats
        unit = request.metric.unit
        return (
            f"{DIRECTION_LABELS[request.direction]} trend observed for "
            f"{request.metric.label}. Mean {stats.mean:.1f}{unit}, slope "
            f"{stats.slope:+.2f}{unit}/h across {stats.count} measurements."
        )

    @staticmethod
    def _insufficient_text(metric_name: str, stats: StatisticalAnalysis, count: int) -> str:
        if count == 0:
            return f"Insufficient data: no measurements found for {metric_name}."
        return (
            f"Insufficient data: only {count} measurement found for {metric_name} "
            f"(value {stats.mean:.1f}). At least 2 are needed to characterize a trend."
        )


def _untracked(metric_name: str) -> MetricDefinition:
    return MetricDefinition(
        metric_name=metric_name,
        thresholds=MetricThresholds(direction_slope=1.0, volatility_cv=1.0, urgent_slope=1.0),
    )
