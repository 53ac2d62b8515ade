"""
Batch orchestration of trend analysis across a patient's tracked metrics.

Key patterns:
- Components injected at construction, composed once at startup
- Structured concurrency with asyncio.TaskGroup, bounded by a semaphore
- Error boundary per metric: one failing metric never blocks the others
- Freshness short-circuit before any extraction or narrative work
"""

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal, Protocol

import structlog

from vitaltrend.config import AppConfig, load_tracked_metrics
from vitaltrend.domain.errors import (
    InsufficientDataError,
    PatientNotFoundError,
    PersistenceError,
    ValidationError,
)
from vitaltrend.domain.models import (
    BatchResult,
    FailedMetric,
    MetricDefinition,
    PatientProfile,
    ReconcileAction,
    SkippedMetric,
    TrendRecord,
    TrendWindow,
    UpsertResult,
)
from vitaltrend.services.alerts import (
    AlertDispatcher,
    AlertEmissionPolicy,
    AlertEmitter,
    build_alert_event,
)
from vitaltrend.services.classifier import DirectionClassifier
from vitaltrend.services.interpretation import (
    CircuitBreakerState,
    InterpretationPolicy,
    NarrativeGenerator,
    PydanticAINarrativeGenerator,
)
from vitaltrend.services.reconciler import TrendReconciler, TrendStore
from vitaltrend.services.samples import (
    SampleExtractor,
    VitalSignsRepository,
    VitalSignsSampleExtractor,
)
from vitaltrend.services.statistics import StatisticsEngine

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


class PatientDirectory(Protocol):
    """Looks up the patient's workspace and demographics."""

    async def get_patient(self, patient_id: str) -> PatientProfile | None: ...


@dataclass(frozen=True)
class MetricOutcome:
    metric: str
    status: Literal["created", "updated", "skipped", "failed"]
    reason: Literal["up_to_date", "insufficient_data"] | None = None
    error: str | None = None
    alert_emitted: bool = False

    def __post_init__(self) -> None:
        if self.status == "skipped" and self.reason is None:
            raise ValueError(f"skipped outcome for {self.metric} needs a reason")


class TrendOrchestrator:
    """
    Drives extraction, statistics, classification, interpretation and
    reconciliation for every tracked metric of one patient.
    """

    def __init__(
        self,
        metrics: Sequence[MetricDefinition],
        extractor: SampleExtractor,
        patients: PatientDirectory,
        reconciler: TrendReconciler,
        interpretation: InterpretationPolicy,
        emitter: AlertEmitter,
        statistics: StatisticsEngine | None = None,
        classifier: DirectionClassifier | None = None,
        emission_policy: AlertEmissionPolicy | None = None,
        max_concurrent_metrics: int = 4,
        max_period_hours: float = 720.0,
        clock: Clock | None = None,
    ) -> None:
        self.metrics = list(metrics)
        self.extractor = extractor
        self.patients = patients
        self.reconciler = reconciler
        self.interpretation = interpretation
        self.emitter = emitter
        self.statistics = statistics or StatisticsEngine()
        self.classifier = classifier or DirectionClassifier(self.metrics)
        self.emission_policy = emission_policy or AlertEmissionPolicy()
        self.max_concurrent_metrics = max_concurrent_metrics
        self.max_period_hours = max_period_hours
        self.clock: Clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger.bind(component="trend_orchestrator")

    async def process(
        self, patient_id: str, period_hours: float = 24.0, update_existing: bool = False
    ) -> BatchResult:
        """
        Create or refresh trends for all tracked metrics of a patient.

        Only ValidationError (and its PatientNotFoundError subclass) escapes;
        every per-metric failure is reported in the result.
        """
        patient = await self._validated_patient(patient_id, period_hours)
        now = self.clock()
        start_time = time.perf_counter()
        log = self.logger.bind(patient_id=patient.patient_id)

        semaphore = asyncio.Semaphore(self.max_concurrent_metrics)

        async def bounded(metric: MetricDefinition) -> MetricOutcome:
            async with semaphore:
                return await self._process_metric(
                    patient, metric, period_hours, update_existing, now
                )

        async with asyncio.TaskGroup() as task_group:
            tasks = [task_group.create_task(bounded(metric)) for metric in self.metrics]

        result = BatchResult(patient_id=patient.patient_id)
        for task in tasks:
            outcome = task.result()
            if outcome.status == "created":
                result.created_metrics.append(outcome.metric)
            elif outcome.status == "updated":
                result.updated_metrics.append(outcome.metric)
            elif outcome.status == "failed":
                result.failed_metrics.append(
                    FailedMetric(metric=outcome.metric, error=outcome.error or "unknown error")
                )
            elif outcome.reason is not None:
                result.skipped_metrics.append(
                    SkippedMetric(metric=outcome.metric, reason=outcome.reason)
                )
            if outcome.alert_emitted:
                result.alerts_emitted += 1

        log.info(
            "trend_batch_completed",
            created=result.created,
            updated=result.updated,
            failed=result.failed,
            skipped=len(result.skipped_metrics),
            alerts_emitted=result.alerts_emitted,
            duration_seconds=round(time.perf_counter() - start_time, 3),
        )
        return result

    async def calculate_metric(
        self, patient_id: str, metric_name: str, period_hours: float = 24.0
    ) -> TrendRecord:
        """
        Compute one metric on demand, updating its trend when newer samples exist.

        Raises InsufficientDataError when fewer than two samples are available.
        Returns the stored record, which is the existing one if nothing changed.
        """
        patient = await self._validated_patient(patient_id, period_hours)
        if not metric_name or not metric_name.strip():
            raise ValidationError("metric_name required")

        metric = self._definition(metric_name)
        result, _ = await self._evaluate_and_commit(
            patient, metric, period_hours, update_existing=True, now=self.clock()
        )
        if result.record is None:
            raise PersistenceError(f"Trend for {metric.metric_name} was not stored")
        return result.record

    async def _validated_patient(self, patient_id: str, period_hours: float) -> PatientProfile:
        if not isinstance(patient_id, str) or not patient_id.strip():
            raise ValidationError("patient_id required")
        if not 0 < period_hours <= self.max_period_hours:
            raise ValidationError(
                f"period_hours must be in (0, {self.max_period_hours:g}], got {period_hours}"
            )

        patient = await self.patients.get_patient(patient_id)
        if patient is None:
            raise PatientNotFoundError(patient_id)
        return patient

    async def _process_metric(
        self,
        patient: PatientProfile,
        metric: MetricDefinition,
        period_hours: float,
        update_existing: bool,
        now: datetime,
    ) -> MetricOutcome:
        name = metric.metric_name
        try:
            existing = await self.reconciler.existing_trend(
                patient.patient_id, name, now, period_hours
            )
            latest_sample_at = None
            if existing is not None and update_existing:
                latest_sample_at = await self._latest_sample_time(patient.patient_id, name, now)
            action = self.reconciler.plan(existing, latest_sample_at, update_existing)
            if action == ReconcileAction.SKIP:
                return MetricOutcome(metric=name, status="skipped", reason="up_to_date")

            result, alert_emitted = await self._evaluate_and_commit(
                patient, metric, period_hours, update_existing, now
            )
            if result.action == ReconcileAction.CREATE:
                return MetricOutcome(metric=name, status="created", alert_emitted=alert_emitted)
            if result.action == ReconcileAction.UPDATE:
                return MetricOutcome(metric=name, status="updated", alert_emitted=alert_emitted)
            # a concurrent pass got there first
            return MetricOutcome(metric=name, status="skipped", reason="up_to_date")

        except InsufficientDataError as e:
            self.logger.info(
                "insufficient_data",
                patient_id=patient.patient_id,
                metric_name=name,
                count=e.count,
            )
            return MetricOutcome(metric=name, status="skipped", reason="insufficient_data")
        except Exception as e:
            self.logger.exception(
                "metric_processing_failed",
                patient_id=patient.patient_id,
                metric_name=name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return MetricOutcome(metric=name, status="failed", error=str(e) or type(e).__name__)

    async def _latest_sample_time(
        self, patient_id: str, metric_name: str, now: datetime
    ) -> datetime | None:
        try:
            return await self.extractor.latest_sample_time(patient_id, metric_name, now=now)
        except Exception as e:
            # without a known latest sample the existing trend is kept
            self.logger.warning(
                "latest_sample_lookup_failed",
                patient_id=patient_id,
                metric_name=metric_name,
                error=str(e),
            )
            return None

    async def _evaluate_and_commit(
        self,
        patient: PatientProfile,
        metric: MetricDefinition,
        period_hours: float,
        update_existing: bool,
        now: datetime,
    ) -> tuple[UpsertResult, bool]:
        """Run the pipeline for one metric; the bool tells whether an alert went out."""
        name = metric.metric_name
        samples = await self.extractor.extract_samples(
            patient.patient_id, name, period_hours, now=now
        )
        if len(samples) < 2:
            raise InsufficientDataError(name, len(samples))

        window = TrendWindow.ending_at(patient.patient_id, name, now, period_hours)
        stats = self.statistics.compute(samples, origin=window.period_start)
        direction = self.classifier.classify(stats, len(samples), name)
        interpretation = await self.interpretation.evaluate(
            name, stats, direction, samples, patient
        )

        record = TrendRecord(
            patient_id=patient.patient_id,
            workspace_id=patient.workspace_id,
            metric_name=name,
            data_points=samples,
            trend_direction=direction,
            trend_velocity=stats.slope,
            statistical_analysis=stats,
            ai_interpretation=interpretation.ai_interpretation,
            clinical_significance=interpretation.clinical_significance,
            alert_triggered=interpretation.should_alert,
            period_start=window.period_start,
            period_end=window.period_end,
            data_point_count=len(samples),
            latest_sample_at=max(s.timestamp for s in samples),
            calculated_at=now,
        )

        result = await self.reconciler.commit(
            record, period_hours=period_hours, update_existing=update_existing
        )
        alert_emitted = await self._maybe_emit_alert(result)
        return result, alert_emitted

    async def _maybe_emit_alert(self, result: UpsertResult) -> bool:
        if result.action == ReconcileAction.SKIP or result.record is None:
            return False

        record = result.record
        if not self.emission_policy.should_emit(result.previous, record):
            if record.alert_triggered:
                self.logger.info(
                    "continuing_alert_suppressed",
                    patient_id=record.patient_id,
                    metric_name=record.metric_name,
                    significance=record.clinical_significance.value,
                )
            return False

        try:
            await self.emitter.emit(build_alert_event(record))
        except Exception as e:
            # the record is already persisted
            self.logger.error(
                "alert_emit_failed",
                patient_id=record.patient_id,
                metric_name=record.metric_name,
                error=str(e),
            )
            return False
        return True

    def _definition(self, metric_name: str) -> MetricDefinition:
        for metric in self.metrics:
            if metric.metric_name == metric_name:
                return metric
        raise ValidationError(f"Unknown metric: {metric_name}")


def build_orchestrator(
    config: AppConfig,
    repository: VitalSignsRepository,
    patients: PatientDirectory,
    store: TrendStore,
    emitter: AlertEmitter | None = None,
    generator: NarrativeGenerator | None = None,
    clock: Clock | None = None,
) -> TrendOrchestrator:
    """Compose the pipeline from configuration and collaborators."""
    metrics = load_tracked_metrics(config.trends.tracked_metrics_path)

    if generator is None and config.ai_provider.narrative_enabled:
        generator = PydanticAINarrativeGenerator(
            model=config.ai_provider.narrative_model,
            temperature=config.ai_provider.temperature,
            max_tokens=config.ai_provider.max_tokens,
            retries=config.ai_provider.max_retries,
        )

    interpretation = InterpretationPolicy(
        metrics,
        generator=generator,
        timeout_seconds=config.ai_provider.timeout_seconds,
        circuit_breaker=CircuitBreakerState(
            failure_threshold=config.trends.circuit_failure_threshold,
            recovery_timeout=config.trends.circuit_recovery_seconds,
        ),
    )

    logger.info(
        "trend_orchestrator_initialized",
        tracked_metrics=[m.metric_name for m in metrics],
        narrative_enabled=generator is not None,
    )

    return TrendOrchestrator(
        metrics=metrics,
        extractor=VitalSignsSampleExtractor(repository, metrics),
        patients=patients,
        reconciler=TrendReconciler(store),
        interpretation=interpretation,
        emitter=emitter or AlertDispatcher(),
        max_concurrent_metrics=config.trends.max_concurrent_metrics,
        max_period_hours=config.trends.max_period_hours,
        clock=clock,
    )
