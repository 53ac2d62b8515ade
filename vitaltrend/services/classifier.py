"""Maps statistics to a discrete trend direction using per-metric thresholds."""

from collections.abc import Iterable

import structlog

from vitaltrend.domain.models import (
    MetricDefinition,
    StatisticalAnalysis,
    TrendDirection,
)

logger = structlog.get_logger(__name__)

# Used for metrics outside the tracked table: 5% of |mean| per hour, CV 0.3
GENERIC_RELATIVE_SLOPE = 0.05
GENERIC_VOLATILITY_CV = 0.3


class DirectionClassifier:
    """
    Classifies a trend as increasing, decreasing, stable, volatile or insufficient.

    Precedence when both thresholds are crossed: a strong consistent slope
    wins over volatility. Volatility only wins over stable.
    """

    def __init__(self, definitions: Iterable[MetricDefinition]) -> None:
        self._definitions = {d.metric_name: d for d in definitions}
        self.logger = logger.bind(component="direction_classifier")

    def thresholds_for(self, metric_name: str, stats: StatisticalAnalysis) -> tuple[float, float]:
        """Return (direction_slope, volatility_cv) for a metric."""
        definition = self._definitions.get(metric_name)
        if definition is not None:
            return definition.thresholds.direction_slope, definition.thresholds.volatility_cv

        self.logger.debug("untracked_metric_generic_thresholds", metric_name=metric_name)
        direction_slope = GENERIC_RELATIVE_SLOPE * abs(stats.mean)
        return direction_slope, GENERIC_VOLATILITY_CV

    def classify(
        self, stats: StatisticalAnalysis, sample_count: int, metric_name: str
    ) -> TrendDirection:
        if sample_count < 2 or not stats.is_defined:
            return TrendDirection.INSUFFICIENT_DATA

        direction_slope, volatility_cv = self.thresholds_for(metric_name, stats)

        if direction_slope > 0:
            directional = abs(stats.slope) > direction_slope
        else:
            directional = stats.slope != 0

        if directional:
            return TrendDirection.INCREASING if stats.slope > 0 else TrendDirection.DECREASING

        if stats.coefficient_of_variation > volatility_cv:
            return TrendDirection.VOLATILE

        return TrendDirection.STABLE
