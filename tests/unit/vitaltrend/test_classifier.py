"""
Tests for the direction classifier.

Covers:
- Clinical scenarios for tracked metrics (rising, stable, noisy)
- Slope-over-volatility precedence
- Generic thresholds for untracked metrics
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from vitaltrend.domain.models import MetricDefinition, MetricSample, TrendDirection
from vitaltrend.services.classifier import DirectionClassifier
from vitaltrend.services.statistics import StatisticsEngine

SampleFactory = Callable[[list[float]], list[MetricSample]]


@pytest.fixture
def classifier(metrics: list[MetricDefinition]) -> DirectionClassifier:
    return DirectionClassifier(metrics)


def _classify(
    classifier: DirectionClassifier, samples: list[MetricSample], metric_name: str
) -> TrendDirection:
    stats = StatisticsEngine().compute(samples)
    return classifier.classify(stats, len(samples), metric_name)


@pytest.mark.parametrize(
    "metric_name,values,expected",
    [
        ("heartRate", [70, 80, 90, 100], TrendDirection.INCREASING),
        ("oxygenSaturation", [98, 98, 97, 98], TrendDirection.STABLE),
        ("heartRate", [60, 95, 58, 97, 61], TrendDirection.VOLATILE),
        ("oxygenSaturation", [98, 96, 94, 92], TrendDirection.DECREASING),
        ("temperature", [37.0, 37.0, 37.1, 37.0], TrendDirection.STABLE),
    ],
)
def test_clinical_scenarios(
    classifier: DirectionClassifier,
    hourly_samples: SampleFactory,
    metric_name: str,
    values: list[float],
    expected: TrendDirection,
) -> None:
    assert _classify(classifier, hourly_samples(values), metric_name) == expected


def test_strong_slope_wins_over_volatility(
    classifier: DirectionClassifier, hourly_samples: SampleFactory
) -> None:
    samples = hourly_samples([60, 100, 70, 130])
    stats = StatisticsEngine().compute(samples)

    assert stats.coefficient_of_variation > 0.15
    assert classifier.classify(stats, len(samples), "heartRate") == TrendDirection.INCREASING


@pytest.mark.parametrize("count", [0, 1])
def test_fewer_than_two_samples_is_insufficient(
    classifier: DirectionClassifier, hourly_samples: SampleFactory, count: int
) -> None:
    samples = hourly_samples([72.0] * count)

    assert _classify(classifier, samples, "heartRate") == TrendDirection.INSUFFICIENT_DATA


class TestUntrackedMetrics:
    def test_small_relative_drift_is_stable(
        self, classifier: DirectionClassifier, hourly_samples: SampleFactory
    ) -> None:
        assert _classify(classifier, hourly_samples([80.0, 80.1, 80.2]), "weight") == (
            TrendDirection.STABLE
        )

    def test_large_relative_slope_is_directional(
        self, classifier: DirectionClassifier, hourly_samples: SampleFactory
    ) -> None:
        assert _classify(classifier, hourly_samples([100, 130, 160]), "glucose") == (
            TrendDirection.INCREASING
        )

    def test_noise_above_generic_cv_is_volatile(
        self, classifier: DirectionClassifier, hourly_samples: SampleFactory
    ) -> None:
        assert _classify(classifier, hourly_samples([10, 30, 30, 10]), "lactate") == (
            TrendDirection.VOLATILE
        )

    def test_zero_mean_without_slope_is_stable(
        self, classifier: DirectionClassifier, hourly_samples: SampleFactory
    ) -> None:
        assert _classify(classifier, hourly_samples([-1, 1, 1, -1]), "fluidBalance") == (
            TrendDirection.STABLE
        )

    def test_generic_thresholds_scale_with_mean(
        self, classifier: DirectionClassifier, hourly_samples: SampleFactory
    ) -> None:
        stats = StatisticsEngine().compute(hourly_samples([200, 200]))

        assert classifier.thresholds_for("glucose", stats) == (pytest.approx(10.0), 0.3)
