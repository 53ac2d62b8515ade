"""
Descriptive and regression statistics over a metric's samples.

Samples are sorted by timestamp internally, so callers may pass them in any
order. The slope uses a two-pass (centered) least-squares formula: on vitals
like a heart rate hovering around 100 with tiny variance, the textbook
sum-of-products form loses most of its significant digits.
"""

import math
import statistics
from collections.abc import Sequence
from datetime import datetime

from vitaltrend.domain.models import MetricSample, StatisticalAnalysis

SECONDS_PER_HOUR = 3600.0


class StatisticsEngine:
    """Pure, deterministic statistics over a sample sequence."""

    def compute(
        self, samples: Sequence[MetricSample], origin: datetime | None = None
    ) -> StatisticalAnalysis:
        """
        Compute mean, slope (units per hour), population stddev, min, max and R².

        `origin` is the instant elapsed hours are measured from (normally the
        window's period_start); it defaults to the earliest sample. Fewer than
        two samples yield a sentinel with slope and stddev of zero that callers
        must treat as insufficient data.
        """
        ordered = sorted(samples, key=lambda s: s.timestamp)
        values = [s.value for s in ordered]
        count = len(values)

        if count == 0:
            return StatisticalAnalysis(mean=0.0, slope=0.0, stddev=0.0, min=0.0, max=0.0, count=0)
        if count == 1:
            v = values[0]
            return StatisticalAnalysis(mean=v, slope=0.0, stddev=0.0, min=v, max=v, count=1)

        start = origin if origin is not None else ordered[0].timestamp
        hours = [(s.timestamp - start).total_seconds() / SECONDS_PER_HOUR for s in ordered]

        mean = statistics.fmean(values)
        # population, not sample, standard deviation
        stddev = statistics.pstdev(values, mu=mean)
        slope, r_squared = self._regression(hours, values, mean)

        return StatisticalAnalysis(
            mean=mean,
            slope=slope,
            stddev=stddev,
            min=min(values),
            max=max(values),
            count=count,
            r_squared=r_squared,
        )

    def _regression(
        self, hours: list[float], values: list[float], mean_value: float
    ) -> tuple[float, float]:
        mean_hour = statistics.fmean(hours)
        dx = [h - mean_hour for h in hours]
        dy = [v - mean_value for v in values]

        sxx = math.fsum(d * d for d in dx)
        syy = math.fsum(d * d for d in dy)
        sxy = math.fsum(a * b for a, b in zip(dx, dy, strict=True))

        # all samples share a timestamp: no time axis to regress on
        if sxx == 0.0:
            return 0.0, 0.0

        slope = sxy / sxx
        denominator = sxx * syy
        if denominator == 0.0:
            return slope, 0.0

        r_squared = (sxy * sxy) / denominator
        return slope, min(1.0, max(0.0, r_squared))
