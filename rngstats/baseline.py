"""Baseline moments, drift, periodicity and baseline comparison."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Deque, Dict, List, Sequence

from scipy import stats

from rngstats.config import CalibrationConfig
from rngstats.errors import InsufficientDataError
from rngstats.mathutils import (
    autocorrelation,
    confidence_interval,
    excess_kurtosis,
    linear_regression,
    mean,
    normal_two_tailed_p,
    sample_variance,
    skewness,
)
from rngstats.models import utc_now

MIN_DRIFT_BASELINES = 5
MIN_LONG_TERM_INTERVALS = 10
HISTORY_LIMIT = 100
PERIODIC_CORRELATION = 0.3


@dataclass(frozen=True)
class BaselineResult:
    kind: ClassVar[str] = "baseline"

    mean: float
    variance: float
    standard_deviation: float
    skewness: float
    kurtosis: float
    confidence_interval: tuple[float, float]
    sample_size: int
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class BaselineChangePoint:
    index: int
    timestamp: datetime
    before_mean: float
    after_mean: float
    difference: float
    confidence: float


@dataclass(frozen=True)
class DriftAnalysis:
    kind: ClassVar[str] = "drift"

    direction: str
    slope_per_hour: float
    intercept: float
    p_value: float
    correlation: float
    change_points: List[BaselineChangePoint]
    sample_size: int
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class PeriodicPattern:
    label: str
    period: int
    frequency: float
    amplitude: float
    phase: float
    f_statistic: float
    confidence: float


@dataclass(frozen=True)
class BaselineComparison:
    kind: ClassVar[str] = "baseline_comparison"

    mean_difference: float
    z_score: float
    p_value: float
    mean_changed: bool
    variance_change: float
    variance_changed: bool
    change_type: str
    recommendation: str
    created_at: datetime = field(default_factory=utc_now)


def calculate_baseline(
    values: Sequence[float], timestamp: datetime | None = None
) -> BaselineResult:
    if not values:
        raise InsufficientDataError("Baseline estimation requires at least one value.")
    n = len(values)
    avg = mean(values)
    variance = sample_variance(values)
    std = math.sqrt(variance)
    return BaselineResult(
        mean=avg,
        variance=variance,
        standard_deviation=std,
        skewness=skewness(values),
        kurtosis=excess_kurtosis(values),
        confidence_interval=confidence_interval(avg, std / math.sqrt(n), 0.95),
        sample_size=n,
        timestamp=timestamp or utc_now(),
    )


def _ordered(baselines: Sequence[BaselineResult]) -> List[BaselineResult]:
    return sorted(baselines, key=lambda baseline: baseline.timestamp)


def _elapsed_hours(baselines: Sequence[BaselineResult]) -> List[float]:
    origin = baselines[0].timestamp
    return [(b.timestamp - origin).total_seconds() / 3600 for b in baselines]


def baseline_change_points(
    baselines: Sequence[BaselineResult], threshold: float = 0.01
) -> List[BaselineChangePoint]:
    """Split at every interior index and flag large before/after differences."""

    means = [baseline.mean for baseline in baselines]
    found: List[BaselineChangePoint] = []
    for index in range(1, len(means) - 1):
        before = mean(means[:index])
        after = mean(means[index:])
        difference = after - before
        if abs(difference) > threshold:
            found.append(
                BaselineChangePoint(
                    index=index,
                    timestamp=baselines[index].timestamp,
                    before_mean=before,
                    after_mean=after,
                    difference=difference,
                    confidence=min(100.0, abs(difference) * 100),
                )
            )
    return found


def analyze_drift(
    baselines: Sequence[BaselineResult], config: CalibrationConfig | None = None
) -> DriftAnalysis:
    """Regress baseline means on elapsed hours."""

    config = config or CalibrationConfig()
    ordered = _ordered(baselines)
    if len(ordered) < MIN_DRIFT_BASELINES:
        return DriftAnalysis(
            direction="stable",
            slope_per_hour=0.0,
            intercept=ordered[-1].mean if ordered else 0.0,
            p_value=1.0,
            correlation=0.0,
            change_points=[],
            sample_size=len(ordered),
        )

    hours = _elapsed_hours(ordered)
    means = [baseline.mean for baseline in ordered]
    if hours[-1] == hours[0]:
        slope, intercept, correlation, p_value = 0.0, mean(means), 0.0, 1.0
    else:
        fit = stats.linregress(hours, means)
        slope = float(fit.slope)
        intercept = float(fit.intercept)
        correlation = 0.0 if math.isnan(fit.rvalue) else float(fit.rvalue)
        p_value = 1.0 if math.isnan(fit.pvalue) else float(fit.pvalue)

    direction = "stable"
    if abs(slope) > config.drift_threshold:
        direction = "positive" if slope > 0 else "negative"

    return DriftAnalysis(
        direction=direction,
        slope_per_hour=slope,
        intercept=intercept,
        p_value=p_value,
        correlation=correlation,
        change_points=baseline_change_points(ordered, config.change_point_threshold),
        sample_size=len(ordered),
    )


def _grouped_pattern(
    label: str,
    period: int,
    keys: Sequence[int],
    values: Sequence[float],
    confidence_floor: float,
) -> PeriodicPattern | None:
    groups: Dict[int, List[float]] = {}
    for key, value in zip(keys, values):
        groups.setdefault(key, []).append(value)
    k = len(groups)
    n = len(values)
    if k < 2 or n - period <= 0:
        return None

    overall = mean(values)
    group_means = {key: mean(items) for key, items in groups.items()}
    between = sum((m - overall) ** 2 for m in group_means.values())
    within = sum(
        (value - group_means[key]) ** 2 for key, items in groups.items() for value in items
    )
    if within == 0:
        return None

    # ratio of summed squared group offsets to the per-cycle residual variance
    f_statistic = between / (within / (n - period))
    confidence = min(95.0, f_statistic * 10) if f_statistic > 2 else 0.0
    if confidence < confidence_floor:
        return None

    deviations = {key: m - overall for key, m in group_means.items()}
    peak_key = max(deviations, key=lambda key: abs(deviations[key]))
    return PeriodicPattern(
        label=label,
        period=period,
        frequency=1 / period,
        amplitude=math.sqrt(sum(d * d for d in deviations.values()) / k),
        phase=peak_key * 2 * math.pi / period,
        f_statistic=f_statistic,
        confidence=confidence,
    )


def detect_seasonal_patterns(
    baselines: Sequence[BaselineResult], config: CalibrationConfig | None = None
) -> List[PeriodicPattern]:
    """Hour-of-day pattern (24+ points) and day-of-week pattern (168+ points)."""

    config = config or CalibrationConfig()
    ordered = _ordered(baselines)
    values = [baseline.mean for baseline in ordered]
    patterns: List[PeriodicPattern] = []
    if len(ordered) >= 24:
        hourly = _grouped_pattern(
            "hourly",
            24,
            [baseline.timestamp.hour for baseline in ordered],
            values,
            config.periodicity_confidence_floor,
        )
        if hourly:
            patterns.append(hourly)
    if len(ordered) >= 168:
        daily = _grouped_pattern(
            "daily",
            7,
            [baseline.timestamp.weekday() for baseline in ordered],
            values,
            config.periodicity_confidence_floor,
        )
        if daily:
            patterns.append(daily)
    return patterns


def compare_baselines(current: BaselineResult, reference: BaselineResult) -> BaselineComparison:
    n1, n2 = current.sample_size, reference.sample_size
    difference = current.mean - reference.mean
    dof = n1 + n2 - 2
    pooled = (
        ((n1 - 1) * current.variance + (n2 - 1) * reference.variance) / dof if dof > 0 else 0.0
    )
    std_error = math.sqrt(pooled * (1 / n1 + 1 / n2)) if n1 and n2 else 0.0
    z = difference / std_error if std_error > 0 else 0.0
    p_value = normal_two_tailed_p(z)
    mean_changed = p_value < 0.05

    variance_change = (
        abs(current.variance - reference.variance) / reference.variance
        if reference.variance > 0
        else 0.0
    )
    variance_changed = variance_change > 0.1

    if mean_changed and variance_changed:
        change_type = "both"
        recommendation = "Mean and variance both moved; recalibrate the source."
    elif mean_changed:
        change_type = "mean"
        recommendation = "Mean shifted from the reference baseline; investigate bias."
    elif variance_changed:
        change_type = "variance"
        recommendation = "Variance changed from the reference baseline; check source stability."
    else:
        change_type = "none"
        recommendation = "Baseline is consistent with the reference."

    return BaselineComparison(
        mean_difference=difference,
        z_score=z,
        p_value=p_value,
        mean_changed=mean_changed,
        variance_change=variance_change,
        variance_changed=variance_changed,
        change_type=change_type,
        recommendation=recommendation,
    )


def calculate_long_term_drift(baselines: Sequence[BaselineResult]) -> float:
    """Slope of interval means per hour; 0 for short histories."""

    ordered = _ordered(baselines)
    if len(ordered) < MIN_LONG_TERM_INTERVALS:
        return 0.0
    fit = linear_regression(_elapsed_hours(ordered), [b.mean for b in ordered])
    return fit.slope


def detect_periodic_autocorrelation(
    baselines: Sequence[BaselineResult],
) -> List[tuple[int, float]]:
    """Lags (2..min(n/4, 50)) whose interval-mean autocorrelation exceeds 0.3."""

    means = [baseline.mean for baseline in _ordered(baselines)]
    max_lag = min(len(means) // 4, 50)
    found: List[tuple[int, float]] = []
    for lag in range(2, max_lag + 1):
        coefficient = autocorrelation(means, lag)
        if coefficient > PERIODIC_CORRELATION:
            found.append((lag, coefficient))
    return found


def baseline_trend(baselines: Sequence[BaselineResult]) -> str:
    """Compare the spread of recent means with the earlier half of the history."""

    means = [baseline.mean for baseline in _ordered(baselines)]
    if len(means) < 6:
        return "stable"
    half = len(means) // 2
    earlier = math.sqrt(sample_variance(means[:half]))
    recent = math.sqrt(sample_variance(means[half:]))
    if earlier == 0:
        return "stable" if recent == 0 else "degrading"
    if recent < 0.8 * earlier:
        return "improving"
    if recent > 1.2 * earlier:
        return "degrading"
    return "stable"


def predict_next_baseline(baselines: Sequence[BaselineResult]) -> float | None:
    means = [baseline.mean for baseline in _ordered(baselines)]
    if not means:
        return None
    if len(means) < 3:
        return means[-1]
    fit = linear_regression(list(range(len(means))), means)
    return fit.intercept + fit.slope * len(means)


class BaselineEstimator:
    """Baseline calculator that keeps a bounded history of its own results."""

    def __init__(
        self, config: CalibrationConfig | None = None, history_limit: int = HISTORY_LIMIT
    ) -> None:
        self.config = config or CalibrationConfig()
        self._history: Deque[BaselineResult] = deque(maxlen=history_limit)

    @property
    def history(self) -> List[BaselineResult]:
        return list(self._history)

    def estimate(
        self, values: Sequence[float], timestamp: datetime | None = None
    ) -> BaselineResult:
        result = calculate_baseline(values, timestamp)
        self._history.append(result)
        return result

    def drift(self) -> DriftAnalysis:
        return analyze_drift(self.history, self.config)

    def trend(self) -> str:
        return baseline_trend(self.history)

    def predict_next(self) -> float | None:
        return predict_next_baseline(self.history)


__all__ = [
    "BaselineResult",
    "BaselineChangePoint",
    "DriftAnalysis",
    "PeriodicPattern",
    "BaselineComparison",
    "calculate_baseline",
    "baseline_change_points",
    "analyze_drift",
    "detect_seasonal_patterns",
    "compare_baselines",
    "calculate_long_term_drift",
    "detect_periodic_autocorrelation",
    "baseline_trend",
    "predict_next_baseline",
    "BaselineEstimator",
]
