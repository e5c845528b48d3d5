"""Windowed trend regression and CUSUM change points."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import ClassVar, List, Sequence

from rngstats.config import AnalysisConfig
from rngstats.mathutils import linear_regression, mean, sample_variance, t_probability
from rngstats.models import Trial, expected_mean, utc_now

MIN_TREND_WINDOWS = 3
MIN_CHANGE_POINT_WINDOWS = 10


@dataclass(frozen=True)
class TrendWindow:
    start_index: int
    mean_deviation: float
    mean_time: datetime
    elapsed_seconds: float


@dataclass(frozen=True)
class ChangePoint:
    window_index: int
    trial_index: int
    magnitude: float
    confidence: float


@dataclass(frozen=True)
class TrendResult:
    kind: ClassVar[str] = "trend"

    direction: str
    slope: float
    intercept: float
    slope_std_error: float
    t_statistic: float
    p_value: float
    significant: bool
    correlation: float
    window_count: int
    change_points: List[ChangePoint]
    sample_size: int
    created_at: datetime = field(default_factory=utc_now)


def windowed_means(
    trials: Sequence[Trial], window: int, bits_per_trial: int
) -> List[TrendWindow]:
    """Mean deviation per window, stepped by a quarter window."""

    if not trials or len(trials) < window:
        return []
    step = max(1, window // 4)
    mu = expected_mean(bits_per_trial)
    origin = trials[0].timestamp
    windows: List[TrendWindow] = []
    for start in range(0, len(trials) - window + 1, step):
        chunk = trials[start : start + window]
        offsets = [(trial.timestamp - origin).total_seconds() for trial in chunk]
        elapsed = sum(offsets) / window
        windows.append(
            TrendWindow(
                start_index=start,
                mean_deviation=sum(trial.value for trial in chunk) / window - mu,
                mean_time=origin + timedelta(seconds=elapsed),
                elapsed_seconds=elapsed,
            )
        )
    return windows


def detect_change_points(
    values: Sequence[float], sigma_multiplier: float = 2.0
) -> List[tuple[int, float, float]]:
    """CUSUM scan; returns ``(index, magnitude, confidence)`` triples."""

    if len(values) < MIN_CHANGE_POINT_WINDOWS:
        return []
    center = mean(values)
    std = math.sqrt(sample_variance(values))
    if std == 0:
        return []

    limit = sigma_multiplier * std
    found: List[tuple[int, float, float]] = []
    cumulative = running_max = running_min = 0.0
    extreme_index: int | None = None
    for index, value in enumerate(values):
        cumulative += value - center
        if cumulative > running_max:
            running_max = cumulative
            extreme_index = index
        if cumulative < running_min:
            running_min = cumulative
            extreme_index = index
        if abs(cumulative) > limit and extreme_index is not None:
            magnitude = abs(cumulative) / std
            found.append((extreme_index, magnitude, min(0.99, magnitude / 5)))
            cumulative = running_max = running_min = 0.0
            extreme_index = None
    return found


def _stable(window_count: int, sample_size: int) -> TrendResult:
    return TrendResult(
        direction="stable",
        slope=0.0,
        intercept=0.0,
        slope_std_error=0.0,
        t_statistic=0.0,
        p_value=1.0,
        significant=False,
        correlation=0.0,
        window_count=window_count,
        change_points=[],
        sample_size=sample_size,
    )


def detect_trend(
    trials: Sequence[Trial], config: AnalysisConfig | None = None
) -> TrendResult:
    config = config or AnalysisConfig()
    windows = windowed_means(trials, config.trend_window, config.bits_per_trial)
    if len(windows) < MIN_TREND_WINDOWS:
        return _stable(len(windows), len(trials))

    x = [window.elapsed_seconds for window in windows]
    y = [window.mean_deviation for window in windows]
    fit = linear_regression(x, y)
    if fit.slope_std_error > 0:
        t_statistic = fit.slope / fit.slope_std_error
        p_value = t_probability(t_statistic, len(windows) - 2)
    else:
        # exact fit: any nonzero slope is certain, t stays finite for storage
        t_statistic = 0.0
        p_value = 0.0 if fit.slope != 0 else 1.0
    significant = p_value < config.alpha

    direction = "stable"
    if significant and fit.slope > 0:
        direction = "increasing"
    elif significant and fit.slope < 0:
        direction = "decreasing"

    change_points = [
        ChangePoint(
            window_index=index,
            trial_index=windows[index].start_index,
            magnitude=magnitude,
            confidence=confidence,
        )
        for index, magnitude, confidence in detect_change_points(
            y, config.change_point_sigma
        )
    ]

    return TrendResult(
        direction=direction,
        slope=fit.slope,
        intercept=fit.intercept,
        slope_std_error=fit.slope_std_error,
        t_statistic=t_statistic,
        p_value=p_value,
        significant=significant,
        correlation=fit.correlation,
        window_count=len(windows),
        change_points=change_points,
        sample_size=len(trials),
    )


__all__ = [
    "MIN_TREND_WINDOWS",
    "MIN_CHANGE_POINT_WINDOWS",
    "TrendWindow",
    "ChangePoint",
    "TrendResult",
    "windowed_means",
    "detect_change_points",
    "detect_trend",
]
