"""Cumulative deviation series and excursion periods."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, List, Sequence

from rngstats.config import AnalysisConfig
from rngstats.mathutils import normal_one_tailed_p
from rngstats.models import Trial, expected_mean, expected_variance, utc_now


@dataclass(frozen=True)
class CumulativePoint:
    index: int
    timestamp: datetime
    cumulative_deviation: float
    running_mean: float
    z_score: float


@dataclass(frozen=True)
class ExcursionPeriod:
    start_index: int
    end_index: int
    start_time: datetime
    end_time: datetime
    peak_z: float
    peak_index: int
    duration: int
    duration_seconds: float
    significance: float


@dataclass(frozen=True)
class CumulativeResult:
    kind: ClassVar[str] = "cumulative"

    points: List[CumulativePoint]
    excursions: List[ExcursionPeriod]
    final_deviation: float
    max_deviation: float
    min_deviation: float
    zero_crossings: int
    sample_size: int
    created_at: datetime = field(default_factory=utc_now)


def cumulative_points(trials: Sequence[Trial], bits_per_trial: int) -> List[CumulativePoint]:
    mu = expected_mean(bits_per_trial)
    variance = expected_variance(bits_per_trial)
    points: List[CumulativePoint] = []
    cumulative = 0.0
    total = 0.0
    for index, trial in enumerate(trials):
        n = index + 1
        cumulative += trial.value - mu
        total += trial.value
        points.append(
            CumulativePoint(
                index=index,
                timestamp=trial.timestamp,
                cumulative_deviation=cumulative,
                running_mean=total / n,
                z_score=cumulative / math.sqrt(variance * n),
            )
        )
    return points


def _sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _excursion(
    points: Sequence[CumulativePoint],
    start: int,
    end: int,
    sign: int,
    peak: float,
    peak_index: int,
) -> ExcursionPeriod:
    start_time = points[start].timestamp
    end_time = points[end].timestamp
    return ExcursionPeriod(
        start_index=start,
        end_index=end,
        start_time=start_time,
        end_time=end_time,
        peak_z=sign * peak,
        peak_index=peak_index,
        duration=end - start + 1,
        duration_seconds=(end_time - start_time).total_seconds(),
        significance=normal_one_tailed_p(peak),
    )


def detect_excursions(
    points: Sequence[CumulativePoint],
    threshold: float = 2.0,
    min_duration: int = 100,
) -> List[ExcursionPeriod]:
    """Find sustained one-sided runs of ``|z| > threshold``.

    A run ends on a sign flip or when ``|z|`` drops below the threshold. Runs
    shorter than ``min_duration`` points are discarded; one still open at the
    end of the series is kept if it is already long enough.
    """

    excursions: List[ExcursionPeriod] = []
    start: int | None = None
    sign = 0
    peak = 0.0
    peak_index = 0

    for index, point in enumerate(points):
        abs_z = abs(point.z_score)
        point_sign = _sign(point.z_score)

        if start is not None and (point_sign != sign or abs_z < threshold):
            if index - start >= min_duration:
                excursions.append(
                    _excursion(points, start, index - 1, sign, peak, peak_index)
                )
            start = None

        if start is None:
            if abs_z > threshold:
                start = index
                sign = point_sign
                peak = abs_z
                peak_index = index
        elif abs_z > peak:
            peak = abs_z
            peak_index = index

    if start is not None and len(points) - start >= min_duration:
        excursions.append(
            _excursion(points, start, len(points) - 1, sign, peak, peak_index)
        )
    return excursions


def count_zero_crossings(values: Sequence[float]) -> int:
    crossings = 0
    previous = 0
    for value in values:
        current = _sign(value)
        if current == 0:
            continue
        if previous and current != previous:
            crossings += 1
        previous = current
    return crossings


def cumulative_deviation(
    trials: Sequence[Trial], config: AnalysisConfig | None = None
) -> CumulativeResult:
    """Cumulative deviation from N/2 with its excursion periods.

    Runs continuously over recent windows, so empty input gives an empty
    result instead of an error.
    """

    config = config or AnalysisConfig()
    if not trials:
        return CumulativeResult(
            points=[],
            excursions=[],
            final_deviation=0.0,
            max_deviation=0.0,
            min_deviation=0.0,
            zero_crossings=0,
            sample_size=0,
        )

    points = cumulative_points(trials, config.bits_per_trial)
    deviations = [point.cumulative_deviation for point in points]
    return CumulativeResult(
        points=points,
        excursions=detect_excursions(
            points,
            threshold=config.excursion_threshold,
            min_duration=config.excursion_min_duration,
        ),
        final_deviation=deviations[-1],
        max_deviation=max(deviations),
        min_deviation=min(deviations),
        zero_crossings=count_zero_crossings(deviations),
        sample_size=len(points),
    )


__all__ = [
    "CumulativePoint",
    "ExcursionPeriod",
    "CumulativeResult",
    "cumulative_points",
    "detect_excursions",
    "count_zero_crossings",
    "cumulative_deviation",
]
