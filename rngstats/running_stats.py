"""Incremental running statistics over a trial stream."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Sequence

from rngstats.models import Trial, expected_mean


@dataclass(frozen=True)
class RunningStats:
    count: int = 0
    sum: float = 0.0
    sum_of_squares: float = 0.0
    mean: float = 0.0
    variance: float = 0.0
    standard_deviation: float = 0.0
    cumulative_deviation: float = 0.0
    min_value: float = 0.0
    max_value: float = 0.0
    last_updated: datetime | None = None
    # sum of squared deviations from the running mean (Welford's M2)
    m2: float = 0.0


EMPTY_STATS = RunningStats()


def update_running_stats(
    stats: RunningStats, trial: Trial, expected: float
) -> RunningStats:
    """Fold one trial into ``stats`` with Welford's update. O(1)."""

    value = float(trial.value)
    count = stats.count + 1
    delta = value - stats.mean
    new_mean = stats.mean + delta / count
    m2 = stats.m2 + delta * (value - new_mean)
    variance = m2 / (count - 1) if count > 1 else 0.0

    if stats.count == 0:
        min_value = max_value = value
    else:
        min_value = min(stats.min_value, value)
        max_value = max(stats.max_value, value)

    return replace(
        stats,
        count=count,
        sum=stats.sum + value,
        sum_of_squares=stats.sum_of_squares + value * value,
        mean=new_mean,
        variance=variance,
        standard_deviation=math.sqrt(variance),
        cumulative_deviation=stats.cumulative_deviation + (value - expected),
        min_value=min_value,
        max_value=max_value,
        last_updated=trial.timestamp,
        m2=m2,
    )


def batch_stats(trials: Sequence[Trial], expected: float) -> RunningStats:
    """Two-pass recomputation used to validate the incremental aggregate."""

    if not trials:
        return EMPTY_STATS
    values = [float(trial.value) for trial in trials]
    n = len(values)
    total = sum(values)
    avg = total / n
    m2 = sum((value - avg) ** 2 for value in values)
    variance = m2 / (n - 1) if n > 1 else 0.0
    return RunningStats(
        count=n,
        sum=total,
        sum_of_squares=sum(value * value for value in values),
        mean=avg,
        variance=variance,
        standard_deviation=math.sqrt(variance),
        cumulative_deviation=total - expected * n,
        min_value=min(values),
        max_value=max(values),
        last_updated=max(trial.timestamp for trial in trials),
        m2=m2,
    )


class RunningStatsTracker:
    """Single-writer owner of the running aggregate for one stream or session."""

    def __init__(self, bits_per_trial: int) -> None:
        self.bits_per_trial = bits_per_trial
        self._expected = expected_mean(bits_per_trial)
        self._stats = EMPTY_STATS

    @property
    def stats(self) -> RunningStats:
        return self._stats

    def update(self, trial: Trial) -> RunningStats:
        last = self._stats.last_updated
        if last is not None and trial.timestamp < last:
            raise ValueError(
                f"Trial {trial.sequence_number} at {trial.timestamp.isoformat()} "
                f"is older than the last applied trial ({last.isoformat()})."
            )
        if not 0 <= trial.value <= self.bits_per_trial:
            raise ValueError(
                f"Trial value {trial.value} is outside [0, {self.bits_per_trial}]."
            )
        self._stats = update_running_stats(self._stats, trial, self._expected)
        return self._stats

    def extend(self, trials: Iterable[Trial]) -> RunningStats:
        for trial in trials:
            self.update(trial)
        return self._stats

    def reset(self) -> None:
        self._stats = EMPTY_STATS


__all__ = [
    "RunningStats",
    "EMPTY_STATS",
    "update_running_stats",
    "batch_stats",
    "RunningStatsTracker",
]
