"""Trial records and vocabulary shared by the analysis modules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from math import sqrt
from typing import Sequence

DEFAULT_BITS_PER_TRIAL = 200

SIGNIFICANCE_LEVELS = ("highly_significant", "significant", "marginal", "none")
SEVERITIES = ("low", "medium", "high", "critical")
METRIC_STATUSES = ("excellent", "good", "warning", "critical")
QUALITY_STATUSES = ("pass", "warning", "fail")


@dataclass(frozen=True)
class Trial:
    """One bounded-sum trial: the number of ones among N binary draws."""

    timestamp: datetime
    value: int
    session_id: str
    sequence_number: int
    mode: str = "standard"
    intention: str = "baseline"


def expected_mean(bits_per_trial: int) -> float:
    return bits_per_trial / 2


def expected_variance(bits_per_trial: int) -> float:
    return bits_per_trial / 4


def expected_std(bits_per_trial: int) -> float:
    return sqrt(bits_per_trial / 4)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def elapsed_seconds(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds()


def trial_values(trials: Sequence[Trial]) -> list[int]:
    return [trial.value for trial in trials]


def sort_trials(trials: Sequence[Trial]) -> list[Trial]:
    """Order trials by timestamp, then by sequence number."""

    return sorted(trials, key=lambda trial: (trial.timestamp, trial.sequence_number))


__all__ = [
    "DEFAULT_BITS_PER_TRIAL",
    "SIGNIFICANCE_LEVELS",
    "SEVERITIES",
    "METRIC_STATUSES",
    "QUALITY_STATUSES",
    "Trial",
    "expected_mean",
    "expected_variance",
    "expected_std",
    "utc_now",
    "elapsed_seconds",
    "trial_values",
    "sort_trials",
]
