"""Standardized effect sizes for a trial window."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Sequence

from rngstats.config import AnalysisConfig
from rngstats.errors import InsufficientDataError
from rngstats.mathutils import normal_inverse, sample_variance
from rngstats.models import Trial, expected_mean, expected_std, utc_now

PRACTICAL_SIGNIFICANCE = 0.2


@dataclass(frozen=True)
class EffectSizeResult:
    kind: ClassVar[str] = "effect_size"

    cohens_d: float
    hedges_g: float
    point_biserial: float
    confidence_interval: tuple[float, float]
    standard_error: float
    interpretation: str
    practically_significant: bool
    sample_size: int
    created_at: datetime = field(default_factory=utc_now)


def interpret_effect(d: float) -> str:
    magnitude = abs(d)
    if magnitude < 0.2:
        return "negligible"
    if magnitude < 0.5:
        return "small"
    if magnitude < 0.8:
        return "medium"
    return "large"


def hedges_correction(n: int) -> float:
    """Small-sample bias correction factor J for Hedges' g."""

    if n < 2:
        return 1.0
    return 1 - 3 / (4 * (n - 1) - 1)


def point_biserial(deviations: Sequence[float]) -> float:
    """Correlation between signed deviations and the ``deviation > 0`` flag."""

    n = len(deviations)
    positive = [value for value in deviations if value > 0]
    rest = [value for value in deviations if value <= 0]
    if not positive or not rest:
        return 0.0
    std = math.sqrt(sample_variance(deviations))
    if std == 0:
        return 0.0
    mean_positive = sum(positive) / len(positive)
    mean_rest = sum(rest) / len(rest)
    return (mean_positive - mean_rest) / std * math.sqrt(len(positive) * len(rest) / n**2)


def effect_size(
    trials: Sequence[Trial], config: AnalysisConfig | None = None
) -> EffectSizeResult:
    config = config or AnalysisConfig()
    if not trials:
        raise InsufficientDataError("Effect size requires at least one trial.")

    n = len(trials)
    mu = expected_mean(config.bits_per_trial)
    deviations = [trial.value - mu for trial in trials]
    d = (sum(deviations) / n) / expected_std(config.bits_per_trial)

    std_error = 0.0
    if n > 3:
        std_error = math.sqrt((n + d * d / 2) / (n * (n - 3)))
    critical = normal_inverse(1 - (1 - config.confidence_level) / 2)

    return EffectSizeResult(
        cohens_d=d,
        hedges_g=d * hedges_correction(n),
        point_biserial=point_biserial(deviations),
        confidence_interval=(d - critical * std_error, d + critical * std_error),
        standard_error=std_error,
        interpretation=interpret_effect(d),
        practically_significant=abs(d) >= PRACTICAL_SIGNIFICANCE,
        sample_size=n,
    )


__all__ = [
    "EffectSizeResult",
    "interpret_effect",
    "hedges_correction",
    "point_biserial",
    "effect_size",
]
