"""Aggregate significance tests: network variance and mean z-score."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Sequence

from rngstats.config import AnalysisConfig
from rngstats.errors import InsufficientDataError
from rngstats.mathutils import (
    PowerAnalysis,
    chi_square_inverse,
    chi_square_probability,
    confidence_interval,
    normal_one_tailed_p,
    normal_two_tailed_p,
    power_analysis,
    significance_level,
)
from rngstats.models import Trial, expected_mean, expected_std, utc_now


@dataclass(frozen=True)
class NetworkVarianceResult:
    kind: ClassVar[str] = "network_variance"

    network_variance: float
    degrees_of_freedom: int
    p_value: float
    stouffer_z: float
    expected_network_variance: float
    standard_error: float
    confidence_interval: tuple[float, float]
    significance: str
    sample_size: int
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ZScoreResult:
    kind: ClassVar[str] = "z_score"

    z_score: float
    p_value: float
    one_tailed_p_value: float
    observed_mean: float
    expected_mean: float
    standard_error: float
    confidence_interval: tuple[float, float]
    effect_size: float
    significance: str
    power: PowerAnalysis
    sample_size: int
    created_at: datetime = field(default_factory=utc_now)


def trial_z_scores(trials: Sequence[Trial], bits_per_trial: int) -> list[float]:
    mu = expected_mean(bits_per_trial)
    sigma = expected_std(bits_per_trial)
    return [(trial.value - mu) / sigma for trial in trials]


def network_variance(
    trials: Sequence[Trial], config: AnalysisConfig | None = None
) -> NetworkVarianceResult:
    """Sum of squared trial z-scores, chi-square distributed with df = n."""

    config = config or AnalysisConfig()
    if not trials:
        raise InsufficientDataError("Network variance requires at least one trial.")

    z_scores = trial_z_scores(trials, config.bits_per_trial)
    n = len(z_scores)
    netvar = sum(z * z for z in z_scores)
    p_value = chi_square_probability(netvar, n)

    # interval on E[netvar]: netvar * df / chi2 quantiles
    tail = (1 - config.confidence_level) / 2
    upper_quantile = chi_square_inverse(1 - tail, n)
    lower_quantile = chi_square_inverse(tail, n)
    low = netvar * n / upper_quantile if upper_quantile > 0 else 0.0
    high = netvar * n / lower_quantile if lower_quantile > 0 else 0.0

    return NetworkVarianceResult(
        network_variance=netvar,
        degrees_of_freedom=n,
        p_value=p_value,
        stouffer_z=sum(z_scores) / math.sqrt(n),
        expected_network_variance=float(n),
        standard_error=math.sqrt(2 * n),
        confidence_interval=(low, high),
        significance=significance_level(p_value),
        sample_size=n,
    )


def z_score(
    trials: Sequence[Trial], config: AnalysisConfig | None = None
) -> ZScoreResult:
    """Z-test of the window mean against N/2."""

    config = config or AnalysisConfig()
    if not trials:
        raise InsufficientDataError("Z-score analysis requires at least one trial.")

    n = len(trials)
    mu = expected_mean(config.bits_per_trial)
    sigma = expected_std(config.bits_per_trial)
    observed = sum(trial.value for trial in trials) / n
    std_error = sigma / math.sqrt(n)
    z = (observed - mu) / std_error
    p_value = normal_two_tailed_p(z)
    effect = (observed - mu) / sigma

    return ZScoreResult(
        z_score=z,
        p_value=p_value,
        one_tailed_p_value=normal_one_tailed_p(z),
        observed_mean=observed,
        expected_mean=mu,
        standard_error=std_error,
        confidence_interval=confidence_interval(observed, std_error, config.confidence_level),
        effect_size=effect,
        significance=significance_level(p_value),
        power=power_analysis(effect, n, config.alpha),
        sample_size=n,
    )


__all__ = [
    "NetworkVarianceResult",
    "ZScoreResult",
    "trial_z_scores",
    "network_variance",
    "z_score",
]
