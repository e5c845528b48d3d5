"""Numeric helpers shared by the analysis modules.

Distribution functions delegate to ``scipy``; the small descriptive helpers
work on plain sequences and guard zero-variance inputs by returning 0.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence

import numpy as np
from scipy import stats
from scipy.special import gammaincc

HIGHLY_SIGNIFICANT_P = 0.001
SIGNIFICANT_P = 0.05
MARGINAL_P = 0.1


@dataclass(frozen=True)
class RegressionResult:
    slope: float
    intercept: float
    correlation: float
    slope_std_error: float
    n: int


@dataclass(frozen=True)
class PowerAnalysis:
    observed_power: float
    required_sample_size: int | None
    minimum_detectable_effect: float


def erf(x: float) -> float:
    return math.erf(x)


def erfc(x: float) -> float:
    return math.erfc(x)


def normal_cdf(x: float) -> float:
    return float(stats.norm.cdf(x))


def normal_inverse(p: float) -> float:
    """Quantile of the standard normal distribution."""

    if not 0 < p < 1:
        raise ValueError(f"Probability must be in (0, 1), got {p}.")
    return float(stats.norm.ppf(p))


def normal_two_tailed_p(z: float) -> float:
    return float(2 * stats.norm.sf(abs(z)))


def normal_one_tailed_p(z: float) -> float:
    """Upper-tail probability of ``|z|``."""

    return float(stats.norm.sf(abs(z)))


def chi_square_probability(statistic: float, df: float) -> float:
    """Upper-tail chi-square probability via the regularized incomplete gamma."""

    if df <= 0:
        raise ValueError("Degrees of freedom must be positive.")
    if statistic <= 0:
        return 1.0
    return float(gammaincc(df / 2, statistic / 2))


def chi_square_inverse(p: float, df: float) -> float:
    """Wilson-Hilferty approximation of the chi-square quantile.

    For very small ``df`` the cube can go negative in the lower tail; the
    exact quantile is used there instead.
    """

    if df <= 0:
        raise ValueError("Degrees of freedom must be positive.")
    z = normal_inverse(p)
    term = 2 / (9 * df)
    base = 1 - term + z * math.sqrt(term)
    if base <= 0:
        return float(stats.chi2.ppf(p, df))
    return df * base**3


def t_probability(t: float, df: float) -> float:
    """Two-sided p-value of a t statistic."""

    if df <= 0:
        raise ValueError("Degrees of freedom must be positive.")
    return float(2 * stats.t.sf(abs(t), df))


def significance_level(p_value: float) -> str:
    if p_value < HIGHLY_SIGNIFICANT_P:
        return "highly_significant"
    if p_value < SIGNIFICANT_P:
        return "significant"
    if p_value < MARGINAL_P:
        return "marginal"
    return "none"


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def sample_variance(values: Sequence[float]) -> float:
    n = len(values)
    if n < 2:
        return 0.0
    avg = mean(values)
    return sum((value - avg) ** 2 for value in values) / (n - 1)


def _finite_or_zero(value: float) -> float:
    value = float(value)
    return value if math.isfinite(value) else 0.0


def skewness(values: Sequence[float]) -> float:
    """Adjusted Fisher-Pearson skewness; 0 for short or constant input."""

    if len(values) < 3 or sample_variance(values) == 0:
        return 0.0
    return _finite_or_zero(stats.skew(values, bias=False))


def excess_kurtosis(values: Sequence[float]) -> float:
    if len(values) < 4 or sample_variance(values) == 0:
        return 0.0
    return _finite_or_zero(stats.kurtosis(values, fisher=True, bias=False))


def autocorrelation(series: Sequence[float], lag: int) -> float:
    """Lag-k sample autocorrelation; 0 when undefined."""

    n = len(series)
    if lag <= 0 or lag >= n:
        return 0.0
    values = np.asarray(series, dtype=float)
    deviations = values - values.mean()
    denominator = float(np.dot(deviations, deviations))
    if denominator == 0:
        return 0.0
    return float(np.dot(deviations[:-lag], deviations[lag:]) / denominator)


def autocorrelations(series: Sequence[float], max_lag: int) -> List[float]:
    """Autocorrelations for lags ``1..max_lag`` (lags past the series are 0)."""

    values = np.asarray(series, dtype=float)
    n = values.size
    result: List[float] = []
    if n == 0:
        return [0.0] * max(max_lag, 0)
    deviations = values - values.mean()
    denominator = float(np.dot(deviations, deviations))
    for lag in range(1, max_lag + 1):
        if denominator == 0 or lag >= n:
            result.append(0.0)
            continue
        result.append(float(np.dot(deviations[:-lag], deviations[lag:]) / denominator))
    return result


def linear_regression(x: Sequence[float], y: Sequence[float]) -> RegressionResult:
    """Ordinary least squares fit of ``y`` against ``x``."""

    n = len(x)
    if n != len(y):
        raise ValueError("x and y must have the same length.")
    if n < 2 or len(set(x)) < 2:
        return RegressionResult(0.0, mean(y), 0.0, 0.0, n)

    fit = stats.linregress(x, y)
    slope_std_error = _finite_or_zero(fit.stderr) if n > 2 else 0.0
    return RegressionResult(
        slope=float(fit.slope),
        intercept=float(fit.intercept),
        correlation=_finite_or_zero(fit.rvalue),
        slope_std_error=slope_std_error,
        n=n,
    )


def confidence_interval(
    center: float, std_error: float, confidence_level: float = 0.95
) -> tuple[float, float]:
    critical = normal_inverse(1 - (1 - confidence_level) / 2)
    margin = critical * std_error
    return center - margin, center + margin


def shannon_entropy(counts: Iterable[int]) -> float:
    """Entropy in bits of a frequency table."""

    counts = [count for count in counts if count > 0]
    total = sum(counts)
    if total == 0:
        return 0.0
    return -sum((count / total) * math.log2(count / total) for count in counts)


def bonferroni(p_values: Sequence[float]) -> List[float]:
    m = len(p_values)
    return [min(1.0, p * m) for p in p_values]


def holm(p_values: Sequence[float]) -> List[float]:
    """Holm step-down adjusted p-values, in input order."""

    m = len(p_values)
    order = sorted(range(m), key=lambda index: p_values[index])
    adjusted = [0.0] * m
    running = 0.0
    for rank, index in enumerate(order):
        running = max(running, min(1.0, (m - rank) * p_values[index]))
        adjusted[index] = running
    return adjusted


def benjamini_hochberg(p_values: Sequence[float]) -> List[float]:
    """Benjamini-Hochberg adjusted p-values, in input order."""

    m = len(p_values)
    order = sorted(range(m), key=lambda index: p_values[index], reverse=True)
    adjusted = [0.0] * m
    running = 1.0
    for position, index in enumerate(order):
        rank = m - position
        running = min(running, p_values[index] * m / rank)
        adjusted[index] = min(1.0, running)
    return adjusted


def statistical_power(effect_size: float, n: int, alpha: float = 0.05) -> float:
    """Power of a two-sided z-test for a standardized effect."""

    if n <= 0:
        return 0.0
    z_crit = normal_inverse(1 - alpha / 2)
    shift = abs(effect_size) * math.sqrt(n)
    return normal_cdf(shift - z_crit) + normal_cdf(-shift - z_crit)


def required_sample_size(
    effect_size: float, alpha: float = 0.05, power: float = 0.8
) -> int:
    if effect_size == 0:
        raise ValueError("A zero effect size cannot be detected.")
    z_alpha = normal_inverse(1 - alpha / 2)
    z_beta = normal_inverse(power)
    return math.ceil(((z_alpha + z_beta) / abs(effect_size)) ** 2)


def minimum_detectable_effect(n: int, alpha: float = 0.05, power: float = 0.8) -> float:
    if n <= 0:
        raise ValueError("Sample size must be positive.")
    z_alpha = normal_inverse(1 - alpha / 2)
    z_beta = normal_inverse(power)
    return (z_alpha + z_beta) / math.sqrt(n)


def power_analysis(
    effect_size: float, n: int, alpha: float = 0.05, power: float = 0.8
) -> PowerAnalysis:
    return PowerAnalysis(
        observed_power=statistical_power(effect_size, n, alpha),
        required_sample_size=(
            required_sample_size(effect_size, alpha, power) if effect_size else None
        ),
        minimum_detectable_effect=minimum_detectable_effect(max(n, 1), alpha, power),
    )


__all__ = [
    "RegressionResult",
    "PowerAnalysis",
    "erf",
    "erfc",
    "normal_cdf",
    "normal_inverse",
    "normal_two_tailed_p",
    "normal_one_tailed_p",
    "chi_square_probability",
    "chi_square_inverse",
    "t_probability",
    "significance_level",
    "mean",
    "sample_variance",
    "skewness",
    "excess_kurtosis",
    "autocorrelation",
    "autocorrelations",
    "linear_regression",
    "confidence_interval",
    "shannon_entropy",
    "bonferroni",
    "holm",
    "benjamini_hochberg",
    "statistical_power",
    "required_sample_size",
    "minimum_detectable_effect",
    "power_analysis",
]
