"""Randomness test battery for raw bit sequences."""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from itertools import accumulate
from typing import ClassVar, Dict, List, Sequence

from scipy.special import gammaincc

from rngstats.config import MIN_SEQUENCE_BITS, RandomnessConfig
from rngstats.errors import InsufficientDataError
from rngstats.mathutils import (
    autocorrelation,
    autocorrelations,
    chi_square_probability,
    erfc,
    normal_cdf,
    shannon_entropy,
)
from rngstats.models import utc_now

SAMPLED_LAGS = (1, 5, 10)
BATTERY_WEIGHTS = {"nist": 50.0, "ent": 30.0, "autocorrelation": 10.0, "frequency": 10.0}


@dataclass(frozen=True)
class RandomnessTestResult:
    name: str
    statistic: float | None
    p_value: float | None
    passed: bool
    threshold: float
    description: str
    detail: Dict[str, float] | None = None


@dataclass(frozen=True)
class BatteryResult:
    document_properties: ClassVar[tuple[str, ...]] = ("pass_rate",)

    name: str
    weight: float
    tests: List[RandomnessTestResult]

    @property
    def pass_rate(self) -> float:
        if not self.tests:
            return 0.0
        return sum(1 for test in self.tests if test.passed) / len(self.tests)


@dataclass(frozen=True)
class RandomnessSuiteResult:
    kind: ClassVar[str] = "randomness_suite"
    document_properties: ClassVar[tuple[str, ...]] = ("passed_count", "pass_rate")

    total_bits: int
    alpha: float
    batteries: List[BatteryResult]
    overall_quality: float
    recommendation: str
    created_at: datetime = field(default_factory=utc_now)

    @property
    def tests(self) -> List[RandomnessTestResult]:
        return [test for battery in self.batteries for test in battery.tests]

    @property
    def passed_count(self) -> int:
        return sum(1 for test in self.tests if test.passed)

    @property
    def pass_rate(self) -> float:
        tests = self.tests
        return 100 * self.passed_count / len(tests) if tests else 0.0

    def test(self, name: str) -> RandomnessTestResult:
        for result in self.tests:
            if result.name == name:
                return result
        raise KeyError(name)


@dataclass(frozen=True)
class QuickTestResult:
    quality: float
    ones_ratio: float
    runs: int
    pair_frequency: float
    issues: List[str]


def _require_bits(bits: Sequence[int], test: str) -> int:
    n = len(bits)
    if n < MIN_SEQUENCE_BITS:
        raise InsufficientDataError(
            f"{test} requires at least {MIN_SEQUENCE_BITS} bits (got {n})."
        )
    return n


def _nist_result(
    name: str,
    statistic: float | None,
    p_values: Sequence[float],
    alpha: float,
    description: str,
    detail: Dict[str, float],
) -> RandomnessTestResult:
    """Build a p-value test result; every p-value must reach ``alpha``.

    scipy returns numpy scalars, so values are coerced to plain floats and
    the verdict to a plain bool before they reach a report.
    """

    p_values = [float(p) for p in p_values]
    return RandomnessTestResult(
        name=name,
        statistic=None if statistic is None else float(statistic),
        p_value=min(p_values),
        passed=bool(all(p >= alpha for p in p_values)),
        threshold=alpha,
        description=description,
        detail={key: float(value) for key, value in detail.items()},
    )


def frequency_monobit_test(bits: Sequence[int], alpha: float = 0.01) -> RandomnessTestResult:
    n = _require_bits(bits, "Monobit frequency test")
    ones = sum(1 for bit in bits if bit)
    s_obs = abs(2 * ones - n)
    return _nist_result(
        "frequency",
        s_obs,
        [erfc(s_obs / math.sqrt(2 * n))],
        alpha,
        "Proportion of ones against 1/2",
        {"n": n, "ones": ones},
    )


def block_frequency_test(
    bits: Sequence[int], block_size: int = 128, alpha: float = 0.01
) -> RandomnessTestResult:
    n = len(bits)
    if block_size <= 0:
        raise ValueError("Block size must be positive.")
    num_blocks = n // block_size
    if num_blocks == 0:
        raise InsufficientDataError("Bit sequence length must exceed block size.")

    chi_square = 4 * block_size * sum(
        (sum(bits[start : start + block_size]) / block_size - 0.5) ** 2
        for start in range(0, num_blocks * block_size, block_size)
    )
    return _nist_result(
        "block_frequency",
        chi_square,
        [gammaincc(num_blocks / 2, chi_square / 2)],
        alpha,
        "Proportion of ones within fixed-size blocks",
        {"num_blocks": num_blocks, "block_size": block_size},
    )


def runs_test(bits: Sequence[int], alpha: float = 0.01) -> RandomnessTestResult:
    n = _require_bits(bits, "Runs test")

    pi = sum(bits) / n
    tau = 2 / math.sqrt(n)
    if abs(pi - 0.5) >= tau:
        return _nist_result(
            "runs",
            None,
            [0.0],
            alpha,
            "Frequency pre-check failed; runs not evaluated",
            {"pi": pi, "tau": tau},
        )

    runs = 1 + sum(1 for prev, curr in zip(bits, bits[1:]) if prev != curr)
    expected_runs = 2 * n * pi * (1 - pi)
    spread = 2 * math.sqrt(2 * n) * pi * (1 - pi)
    return _nist_result(
        "runs",
        runs,
        [erfc(abs(runs - expected_runs) / spread)],
        alpha,
        "Number of uninterrupted runs of identical bits",
        {"pi": pi, "tau": tau, "expected_runs": expected_runs},
    )


def longest_run(bits: Sequence[int]) -> int:
    best = current = 0
    previous = None
    for bit in bits:
        current = current + 1 if bit == previous else 1
        previous = bit
        best = max(best, current)
    return best


def longest_run_test(bits: Sequence[int], alpha: float = 0.01) -> RandomnessTestResult:
    n = _require_bits(bits, "Longest run test")
    observed = longest_run(bits)
    expected = math.log2(n)
    z = (observed - expected) / math.sqrt(expected)
    return _nist_result(
        "longest_run",
        observed,
        [erfc(abs(z) / math.sqrt(2))],
        alpha,
        "Longest run of identical bits against log2(n)",
        {"expected": expected, "z_score": z},
    )


def _pattern_energy(bits: Sequence[int], m: int) -> float:
    """psi-squared statistic over overlapping, wrapped ``m``-bit patterns."""

    n = len(bits)
    if m == 0 or n == 0:
        return 0.0
    wrapped = list(bits) + list(bits[: m - 1])
    counts = Counter(tuple(wrapped[i : i + m]) for i in range(n))
    return sum(count * count for count in counts.values()) * (2**m) / n - n


def serial_test(bits: Sequence[int], m: int = 2, alpha: float = 0.01) -> RandomnessTestResult:
    if m < 2:
        raise ValueError("Serial test requires m >= 2.")
    _require_bits(bits, "Serial test")

    psi = [_pattern_energy(bits, m - offset) for offset in range(3)]
    first_difference = psi[0] - psi[1]
    second_difference = psi[0] - 2 * psi[1] + psi[2]
    p_first = gammaincc(2 ** (m - 1) / 2, first_difference / 2)
    p_second = gammaincc(2 ** (m - 2) / 2, second_difference / 2)
    result = _nist_result(
        "serial",
        first_difference,
        [p_first, p_second],
        alpha,
        f"Frequency of overlapping {m}-bit patterns",
        {"m": m, "p_value2": p_second, "delta2": second_difference},
    )
    # the reported p-value is the first-difference one
    return replace(result, p_value=float(p_first))


def _cumulative_sums_p_value(partial_sums: Sequence[int]) -> float:
    n = len(partial_sums)
    if n == 0:
        return 1.0
    z = max(abs(value) for value in partial_sums)
    if z == 0:
        return 1.0
    sqrt_n = math.sqrt(n)

    def _band(first_k: float, offset: int) -> float:
        ks = range(int(first_k), int((n / z - 1) / 4) + 1)
        return sum(
            normal_cdf((4 * k + offset) * z / sqrt_n)
            - normal_cdf((4 * k + offset - 2) * z / sqrt_n)
            for k in ks
        )

    inner = _band((-n / z + 1) / 4, 1)
    outer = _band((-n / z - 3) / 4, 3)
    return min(1.0, max(0.0, 1.0 - inner + outer))


def cumulative_sums_test(bits: Sequence[int], alpha: float = 0.01) -> RandomnessTestResult:
    _require_bits(bits, "Cumulative sums test")

    steps = [1 if bit else -1 for bit in bits]
    forward = list(accumulate(steps))
    p_forward = _cumulative_sums_p_value(forward)
    p_backward = _cumulative_sums_p_value(list(accumulate(reversed(steps))))
    return _nist_result(
        "cumulative_sums",
        max(abs(value) for value in forward),
        [p_forward, p_backward],
        alpha,
        "Maximum excursion of the +/-1 random walk",
        {"p_value_forward": p_forward, "p_value_backward": p_backward},
    )


def autocorrelation_test(
    bits: Sequence[int], threshold: float = 0.05
) -> RandomnessTestResult:
    n = _require_bits(bits, "Autocorrelation test")
    sampled = {lag: autocorrelation(bits, lag) for lag in SAMPLED_LAGS}
    scan = autocorrelations(bits, min(100, n // 10))
    max_index = max(range(len(scan)), key=lambda i: abs(scan[i])) if scan else 0
    worst = max(abs(value) for value in sampled.values())

    detail = {f"lag_{lag}": value for lag, value in sampled.items()}
    if scan:
        detail["max_lag"] = float(max_index + 1)
        detail["max_correlation"] = scan[max_index]
    return RandomnessTestResult(
        name="autocorrelation",
        statistic=worst,
        p_value=None,
        passed=all(abs(value) < threshold for value in sampled.values()),
        threshold=threshold,
        description="Sample autocorrelation at lags 1, 5 and 10",
        detail=detail,
    )


def pack_bytes(bits: Sequence[int]) -> bytes:
    """Pack bits MSB-first; a trailing partial byte is dropped."""

    usable = len(bits) - len(bits) % 8
    packed = bytearray()
    for start in range(0, usable, 8):
        byte = 0
        for bit in bits[start : start + 8]:
            byte = (byte << 1) | (1 if bit else 0)
        packed.append(byte)
    return bytes(packed)


def entropy_test(data: bytes, threshold: float = 7.9) -> RandomnessTestResult:
    entropy = shannon_entropy(Counter(data).values())
    return RandomnessTestResult(
        name="entropy",
        statistic=entropy,
        p_value=None,
        passed=entropy > threshold,
        threshold=threshold,
        description="Shannon entropy in bits per byte",
        detail={"bytes": float(len(data))},
    )


def compression_test(data: bytes, threshold: float = 0.1) -> RandomnessTestResult:
    unique = len(set(data))
    ratio = 1 - unique / 256
    return RandomnessTestResult(
        name="compression",
        statistic=ratio,
        p_value=None,
        passed=ratio < threshold,
        threshold=threshold,
        description="Share of byte values never observed",
        detail={"unique_bytes": float(unique)},
    )


def byte_chi_square_test(data: bytes, alpha: float = 0.01) -> RandomnessTestResult:
    if not data:
        raise InsufficientDataError("Chi-square test requires at least one byte.")
    counts = Counter(data)
    expected = len(data) / 256
    statistic = sum((counts.get(value, 0) - expected) ** 2 for value in range(256)) / expected
    p_value = chi_square_probability(statistic, 255)
    return RandomnessTestResult(
        name="chi_square",
        statistic=statistic,
        p_value=p_value,
        passed=p_value >= alpha,
        threshold=alpha,
        description="Goodness of fit of byte values to the uniform distribution",
        detail={"bytes": float(len(data))},
    )


def serial_correlation_test(data: bytes, threshold: float = 0.1) -> RandomnessTestResult:
    coefficient = autocorrelation(list(data), 1)
    return RandomnessTestResult(
        name="serial_correlation",
        statistic=coefficient,
        p_value=None,
        passed=abs(coefficient) < threshold,
        threshold=threshold,
        description="Lag-1 correlation between consecutive bytes",
    )


def quality_tier(score: float) -> str:
    if score >= 95:
        return "excellent"
    if score >= 85:
        return "good"
    if score >= 70:
        return "acceptable"
    if score >= 50:
        return "poor"
    return "failed"


_RECOMMENDATIONS = {
    "excellent": "Excellent randomness quality; suitable for all applications.",
    "good": "Good randomness quality; suitable for most applications.",
    "acceptable": "Acceptable randomness quality; monitor the source closely.",
    "poor": "Poor randomness quality; investigate the source before relying on it.",
    "failed": "Randomness tests failed; the source needs recalibration or replacement.",
}


def quality_recommendation(score: float) -> str:
    return _RECOMMENDATIONS[quality_tier(score)]


def randomness_test_suite(
    bits: Sequence[int], config: RandomnessConfig | None = None
) -> RandomnessSuiteResult:
    """Run every battery and combine their pass rates into one score."""

    config = config or RandomnessConfig()
    _require_bits(bits, "Randomness test suite")
    alpha = config.alpha
    data = pack_bytes(bits)

    batteries = [
        BatteryResult(
            name="nist",
            weight=BATTERY_WEIGHTS["nist"],
            tests=[
                block_frequency_test(bits, block_size=config.block_size, alpha=alpha),
                runs_test(bits, alpha=alpha),
                longest_run_test(bits, alpha=alpha),
                serial_test(bits, m=config.serial_block, alpha=alpha),
                cumulative_sums_test(bits, alpha=alpha),
            ],
        ),
        BatteryResult(
            name="ent",
            weight=BATTERY_WEIGHTS["ent"],
            tests=[
                entropy_test(data, threshold=config.entropy_threshold),
                compression_test(data, threshold=config.compression_threshold),
                byte_chi_square_test(data, alpha=alpha),
                serial_correlation_test(data, threshold=config.serial_correlation_threshold),
            ],
        ),
        BatteryResult(
            name="autocorrelation",
            weight=BATTERY_WEIGHTS["autocorrelation"],
            tests=[autocorrelation_test(bits, threshold=config.autocorrelation_threshold)],
        ),
        BatteryResult(
            name="frequency",
            weight=BATTERY_WEIGHTS["frequency"],
            tests=[frequency_monobit_test(bits, alpha=alpha)],
        ),
    ]
    score = sum(battery.pass_rate * battery.weight for battery in batteries)
    return RandomnessSuiteResult(
        total_bits=len(bits),
        alpha=alpha,
        batteries=batteries,
        overall_quality=score,
        recommendation=quality_recommendation(score),
    )


def run_quick_tests(bits: Sequence[int]) -> QuickTestResult:
    """Cheap subset used by health checks: frequency, runs, pair frequency."""

    n = _require_bits(bits, "Quick tests")
    quality = 100.0
    issues: List[str] = []

    ones_ratio = sum(1 for bit in bits if bit) / n
    if abs(ones_ratio - 0.5) > 0.01:
        quality -= 20
        issues.append(f"Frequency bias detected (ones ratio {ones_ratio:.4f}).")

    runs = 1 + sum(1 for prev, curr in zip(bits, bits[1:]) if prev != curr)
    expected_runs = (n + 1) / 2
    if abs(runs - expected_runs) / expected_runs > 0.1:
        quality -= 15
        issues.append(f"Unexpected run count ({runs}, expected about {expected_runs:.0f}).")

    # P(1 followed by 1) is 0.25 for an unbiased independent stream
    pair_frequency = sum(
        1 for prev, curr in zip(bits, bits[1:]) if prev and curr
    ) / (n - 1)
    if abs(pair_frequency - 0.25) > 0.05:
        quality -= 10
        issues.append(f"Adjacent-bit dependence detected ({pair_frequency:.4f}).")

    return QuickTestResult(
        quality=max(0.0, quality),
        ones_ratio=ones_ratio,
        runs=runs,
        pair_frequency=pair_frequency,
        issues=issues,
    )


__all__ = [
    "MIN_SEQUENCE_BITS",
    "BATTERY_WEIGHTS",
    "RandomnessTestResult",
    "BatteryResult",
    "RandomnessSuiteResult",
    "QuickTestResult",
    "frequency_monobit_test",
    "block_frequency_test",
    "runs_test",
    "longest_run",
    "longest_run_test",
    "serial_test",
    "cumulative_sums_test",
    "autocorrelation_test",
    "pack_bytes",
    "entropy_test",
    "compression_test",
    "byte_chi_square_test",
    "serial_correlation_test",
    "quality_tier",
    "quality_recommendation",
    "randomness_test_suite",
    "run_quick_tests",
]
