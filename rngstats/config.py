"""Immutable configuration objects for the analysis engine.

Every value is validated once, when the object is built. Analyses receive the
objects explicitly, so there is no module-level threshold state to mutate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from rngstats.errors import InvalidConfigurationError
from rngstats.models import DEFAULT_BITS_PER_TRIAL

# shortest bit sequence the randomness battery accepts
MIN_SEQUENCE_BITS = 100

SCHEDULE_INTERVALS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
    "quarterly": timedelta(days=90),
}


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise InvalidConfigurationError(message)


def _probability(name: str, value: float) -> None:
    _require(0 < value < 1, f"{name} must be strictly between 0 and 1 (got {value}).")


def _positive(name: str, value: float) -> None:
    _require(value > 0, f"{name} must be positive (got {value}).")


@dataclass(frozen=True)
class AnalysisConfig:
    """Settings for the trial-level significance, excursion and trend analyses."""

    bits_per_trial: int = DEFAULT_BITS_PER_TRIAL
    alpha: float = 0.05
    confidence_level: float = 0.95
    excursion_threshold: float = 2.0
    excursion_min_duration: int = 100
    trend_window: int = 100
    change_point_sigma: float = 2.0

    def __post_init__(self) -> None:
        _require(
            self.bits_per_trial >= 1,
            f"bits_per_trial must be at least 1 (got {self.bits_per_trial}).",
        )
        _probability("alpha", self.alpha)
        _probability("confidence_level", self.confidence_level)
        _positive("excursion_threshold", self.excursion_threshold)
        _require(
            self.excursion_min_duration >= 1,
            "excursion_min_duration must be at least 1.",
        )
        # the trend step is a quarter window and must stay at least one trial
        _require(self.trend_window >= 4, "trend_window must be at least 4.")
        _positive("change_point_sigma", self.change_point_sigma)


@dataclass(frozen=True)
class QualityThresholds:
    """Thresholds for the anomaly detectors and quality metrics."""

    bias: float = 0.05
    variance: float = 0.1
    autocorrelation: float = 0.1
    entropy: float = 0.95
    outlier: float = 3.0
    timing: float = 0.1
    pattern_run_length: int = 20
    pattern_high_run_length: int = 50
    bias_window: int = 1000
    max_correlation_lag: int = 100
    missing_gap_factor: float = 10.0
    expected_interval_ms: float | None = None

    def __post_init__(self) -> None:
        _require(0 < self.bias <= 0.5, f"bias must be in (0, 0.5] (got {self.bias}).")
        _positive("variance", self.variance)
        _probability("autocorrelation", self.autocorrelation)
        _require(
            0 < self.entropy <= 1,
            f"entropy must be in (0, 1] (got {self.entropy}).",
        )
        _positive("outlier", self.outlier)
        _positive("timing", self.timing)
        _require(self.pattern_run_length >= 1, "pattern_run_length must be at least 1.")
        _require(
            self.pattern_high_run_length >= self.pattern_run_length,
            "pattern_high_run_length must not be below pattern_run_length.",
        )
        _require(self.bias_window >= 2, "bias_window must be at least 2.")
        _require(self.max_correlation_lag >= 1, "max_correlation_lag must be at least 1.")
        _require(self.missing_gap_factor > 1, "missing_gap_factor must exceed 1.")
        if self.expected_interval_ms is not None:
            _positive("expected_interval_ms", self.expected_interval_ms)


@dataclass(frozen=True)
class RandomnessConfig:
    """Settings for the randomness test battery."""

    alpha: float = 0.01
    block_size: int = 128
    serial_block: int = 2
    autocorrelation_threshold: float = 0.05
    entropy_threshold: float = 7.9
    compression_threshold: float = 0.1
    serial_correlation_threshold: float = 0.1

    def __post_init__(self) -> None:
        _probability("alpha", self.alpha)
        _require(self.block_size >= 2, "block_size must be at least 2.")
        _require(self.serial_block >= 2, "serial_block must be at least 2.")
        _probability("autocorrelation_threshold", self.autocorrelation_threshold)
        _require(
            0 < self.entropy_threshold <= 8,
            "entropy_threshold is measured in bits per byte and must be in (0, 8].",
        )
        _probability("compression_threshold", self.compression_threshold)
        _probability("serial_correlation_threshold", self.serial_correlation_threshold)

    @property
    def minimum_bits(self) -> int:
        """Fewest bits a full battery run needs (one block at least)."""

        return max(MIN_SEQUENCE_BITS, self.block_size)


@dataclass(frozen=True)
class CalibrationConfig:
    """Settings for calibration runs and the baseline estimator."""

    calibration_bits: int = 100_000
    health_check_bits: int = 10_000
    bits_per_interval: int = 1000
    max_sampling_interval: float = 60.0
    schedule: str = "monthly"
    drift_threshold: float = 0.001
    change_point_threshold: float = 0.01
    periodicity_confidence_floor: float = 50.0

    def __post_init__(self) -> None:
        _require(
            self.calibration_bits >= MIN_SEQUENCE_BITS,
            f"calibration_bits must be at least {MIN_SEQUENCE_BITS}.",
        )
        _require(
            self.health_check_bits >= MIN_SEQUENCE_BITS,
            f"health_check_bits must be at least {MIN_SEQUENCE_BITS}.",
        )
        _require(self.bits_per_interval >= 1, "bits_per_interval must be at least 1.")
        _positive("max_sampling_interval", self.max_sampling_interval)
        _require(
            self.schedule in SCHEDULE_INTERVALS,
            f"schedule must be one of {sorted(SCHEDULE_INTERVALS)} (got {self.schedule!r}).",
        )
        _positive("drift_threshold", self.drift_threshold)
        _positive("change_point_threshold", self.change_point_threshold)
        _require(
            0 <= self.periodicity_confidence_floor <= 100,
            "periodicity_confidence_floor must be a percentage.",
        )

    @property
    def schedule_interval(self) -> timedelta:
        return SCHEDULE_INTERVALS[self.schedule]


@dataclass(frozen=True)
class EngineConfig:
    """Bundle of every engine configuration object."""

    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    quality: QualityThresholds = field(default_factory=QualityThresholds)
    randomness: RandomnessConfig = field(default_factory=RandomnessConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)

    def __post_init__(self) -> None:
        minimum = self.randomness.minimum_bits
        _require(
            self.calibration.calibration_bits >= minimum,
            f"calibration_bits must cover the randomness battery "
            f"(at least {minimum} bits for block_size {self.randomness.block_size}).",
        )


__all__ = [
    "MIN_SEQUENCE_BITS",
    "SCHEDULE_INTERVALS",
    "AnalysisConfig",
    "QualityThresholds",
    "RandomnessConfig",
    "CalibrationConfig",
    "EngineConfig",
]
