"""Calibration orchestration: standard, extended and health-check runs.

At most one calibration runs per process. The guard is a module-level lock
taken without blocking, so a second request fails at once with
:class:`ConcurrentCalibrationError`. Progress is published through an
immutable :class:`CalibrationStatus` snapshot that callers poll, and the
``submit_*`` methods return a :class:`concurrent.futures.Future`.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, ClassVar, Dict, List, Mapping, Sequence

import numpy as np

from rngstats.baseline import (
    BaselineEstimator,
    BaselineResult,
    DriftAnalysis,
    PeriodicPattern,
    analyze_drift,
    calculate_baseline,
    calculate_long_term_drift,
    detect_periodic_autocorrelation,
    detect_seasonal_patterns,
)
from rngstats.config import EngineConfig
from rngstats.errors import ConcurrentCalibrationError
from rngstats.models import utc_now
from rngstats.randomness import (
    QuickTestResult,
    RandomnessSuiteResult,
    quality_tier,
    randomness_test_suite,
    run_quick_tests,
)
from rngstats.sources import (
    BitSource,
    EnvironmentProbe,
    PsutilResourceProbe,
    ResourceProbe,
    SystemResources,
)

logger = logging.getLogger(__name__)

IDLE = "idle"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

GENERATION_CHUNK = 10_000
TIMING_SAMPLES = 20

_calibration_lock = threading.Lock()


@dataclass(frozen=True)
class ProgressCheckpoint:
    phase: str
    progress: float
    timestamp: datetime


@dataclass(frozen=True)
class CalibrationStatus:
    state: str = IDLE
    calibration_type: str | None = None
    calibration_id: str | None = None
    phase: str | None = None
    progress: float = 0.0
    checkpoints: tuple[ProgressCheckpoint, ...] = ()
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None


@dataclass(frozen=True)
class CalibrationResult:
    kind: ClassVar[str] = "calibration"

    calibration_id: str
    started_at: datetime
    completed_at: datetime
    total_bits: int
    suite: RandomnessSuiteResult
    baseline: BaselineResult
    pass_rate: float
    health_score: float
    quality: str
    recommendations: List[str]
    next_calibration_due: datetime


@dataclass(frozen=True)
class ExtendedCalibrationResult:
    kind: ClassVar[str] = "extended_calibration"

    calibration_id: str
    started_at: datetime
    completed_at: datetime
    requested_duration: float
    actual_duration: float
    cancelled: bool
    total_bits: int
    suite: RandomnessSuiteResult
    baseline: BaselineResult
    intervals: List[BaselineResult]
    long_term_drift: float
    drift: DriftAnalysis
    periodic_lags: List[tuple[int, float]]
    seasonal_patterns: List[PeriodicPattern]
    environmental_correlations: Dict[str, float]
    degradation_indicators: List[str]
    pass_rate: float
    health_score: float
    quality: str
    recommendations: List[str]
    next_calibration_due: datetime


@dataclass(frozen=True)
class HealthCheckResult:
    kind: ClassVar[str] = "health_check"

    overall_health: float
    rng_performance: float
    timing_accuracy: float
    data_integrity: float
    quick_tests: QuickTestResult
    resources: SystemResources | None
    recommendations: List[str]
    sample_size: int
    created_at: datetime = field(default_factory=utc_now)


def _quality_near(value: float, target: float) -> float:
    return 100.0 if abs(value - target) < 0.01 else 80.0


def calibration_health(pass_rate: float, baseline: BaselineResult) -> float:
    """Blend of test pass rate (60%) and baseline mean/variance quality."""

    return (
        pass_rate * 0.6
        + _quality_near(baseline.mean, 0.5) * 0.2
        + _quality_near(baseline.variance, 0.25) * 0.2
    )


def calibration_recommendations(
    suite: RandomnessSuiteResult, baseline: BaselineResult
) -> List[str]:
    recommendations: List[str] = []
    failed = [test.name for test in suite.tests if not test.passed]
    if suite.pass_rate < 90:
        recommendations.append(
            f"Randomness pass rate is {suite.pass_rate:.1f}%; review the failed tests."
        )
    if failed:
        recommendations.append(f"Failed tests: {', '.join(failed)}.")
    if abs(baseline.mean - 0.5) >= 0.01:
        recommendations.append(
            f"Output mean {baseline.mean:.4f} deviates from 0.5; check the source for bias."
        )
    if abs(baseline.variance - 0.25) >= 0.01:
        recommendations.append(
            f"Output variance {baseline.variance:.4f} deviates from 0.25; check source stability."
        )
    if not recommendations:
        recommendations.append("System operating within normal parameters")
    return recommendations


def degradation_indicators(
    suite: RandomnessSuiteResult, baseline: BaselineResult, drift: DriftAnalysis
) -> List[str]:
    indicators: List[str] = []
    if suite.pass_rate < 85:
        indicators.append(f"Test pass rate dropped to {suite.pass_rate:.1f}%")
    if abs(baseline.mean - 0.5) > 0.005:
        indicators.append(f"Mean drifted to {baseline.mean:.4f}")
    if not 0.24 <= baseline.variance <= 0.26:
        indicators.append(f"Variance outside [0.24, 0.26]: {baseline.variance:.4f}")
    if drift.direction != "stable":
        indicators.append(
            f"Long-term {drift.direction} drift of {drift.slope_per_hour:.5f} per hour"
        )
    return indicators


def environmental_correlations(
    intervals: Sequence[BaselineResult], readings: Sequence[Mapping[str, float] | None]
) -> Dict[str, float]:
    """Pearson correlation between interval means and each supplied signal."""

    present = [
        (baseline.mean, reading)
        for baseline, reading in zip(intervals, readings)
        if reading is not None
    ]
    if len(present) < 3:
        return {}
    keys = set.intersection(*(set(reading) for _, reading in present))
    means = np.asarray([value for value, _ in present], dtype=float)
    correlations: Dict[str, float] = {}
    for key in sorted(keys):
        signal = np.asarray([float(reading[key]) for _, reading in present])
        if means.std() == 0 or signal.std() == 0:
            correlations[key] = 0.0
            continue
        correlations[key] = float(np.corrcoef(means, signal)[0, 1])
    return correlations


class CalibrationOrchestrator:
    """Sequences bit generation, the test battery and the baseline estimator."""

    def __init__(
        self,
        source: BitSource,
        config: EngineConfig | None = None,
        environment_probe: EnvironmentProbe | None = None,
        resource_probe: ResourceProbe | None = None,
        clock: Callable[[], float] = time.monotonic,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.source = source
        self.config = config or EngineConfig()
        self.environment_probe = environment_probe
        self.resource_probe = resource_probe or PsutilResourceProbe()
        self.baselines = BaselineEstimator(self.config.calibration)
        self._clock = clock
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="calibration"
        )
        self._status = CalibrationStatus()
        self._status_guard = threading.Lock()
        self._cancel = threading.Event()

    # status -----------------------------------------------------------------

    def status(self) -> CalibrationStatus:
        with self._status_guard:
            return self._status

    @property
    def is_running(self) -> bool:
        return self.status().state == RUNNING

    def _update(self, **changes) -> None:
        with self._status_guard:
            self._status = replace(self._status, **changes)

    def _checkpoint(self, phase: str, progress: float) -> None:
        with self._status_guard:
            checkpoint = ProgressCheckpoint(phase, progress, utc_now())
            self._status = replace(
                self._status,
                phase=phase,
                progress=progress,
                checkpoints=self._status.checkpoints + (checkpoint,),
            )
        logger.debug("Calibration progress: %s %.1f%%", phase, progress)

    def cancel(self) -> bool:
        """Ask a running extended calibration to stop after the current interval."""

        if not self.is_running:
            return False
        self._cancel.set()
        logger.info("Calibration cancellation requested")
        return True

    # lifecycle ----------------------------------------------------------------

    def _acquire(self, calibration_type: str) -> str:
        if not _calibration_lock.acquire(blocking=False):
            raise ConcurrentCalibrationError("A calibration is already running.")
        calibration_id = uuid.uuid4().hex
        self._cancel.clear()
        with self._status_guard:
            self._status = CalibrationStatus(
                state=RUNNING,
                calibration_type=calibration_type,
                calibration_id=calibration_id,
                phase="starting",
                started_at=utc_now(),
            )
        logger.info("Calibration started (type=%s id=%s)", calibration_type, calibration_id)
        return calibration_id

    def _run(self, task: Callable[..., object], calibration_id: str, *args):
        try:
            result = task(calibration_id, *args)
        except Exception as exc:
            self._update(state=FAILED, error=str(exc), finished_at=utc_now())
            logger.exception("Calibration %s failed", calibration_id)
            raise
        else:
            self._update(state=COMPLETED, phase="completed", progress=100.0, finished_at=utc_now())
            logger.info("Calibration completed (id=%s)", calibration_id)
            return result
        finally:
            _calibration_lock.release()

    def _submit(self, calibration_type: str, task: Callable[..., object], *args) -> Future:
        calibration_id = self._acquire(calibration_type)
        try:
            return self._executor.submit(self._run, task, calibration_id, *args)
        except Exception:
            self._update(state=FAILED, error="submission failed", finished_at=utc_now())
            _calibration_lock.release()
            raise

    def _check_total_bits(self, total_bits: int | None) -> None:
        minimum = self.config.randomness.minimum_bits
        if total_bits is not None and total_bits < minimum:
            raise ValueError(
                f"total_bits must be at least {minimum} to run the randomness battery."
            )

    def run_standard_calibration(self, total_bits: int | None = None) -> CalibrationResult:
        self._check_total_bits(total_bits)
        calibration_id = self._acquire("standard")
        return self._run(self._standard, calibration_id, total_bits)

    def submit_standard_calibration(self, total_bits: int | None = None) -> Future:
        self._check_total_bits(total_bits)
        return self._submit("standard", self._standard, total_bits)

    def run_extended_calibration(self, duration_seconds: float) -> ExtendedCalibrationResult:
        calibration_id = self._acquire("extended")
        return self._run(self._extended, calibration_id, duration_seconds)

    def submit_extended_calibration(self, duration_seconds: float) -> Future:
        return self._submit("extended", self._extended, duration_seconds)

    # tasks --------------------------------------------------------------------

    def _generate(self, total: int, progress_span: float) -> List[int]:
        bits: List[int] = []
        while len(bits) < total:
            bits.extend(self.source.generate_bits(min(GENERATION_CHUNK, total - len(bits))))
            self._checkpoint("generating_data", progress_span * len(bits) / total)
        return bits

    def _run_suite(self, bits: Sequence[int], progress: float) -> RandomnessSuiteResult:
        self._checkpoint("running_tests", progress)
        logger.info("Randomness tests started on %d bits", len(bits))
        suite = randomness_test_suite(bits, self.config.randomness)
        logger.info(
            "Randomness tests completed: %d/%d passed, quality %.1f",
            suite.passed_count,
            len(suite.tests),
            suite.overall_quality,
        )
        return suite

    def _standard(self, calibration_id: str, total_bits: int | None) -> CalibrationResult:
        started_at = self.status().started_at or utc_now()
        total = total_bits or self.config.calibration.calibration_bits
        bits = self._generate(total, 40.0)
        suite = self._run_suite(bits, 40.0)

        self._checkpoint("calculating_baseline", 80.0)
        baseline = self.baselines.estimate(bits)
        health = calibration_health(suite.pass_rate, baseline)
        completed_at = utc_now()
        return CalibrationResult(
            calibration_id=calibration_id,
            started_at=started_at,
            completed_at=completed_at,
            total_bits=len(bits),
            suite=suite,
            baseline=baseline,
            pass_rate=suite.pass_rate,
            health_score=health,
            quality=quality_tier((suite.pass_rate + health) / 2),
            recommendations=calibration_recommendations(suite, baseline),
            next_calibration_due=completed_at + self.config.calibration.schedule_interval,
        )

    def _read_environment(self) -> Mapping[str, float] | None:
        if self.environment_probe is None:
            return None
        try:
            return dict(self.environment_probe.read())
        except Exception:  # noqa: BLE001  # side signals must not abort calibration
            logger.warning("Environment probe failed; continuing without reading", exc_info=True)
            return None

    def _extended(self, calibration_id: str, duration_seconds: float) -> ExtendedCalibrationResult:
        if duration_seconds <= 0:
            raise ValueError("Extended calibration duration must be positive.")
        settings = self.config.calibration
        started_at = self.status().started_at or utc_now()
        sampling_interval = min(settings.max_sampling_interval, duration_seconds / 100)
        start = self._clock()
        deadline = start + duration_seconds

        bits: List[int] = []
        intervals: List[BaselineResult] = []
        readings: List[Mapping[str, float] | None] = []
        while True:
            chunk = self.source.generate_bits(settings.bits_per_interval)
            bits.extend(chunk)
            intervals.append(calculate_baseline(chunk, utc_now()))
            readings.append(self._read_environment())

            elapsed = self._clock() - start
            self._checkpoint(
                "collecting_intervals", min(80.0, 80.0 * elapsed / duration_seconds)
            )
            if elapsed >= duration_seconds or self._cancel.is_set():
                break
            if self._cancel.wait(max(0.0, min(sampling_interval, deadline - self._clock()))):
                break

        cancelled = self._cancel.is_set()
        actual = self._clock() - start
        if cancelled:
            logger.info(
                "Extended calibration %s cancelled after %d intervals", calibration_id, len(intervals)
            )
        missing = self.config.randomness.minimum_bits - len(bits)
        if missing > 0:
            # short or cancelled runs still need one battery-sized sample
            bits.extend(self.source.generate_bits(missing))
            logger.info(
                "Extended calibration %s topped up with %d bits for the test battery",
                calibration_id,
                missing,
            )

        suite = self._run_suite(bits, 80.0)
        self._checkpoint("analyzing_intervals", 90.0)
        baseline = self.baselines.estimate(bits)
        drift = analyze_drift(intervals, settings)
        try:
            correlations = environmental_correlations(intervals, readings)
        except Exception:  # noqa: BLE001  # derived metric, degrade to empty
            logger.warning("Environmental correlation failed", exc_info=True)
            correlations = {}

        health = calibration_health(suite.pass_rate, baseline)
        completed_at = utc_now()
        return ExtendedCalibrationResult(
            calibration_id=calibration_id,
            started_at=started_at,
            completed_at=completed_at,
            requested_duration=duration_seconds,
            actual_duration=actual,
            cancelled=cancelled,
            total_bits=len(bits),
            suite=suite,
            baseline=baseline,
            intervals=intervals,
            long_term_drift=calculate_long_term_drift(intervals),
            drift=drift,
            periodic_lags=detect_periodic_autocorrelation(intervals),
            seasonal_patterns=detect_seasonal_patterns(intervals, settings),
            environmental_correlations=correlations,
            degradation_indicators=degradation_indicators(suite, baseline, drift),
            pass_rate=suite.pass_rate,
            health_score=health,
            quality=quality_tier((suite.pass_rate + health) / 2),
            recommendations=calibration_recommendations(suite, baseline),
            next_calibration_due=completed_at + settings.schedule_interval,
        )

    # health check -------------------------------------------------------------

    def _read_resources(self) -> SystemResources | None:
        try:
            return self.resource_probe.read()
        except Exception:  # noqa: BLE001  # resource signals are optional
            logger.warning("Resource probe failed; health check continues", exc_info=True)
            return None

    def run_health_check(self) -> HealthCheckResult:
        """Quick hardware check; independent of the calibration lock."""

        sample_size = self.config.calibration.health_check_bits
        started = time.perf_counter()
        bits = self.source.generate_bits(sample_size)
        elapsed_ms = (time.perf_counter() - started) * 1000
        # 10 s for the whole sample scores 0
        rng_performance = max(0.0, 100.0 - elapsed_ms / 100)

        durations: List[float] = []
        for _ in range(TIMING_SAMPLES):
            tick = time.perf_counter()
            self.source.generate_bits(100)
            durations.append(time.perf_counter() - tick)
        average = sum(durations) / len(durations)
        jitter = math.sqrt(sum((d - average) ** 2 for d in durations) / len(durations))
        timing_accuracy = max(0.0, 100.0 * (1 - min(1.0, jitter / average))) if average else 100.0

        valid = sum(1 for bit in bits if bit in (0, 1))
        data_integrity = 100.0 * valid / len(bits) if bits else 0.0
        quick = run_quick_tests(bits)
        resources = self._read_resources()
        cpu_headroom = 100.0 - resources.cpu_percent if resources else 100.0
        memory_headroom = 100.0 - resources.memory_percent if resources else 100.0

        overall = (
            quick.quality * 0.3
            + rng_performance * 0.2
            + timing_accuracy * 0.1
            + data_integrity * 0.2
            + cpu_headroom * 0.1
            + memory_headroom * 0.1
        )

        recommendations = list(quick.issues)
        if rng_performance < 50:
            recommendations.append("Bit generation is slow; check the source device.")
        if timing_accuracy < 70:
            recommendations.append("Generation timing is irregular; check system scheduling.")
        if data_integrity < 100:
            recommendations.append("Source produced values other than 0 and 1.")
        if resources and resources.cpu_percent > 80:
            recommendations.append("CPU usage is high; reduce load during collection.")
        if resources and resources.memory_percent > 85:
            recommendations.append("Memory usage is high; free memory before long runs.")
        if not recommendations:
            recommendations.append("Hardware operating normally.")

        return HealthCheckResult(
            overall_health=overall,
            rng_performance=rng_performance,
            timing_accuracy=timing_accuracy,
            data_integrity=data_integrity,
            quick_tests=quick,
            resources=resources,
            recommendations=recommendations,
            sample_size=len(bits),
        )

    def shutdown(self) -> None:
        self._cancel.set()
        self._executor.shutdown(wait=False)


__all__ = [
    "IDLE",
    "RUNNING",
    "COMPLETED",
    "FAILED",
    "ProgressCheckpoint",
    "CalibrationStatus",
    "CalibrationResult",
    "ExtendedCalibrationResult",
    "HealthCheckResult",
    "calibration_health",
    "calibration_recommendations",
    "degradation_indicators",
    "environmental_correlations",
    "CalibrationOrchestrator",
]
