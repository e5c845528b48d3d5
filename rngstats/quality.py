"""Anomaly detection and quality scoring for trial batches.

Every detector works on the normalized series ``value / N``. For a bit stream
(N = 1) this is the raw bit sequence, so the same thresholds apply at both
levels.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from statistics import median
from typing import Any, ClassVar, Dict, List, Sequence

from scipy import stats

from rngstats.config import QualityThresholds
from rngstats.mathutils import (
    autocorrelation,
    autocorrelations,
    mean,
    sample_variance,
    shannon_entropy,
    statistical_power,
)
from rngstats.models import DEFAULT_BITS_PER_TRIAL, Trial, utc_now

logger = logging.getLogger(__name__)

METRIC_PENALTIES = {"critical": 20, "warning": 10, "good": 2, "excellent": 0}
ANOMALY_PENALTIES = {"critical": 15, "high": 10, "medium": 5, "low": 2}
NO_DATA_RECOMMENDATION = "No data available for quality assessment"

_RECOMMENDATIONS = {
    "bias": "Investigate output bias and recalibrate the generator.",
    "pattern": "Check the generator for stuck or repeating output.",
    "correlation": "Serial dependence detected; review the post-processing stage.",
    "outlier": "Irregular trial timing; check the sampling clock.",
    "missing_data": "Gaps in the trial stream; verify data collection continuity.",
    "timing": "High timing variability; check system load and scheduling.",
}


@dataclass(frozen=True)
class QualityMetric:
    name: str
    value: float
    threshold: float
    status: str
    higher_is_better: bool = False


@dataclass(frozen=True)
class AnomalyReport:
    type: str
    severity: str
    description: str
    confidence: float
    start_index: int
    end_index: int
    start_time: datetime | None = None
    end_time: datetime | None = None
    affected_trials: int = 0
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IntegrityReport:
    completeness: float
    duplicates: int
    out_of_range: int
    temporal_consistency: float
    score: float


@dataclass(frozen=True)
class ValidityAssessment:
    sample_size_adequacy: float
    statistical_power: float
    effect_size_reliability: float
    confidence_interval_validity: float
    score: float


@dataclass(frozen=True)
class QualityReport:
    kind: ClassVar[str] = "quality_report"

    status: str
    score: float
    metrics: List[QualityMetric]
    anomalies: List[AnomalyReport]
    integrity: IntegrityReport
    validity: ValidityAssessment
    recommendations: List[str]
    alert: bool
    sample_size: int
    window_start: datetime | None = None
    window_end: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)


def proportions(trials: Sequence[Trial], bits_per_trial: int) -> List[float]:
    return [trial.value / bits_per_trial for trial in trials]


def interval_ms(trials: Sequence[Trial]) -> List[float]:
    return [
        (curr.timestamp - prev.timestamp).total_seconds() * 1000
        for prev, curr in zip(trials, trials[1:])
    ]


def _escalate(value: float, threshold: float) -> str:
    return "high" if value > 2 * threshold else "medium"


def _anomaly(
    trials: Sequence[Trial],
    kind: str,
    severity: str,
    description: str,
    confidence: float,
    start: int,
    end: int,
    **detail: Any,
) -> AnomalyReport:
    return AnomalyReport(
        type=kind,
        severity=severity,
        description=description,
        confidence=confidence,
        start_index=start,
        end_index=end,
        start_time=trials[start].timestamp,
        end_time=trials[end].timestamp,
        affected_trials=end - start + 1,
        detail=detail,
    )


def detect_bias_anomalies(
    trials: Sequence[Trial], series: Sequence[float], thresholds: QualityThresholds
) -> List[AnomalyReport]:
    """Sliding-window mean deviation from 1/2 (step = half a window)."""

    n = len(series)
    window = min(thresholds.bias_window, n)
    if window < 2:
        return []
    step = max(1, window // 2)
    anomalies: List[AnomalyReport] = []
    for start in range(0, n - window + 1, step):
        bias = abs(mean(series[start : start + window]) - 0.5)
        if bias <= thresholds.bias:
            continue
        if bias > 4 * thresholds.bias:
            severity = "critical"
        else:
            severity = _escalate(bias, thresholds.bias)
        anomalies.append(
            _anomaly(
                trials,
                "bias",
                severity,
                f"Window mean deviates from expectation by {bias:.4f}",
                min(95.0, bias * 1000),
                start,
                start + window - 1,
                bias=bias,
            )
        )
    return anomalies


def _side(value: int, bits_per_trial: int) -> int | None:
    doubled = 2 * value
    if doubled > bits_per_trial:
        return 1
    if doubled < bits_per_trial:
        return 0
    return None


def detect_pattern_anomalies(
    trials: Sequence[Trial], thresholds: QualityThresholds, bits_per_trial: int
) -> List[AnomalyReport]:
    """Long runs on one side of the expected mean (identical bits when N = 1)."""

    anomalies: List[AnomalyReport] = []

    def _close(start: int, end: int) -> None:
        length = end - start + 1
        if length <= thresholds.pattern_run_length:
            return
        severity = "high" if length > thresholds.pattern_high_run_length else "medium"
        anomalies.append(
            _anomaly(
                trials,
                "pattern",
                severity,
                f"Run of {length} consecutive trials on one side of the mean",
                min(95.0, length * 2.0),
                start,
                end,
                run_length=length,
            )
        )

    run_start = 0
    current: int | None = None
    for index, trial in enumerate(trials):
        side = _side(trial.value, bits_per_trial)
        if side is None or side != current:
            if current is not None:
                _close(run_start, index - 1)
            run_start = index
            current = side
    if current is not None and trials:
        _close(run_start, len(trials) - 1)
    return anomalies


def detect_correlation_anomalies(
    trials: Sequence[Trial], series: Sequence[float], thresholds: QualityThresholds
) -> List[AnomalyReport]:
    max_lag = min(thresholds.max_correlation_lag, len(series) // 10)
    anomalies: List[AnomalyReport] = []
    for lag, coefficient in enumerate(autocorrelations(series, max_lag), start=1):
        if abs(coefficient) <= thresholds.autocorrelation:
            continue
        anomalies.append(
            _anomaly(
                trials,
                "correlation",
                _escalate(abs(coefficient), thresholds.autocorrelation),
                f"Autocorrelation {coefficient:.4f} at lag {lag}",
                min(95.0, abs(coefficient) * 500),
                0,
                len(trials) - 1,
                lag=lag,
                coefficient=coefficient,
            )
        )
    return anomalies


def detect_outlier_anomalies(
    trials: Sequence[Trial], intervals: Sequence[float], thresholds: QualityThresholds
) -> List[AnomalyReport]:
    """Inter-trial intervals whose z-score exceeds the outlier threshold."""

    if len(intervals) < 3:
        return []
    avg = mean(intervals)
    std = math.sqrt(sample_variance(intervals))
    if std == 0:
        return []
    anomalies: List[AnomalyReport] = []
    for index, interval in enumerate(intervals):
        z = abs(interval - avg) / std
        if z <= thresholds.outlier:
            continue
        anomalies.append(
            _anomaly(
                trials,
                "outlier",
                "high" if z > 5 else "medium",
                f"Inter-trial interval of {interval:.1f} ms (z = {z:.2f})",
                min(95.0, z * 20),
                index,
                index + 1,
                interval_ms=interval,
                z_score=z,
            )
        )
    return anomalies


def expected_interval(intervals: Sequence[float], thresholds: QualityThresholds) -> float:
    if thresholds.expected_interval_ms is not None:
        return thresholds.expected_interval_ms
    positive = [interval for interval in intervals if interval > 0]
    return float(median(positive)) if positive else 0.0


def detect_missing_data(
    trials: Sequence[Trial], intervals: Sequence[float], thresholds: QualityThresholds
) -> List[AnomalyReport]:
    expected = expected_interval(intervals, thresholds)
    if expected <= 0:
        return []
    anomalies: List[AnomalyReport] = []
    for index, gap in enumerate(intervals):
        if gap <= thresholds.missing_gap_factor * expected:
            continue
        missed = int(gap // expected) - 1
        anomalies.append(
            _anomaly(
                trials,
                "missing_data",
                "high" if missed > 100 else "medium",
                f"Gap of {gap:.0f} ms, about {missed} missed trials",
                90.0,
                index,
                index + 1,
                gap_ms=gap,
                missed_trials=missed,
            )
        )
    return anomalies


def detect_timing_anomalies(
    trials: Sequence[Trial], intervals: Sequence[float], thresholds: QualityThresholds
) -> List[AnomalyReport]:
    if len(intervals) < 2:
        return []
    avg = mean(intervals)
    if avg <= 0:
        return []
    cv = math.sqrt(sample_variance(intervals)) / avg
    if cv <= thresholds.timing:
        return []
    return [
        _anomaly(
            trials,
            "timing",
            _escalate(cv, thresholds.timing),
            f"Coefficient of variation of trial timing is {cv:.3f}",
            min(95.0, cv * 100),
            0,
            len(trials) - 1,
            coefficient_of_variation=cv,
        )
    ]


def metric_status(value: float, threshold: float, higher_is_better: bool = False) -> str:
    if higher_is_better:
        if value >= threshold:
            return "excellent"
        if value >= 0.9 * threshold:
            return "good"
        if value >= 0.7 * threshold:
            return "warning"
        return "critical"
    if value <= threshold:
        return "excellent"
    if value <= 2 * threshold:
        return "good"
    if value <= 4 * threshold:
        return "warning"
    return "critical"


def binomial_entropy(bits_per_trial: int) -> float:
    """Entropy in bits of Binomial(N, 1/2)."""

    return float(stats.binom.entropy(bits_per_trial, 0.5)) / math.log(2)


def calculate_metrics(
    trials: Sequence[Trial],
    series: Sequence[float],
    thresholds: QualityThresholds,
    bits_per_trial: int,
) -> List[QualityMetric]:
    bias = abs(mean(series) - 0.5)
    expected_var = 1 / (4 * bits_per_trial)
    variance_deviation = abs(sample_variance(series) / expected_var - 1)
    lag_one = abs(autocorrelation(series, 1))
    reference = binomial_entropy(bits_per_trial)
    observed = shannon_entropy(Counter(trial.value for trial in trials).values())
    entropy_ratio = min(1.0, observed / reference) if reference > 0 else 0.0

    def _metric(name: str, value: float, threshold: float, higher: bool = False) -> QualityMetric:
        return QualityMetric(
            name=name,
            value=value,
            threshold=threshold,
            status=metric_status(value, threshold, higher),
            higher_is_better=higher,
        )

    return [
        _metric("bias", bias, thresholds.bias),
        _metric("variance", variance_deviation, thresholds.variance),
        _metric("autocorrelation", lag_one, thresholds.autocorrelation),
        _metric("entropy", entropy_ratio, thresholds.entropy, higher=True),
    ]


def quality_score(metrics: Sequence[QualityMetric], anomalies: Sequence[AnomalyReport]) -> float:
    score = 100.0
    score -= sum(METRIC_PENALTIES[metric.status] for metric in metrics)
    score -= sum(ANOMALY_PENALTIES[anomaly.severity] for anomaly in anomalies)
    return max(0.0, min(100.0, score))


def quality_status(score: float, anomalies: Sequence[AnomalyReport]) -> str:
    severities = {anomaly.severity for anomaly in anomalies}
    if score < 50 or "critical" in severities:
        return "fail"
    if score < 80 or "high" in severities:
        return "warning"
    return "pass"


def assess_data_integrity(
    trials: Sequence[Trial], bits_per_trial: int, thresholds: QualityThresholds
) -> IntegrityReport:
    """Completeness, duplicates, range and ordering checks in arrival order."""

    if not trials:
        return IntegrityReport(0.0, 0, 0, 0.0, 0.0)

    by_session: Dict[str, List[int]] = {}
    for trial in trials:
        by_session.setdefault(trial.session_id, []).append(trial.sequence_number)

    expected_total = 0
    observed_total = 0
    duplicates = 0
    for numbers in by_session.values():
        unique = set(numbers)
        duplicates += len(numbers) - len(unique)
        observed_total += len(unique)
        expected_total += max(unique) - min(unique) + 1
    completeness = 100.0 * observed_total / expected_total

    out_of_range = sum(1 for trial in trials if not 0 <= trial.value <= bits_per_trial)

    raw_intervals = interval_ms(trials)
    temporal = 100.0
    if raw_intervals:
        gap_limit = thresholds.missing_gap_factor * expected_interval(
            raw_intervals, thresholds
        )
        inconsistent = sum(
            1
            for interval in raw_intervals
            if interval < 0 or (gap_limit > 0 and interval > gap_limit)
        )
        temporal = 100.0 * (1 - inconsistent / len(raw_intervals))

    n = len(trials)
    score = (
        completeness * 0.3
        + (100.0 * (1 - out_of_range / n)) * 0.25
        + (100.0 * (1 - duplicates / n)) * 0.25
        + temporal * 0.2
    )
    return IntegrityReport(
        completeness=completeness,
        duplicates=duplicates,
        out_of_range=out_of_range,
        temporal_consistency=temporal,
        score=score,
    )


def assess_statistical_validity(
    series: Sequence[float], thresholds: QualityThresholds
) -> ValidityAssessment:
    n = len(series)
    if n == 0:
        return ValidityAssessment(0.0, 0.0, 0.0, 0.0, 0.0)

    adequacy = min(100.0, n / 1000 * 100)
    power = statistical_power(0.1, n) * 100
    # standard error of d is about 1/sqrt(n); compare it with a small effect
    reliability = max(0.0, 100.0 * (1 - 1 / (math.sqrt(n) * 0.1)))
    half_width = 1.96 * math.sqrt(sample_variance(series)) / math.sqrt(n)
    ci_validity = max(0.0, 100.0 * (1 - half_width / thresholds.bias))
    return ValidityAssessment(
        sample_size_adequacy=adequacy,
        statistical_power=power,
        effect_size_reliability=reliability,
        confidence_interval_validity=ci_validity,
        score=(adequacy + power + reliability + ci_validity) / 4,
    )


def generate_recommendations(
    anomalies: Sequence[AnomalyReport],
    metrics: Sequence[QualityMetric],
    integrity: IntegrityReport,
) -> List[str]:
    recommendations: List[str] = []
    for kind in dict.fromkeys(anomaly.type for anomaly in anomalies):
        recommendations.append(_RECOMMENDATIONS[kind])
    for metric in metrics:
        if metric.status in {"warning", "critical"}:
            recommendations.append(
                f"Metric '{metric.name}' is {metric.status} "
                f"({metric.value:.4f} against {metric.threshold})."
            )
    if integrity.score < 95:
        recommendations.append(
            "Data integrity issues detected; check sequence numbering and storage."
        )
    if not recommendations:
        recommendations.append("Data quality is within normal parameters.")
    return recommendations


def _empty_report() -> QualityReport:
    return QualityReport(
        status="fail",
        score=0.0,
        metrics=[],
        anomalies=[],
        integrity=IntegrityReport(0.0, 0, 0, 0.0, 0.0),
        validity=ValidityAssessment(0.0, 0.0, 0.0, 0.0, 0.0),
        recommendations=[NO_DATA_RECOMMENDATION],
        alert=True,
        sample_size=0,
    )


class AnomalyDetector:
    """Runs every anomaly detector over one trial batch."""

    def __init__(
        self,
        thresholds: QualityThresholds | None = None,
        bits_per_trial: int = DEFAULT_BITS_PER_TRIAL,
    ) -> None:
        self.thresholds = thresholds or QualityThresholds()
        self.bits_per_trial = bits_per_trial

    def detect(self, trials: Sequence[Trial]) -> List[AnomalyReport]:
        ordered = sorted(trials, key=lambda trial: (trial.timestamp, trial.sequence_number))
        if not ordered:
            return []
        series = proportions(ordered, self.bits_per_trial)
        intervals = interval_ms(ordered)
        return [
            *detect_bias_anomalies(ordered, series, self.thresholds),
            *detect_pattern_anomalies(ordered, self.thresholds, self.bits_per_trial),
            *detect_correlation_anomalies(ordered, series, self.thresholds),
            *detect_outlier_anomalies(ordered, intervals, self.thresholds),
            *detect_missing_data(ordered, intervals, self.thresholds),
            *detect_timing_anomalies(ordered, intervals, self.thresholds),
        ]


class QualityController:
    """Scores a trial batch and turns detector output into a QualityReport."""

    def __init__(
        self,
        thresholds: QualityThresholds | None = None,
        bits_per_trial: int = DEFAULT_BITS_PER_TRIAL,
    ) -> None:
        self.thresholds = thresholds or QualityThresholds()
        self.bits_per_trial = bits_per_trial
        self.detector = AnomalyDetector(self.thresholds, bits_per_trial)

    def assess(self, trials: Sequence[Trial]) -> QualityReport:
        if not trials:
            logger.info("Quality assessment requested for an empty window")
            return _empty_report()

        ordered = sorted(trials, key=lambda trial: (trial.timestamp, trial.sequence_number))
        series = proportions(ordered, self.bits_per_trial)
        anomalies = self.detector.detect(ordered)
        metrics = calculate_metrics(ordered, series, self.thresholds, self.bits_per_trial)
        integrity = assess_data_integrity(trials, self.bits_per_trial, self.thresholds)
        validity = assess_statistical_validity(series, self.thresholds)

        score = quality_score(metrics, anomalies)
        status = quality_status(score, anomalies)
        alert = status == "fail" or any(a.severity == "critical" for a in anomalies)
        if alert:
            logger.warning(
                "Quality alert: status=%s score=%.1f anomalies=%d",
                status,
                score,
                len(anomalies),
            )

        return QualityReport(
            status=status,
            score=score,
            metrics=metrics,
            anomalies=anomalies,
            integrity=integrity,
            validity=validity,
            recommendations=generate_recommendations(anomalies, metrics, integrity),
            alert=alert,
            sample_size=len(ordered),
            window_start=ordered[0].timestamp,
            window_end=ordered[-1].timestamp,
        )


def assess_quality(
    trials: Sequence[Trial],
    thresholds: QualityThresholds | None = None,
    bits_per_trial: int = DEFAULT_BITS_PER_TRIAL,
) -> QualityReport:
    return QualityController(thresholds, bits_per_trial).assess(trials)


__all__ = [
    "NO_DATA_RECOMMENDATION",
    "QualityMetric",
    "AnomalyReport",
    "IntegrityReport",
    "ValidityAssessment",
    "QualityReport",
    "proportions",
    "interval_ms",
    "detect_bias_anomalies",
    "detect_pattern_anomalies",
    "detect_correlation_anomalies",
    "detect_outlier_anomalies",
    "detect_missing_data",
    "detect_timing_anomalies",
    "metric_status",
    "binomial_entropy",
    "calculate_metrics",
    "quality_score",
    "quality_status",
    "assess_data_integrity",
    "assess_statistical_validity",
    "generate_recommendations",
    "AnomalyDetector",
    "QualityController",
    "assess_quality",
]
