from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import START, build_trials
from rngstats.config import QualityThresholds
from rngstats.models import Trial
from rngstats.quality import (
    NO_DATA_RECOMMENDATION,
    AnomalyDetector,
    AnomalyReport,
    QualityController,
    QualityMetric,
    assess_data_integrity,
    assess_quality,
    detect_bias_anomalies,
    detect_missing_data,
    detect_outlier_anomalies,
    detect_pattern_anomalies,
    interval_ms,
    metric_status,
    proportions,
    quality_score,
    quality_status,
)


def _metric(status):
    return QualityMetric(name="bias", value=0.0, threshold=0.05, status=status)


def _anomaly(severity):
    return AnomalyReport(
        type="bias",
        severity=severity,
        description="",
        confidence=50.0,
        start_index=0,
        end_index=0,
    )


def test_score_penalties():
    assert quality_score([_metric("excellent")] * 4, []) == 100.0
    assert quality_score([_metric("warning")], []) == 90.0
    assert quality_score([_metric("good")], [_anomaly("high"), _anomaly("low")]) == 86.0
    assert quality_score([_metric("critical")] * 4, [_anomaly("critical")] * 2) == 0.0


def test_status_rules():
    assert quality_status(85.0, []) == "pass"
    assert quality_status(85.0, [_anomaly("high")]) == "warning"
    assert quality_status(79.0, []) == "warning"
    assert quality_status(90.0, [_anomaly("critical")]) == "fail"
    assert quality_status(49.0, []) == "fail"


def test_metric_status_bands():
    assert metric_status(0.04, 0.05) == "excellent"
    assert metric_status(0.09, 0.05) == "good"
    assert metric_status(0.19, 0.05) == "warning"
    assert metric_status(0.3, 0.05) == "critical"
    assert metric_status(0.96, 0.95, higher_is_better=True) == "excellent"
    assert metric_status(0.9, 0.95, higher_is_better=True) == "good"
    assert metric_status(0.7, 0.95, higher_is_better=True) == "warning"
    assert metric_status(0.5, 0.95, higher_is_better=True) == "critical"


def test_empty_window_fails_with_alert():
    report = assess_quality([])
    assert report.status == "fail"
    assert report.score == 0.0
    assert report.alert
    assert report.recommendations == [NO_DATA_RECOMMENDATION]


def test_random_stream_is_not_alerted(random_trials):
    report = QualityController().assess(random_trials(1000, seed=3))
    assert report.status in {"pass", "warning"}
    assert not report.alert
    assert report.sample_size == 1000
    assert {metric.name for metric in report.metrics} == {
        "bias",
        "variance",
        "autocorrelation",
        "entropy",
    }
    assert not [a for a in report.anomalies if a.type in {"bias", "missing_data", "timing"}]


def test_stuck_high_stream_is_critical(make_trials):
    report = assess_quality(make_trials([150] * 200))
    types = {anomaly.type for anomaly in report.anomalies}
    assert "bias" in types
    assert "pattern" in types
    bias = next(a for a in report.anomalies if a.type == "bias")
    assert bias.severity == "critical"
    assert report.status == "fail"
    assert report.alert


def test_bias_severity_escalates(make_trials):
    trials = make_trials([116] * 100)
    series = proportions(trials, 200)
    (anomaly,) = detect_bias_anomalies(trials, series, QualityThresholds())
    # |0.58 - 0.5| is between 1x and 2x the threshold
    assert anomaly.severity == "medium"
    assert anomaly.affected_trials == 100


def test_pattern_runs_break_on_ties(make_trials):
    values = [110] * 15 + [100] + [110] * 15
    assert detect_pattern_anomalies(make_trials(values), QualityThresholds(), 200) == []
    long_run = [110] * 30 + [90] * 60
    found = detect_pattern_anomalies(make_trials(long_run), QualityThresholds(), 200)
    assert [(a.severity, a.detail["run_length"]) for a in found] == [
        ("medium", 30),
        ("high", 60),
    ]


def test_gap_in_stream_is_missing_data():
    trials = build_trials([100, 101, 99, 100]) + [
        Trial(
            timestamp=START + timedelta(seconds=63),
            value=100,
            session_id="session-1",
            sequence_number=63,
        )
    ]
    intervals = [1000.0, 1000.0, 1000.0, 60000.0]
    (gap,) = detect_missing_data(trials, intervals, QualityThresholds())
    assert gap.detail["missed_trials"] == 59
    assert gap.start_index == 3 and gap.end_index == 4

    anomalies = AnomalyDetector().detect(trials)
    assert "missing_data" in {anomaly.type for anomaly in anomalies}
    assert "timing" in {anomaly.type for anomaly in anomalies}


def test_configured_interval_overrides_median():
    trials = build_trials([100] * 3)
    thresholds = QualityThresholds(expected_interval_ms=50.0)
    (gap,) = detect_missing_data(trials, [1000.0, 1000.0], thresholds)[:1]
    assert gap.detail["missed_trials"] == 19


def test_alternating_stream_is_correlated(make_trials):
    report = assess_quality(make_trials([110, 90] * 100))
    correlation = [a for a in report.anomalies if a.type == "correlation"]
    assert correlation
    assert correlation[0].detail["lag"] == 1
    assert correlation[0].severity == "high"


def test_integrity_counts_duplicates_and_gaps(make_trials):
    trials = make_trials([100, 100, 100])
    trials.append(
        Trial(
            timestamp=trials[-1].timestamp + timedelta(seconds=1),
            value=250,
            session_id="session-1",
            sequence_number=2,
        )
    )
    trials.append(
        Trial(
            timestamp=trials[-1].timestamp + timedelta(seconds=1),
            value=100,
            session_id="session-1",
            sequence_number=5,
        )
    )
    integrity = assess_data_integrity(trials, 200, QualityThresholds())
    assert integrity.duplicates == 1
    assert integrity.out_of_range == 1
    # sequence numbers 0..5 expected, {0, 1, 2, 5} observed
    assert integrity.completeness == pytest.approx(100 * 4 / 6)
    assert integrity.temporal_consistency == 100.0
    assert integrity.score < 95


def _injected(trials):
    thresholds = QualityThresholds()
    return (
        detect_bias_anomalies(trials, proportions(trials, 200), thresholds)
        + detect_pattern_anomalies(trials, thresholds, 200)
        + detect_outlier_anomalies(trials, interval_ms(trials), thresholds)
    )


def test_score_drops_with_each_injected_anomaly(make_trials):
    excellent = [_metric("excellent")] * 4

    clean = make_trials([101, 99] * 50)
    assert _injected(clean) == []
    scores = [quality_score(excellent, _injected(clean))]

    # mean 119 of 200 with runs of 19 split by ties
    biased = make_trials(([120] * 19 + [100]) * 5)
    assert [a.type for a in _injected(biased)] == ["bias"]
    scores.append(quality_score(excellent, _injected(biased)))

    values = ([120] * 19 + [100]) * 5
    values[19] = 120
    patterned = make_trials(values)
    assert sorted(a.type for a in _injected(patterned)) == ["bias", "pattern"]
    scores.append(quality_score(excellent, _injected(patterned)))

    late = patterned[:-1] + [
        replace(patterned[-1], timestamp=patterned[-1].timestamp + timedelta(seconds=59))
    ]
    assert sorted(a.type for a in _injected(late)) == ["bias", "outlier", "pattern"]
    scores.append(quality_score(excellent, _injected(late)))

    assert scores[0] == 100.0
    assert all(later < earlier for earlier, later in zip(scores, scores[1:]))
