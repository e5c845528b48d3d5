from datetime import timedelta

import pytest

from conftest import START
from rngstats.baseline import (
    BaselineEstimator,
    analyze_drift,
    baseline_trend,
    calculate_baseline,
    calculate_long_term_drift,
    compare_baselines,
    detect_periodic_autocorrelation,
    detect_seasonal_patterns,
    predict_next_baseline,
)
from rngstats.errors import InsufficientDataError


def _hourly(means):
    """One baseline per hour whose mean is ``means[i]``."""

    return [
        calculate_baseline([m - 0.1, m + 0.1], START + timedelta(hours=index))
        for index, m in enumerate(means)
    ]


def test_calculate_baseline_moments():
    baseline = calculate_baseline([1, 2, 3, 4, 5], START)
    assert baseline.mean == 3.0
    assert baseline.variance == pytest.approx(2.5)
    assert baseline.skewness == pytest.approx(0.0, abs=1e-12)
    assert baseline.sample_size == 5
    low, high = baseline.confidence_interval
    assert low < 3.0 < high
    assert baseline.timestamp == START


def test_calculate_baseline_requires_values():
    with pytest.raises(InsufficientDataError):
        calculate_baseline([])


def test_short_history_has_no_drift():
    drift = analyze_drift(_hourly([0.5, 0.6, 0.7]))
    assert drift.direction == "stable"
    assert drift.slope_per_hour == 0.0
    assert drift.sample_size == 3


def test_linear_history_drifts_positive():
    drift = analyze_drift(_hourly([0.5 + 0.01 * hour for hour in range(10)]))
    assert drift.direction == "positive"
    assert drift.slope_per_hour == pytest.approx(0.01)
    assert drift.p_value < 0.001
    assert drift.correlation == pytest.approx(1.0)
    assert drift.change_points


def test_falling_history_drifts_negative():
    drift = analyze_drift(_hourly([0.6 - 0.01 * hour for hour in range(10)]))
    assert drift.direction == "negative"


def test_hourly_pattern_is_detected():
    day_one = [0.55 if hour % 2 == 0 else 0.45 for hour in range(24)]
    day_two = [mean + 0.001 for mean in day_one]
    patterns = detect_seasonal_patterns(_hourly(day_one + day_two))
    assert [pattern.label for pattern in patterns] == ["hourly"]
    (hourly,) = patterns
    assert hourly.period == 24
    assert hourly.confidence == 95.0
    assert hourly.amplitude == pytest.approx(0.05, abs=1e-3)


def test_flat_history_has_no_pattern():
    assert detect_seasonal_patterns(_hourly([0.5] * 48)) == []
    assert detect_seasonal_patterns(_hourly([0.5, 0.6] * 5)) == []


def test_compare_baselines():
    reference = calculate_baseline([99.0, 101.0] * 500)
    same = calculate_baseline([101.0, 99.0] * 500)
    assert compare_baselines(same, reference).change_type == "none"

    shifted = calculate_baseline([100.0, 102.0] * 500)
    comparison = compare_baselines(shifted, reference)
    assert comparison.mean_changed
    assert comparison.mean_difference == pytest.approx(1.0)
    assert comparison.change_type == "mean"

    wider = calculate_baseline([98.0, 102.0] * 500)
    assert compare_baselines(wider, reference).change_type == "variance"


def test_long_term_drift_needs_ten_intervals():
    assert calculate_long_term_drift(_hourly([0.5 + 0.02 * h for h in range(9)])) == 0.0
    slope = calculate_long_term_drift(_hourly([0.5 + 0.02 * h for h in range(12)]))
    assert slope == pytest.approx(0.02)


def test_periodic_autocorrelation_finds_cycle():
    found = dict(detect_periodic_autocorrelation(_hourly([0.0, 1.0, 0.0, -1.0] * 10)))
    assert 4 in found
    assert 2 not in found


def test_trend_and_prediction():
    assert baseline_trend(_hourly([0.5] * 6)) == "stable"
    assert baseline_trend(_hourly([0.4, 0.6, 0.4, 0.5, 0.5, 0.5])) == "improving"
    assert baseline_trend(_hourly([0.5, 0.5, 0.5, 0.4, 0.6, 0.4])) == "degrading"
    assert predict_next_baseline(_hourly([0.0, 1.0, 2.0, 3.0])) == pytest.approx(4.0)
    assert predict_next_baseline(_hourly([0.7])) == pytest.approx(0.7)
    assert predict_next_baseline([]) is None


def test_estimator_keeps_bounded_history():
    estimator = BaselineEstimator(history_limit=3)
    for hour in range(5):
        estimator.estimate([0.5, 0.5], START + timedelta(hours=hour))
    assert len(estimator.history) == 3
    assert estimator.history[0].timestamp == START + timedelta(hours=2)
    assert estimator.drift().direction == "stable"
    assert estimator.trend() == "stable"
    assert estimator.predict_next() == pytest.approx(0.5)


def test_hourly_f_ratio_uses_unweighted_group_offsets():
    day_one = [0.55 if hour % 2 == 0 else 0.45 for hour in range(24)]
    day_two = [mean + 0.001 for mean in day_one]
    (hourly,) = detect_seasonal_patterns(_hourly(day_one + day_two))
    # between = 24 * 0.05**2, within = 48 * 0.0005**2 over 48 - 24 degrees
    assert hourly.f_statistic == pytest.approx(0.06 / (1.2e-5 / 24), rel=1e-6)
