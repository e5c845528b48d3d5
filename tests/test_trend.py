import pytest

from rngstats.config import AnalysisConfig
from rngstats.trend import detect_change_points, detect_trend, windowed_means


def test_windows_step_by_quarter(make_trials):
    windows = windowed_means(make_trials([100] * 200), 100, 200)
    assert [window.start_index for window in windows] == [0, 25, 50, 75, 100]
    assert windows[0].elapsed_seconds == pytest.approx(49.5)
    assert all(window.mean_deviation == 0.0 for window in windows)


def test_too_few_windows_is_stable(make_trials):
    result = detect_trend(make_trials([130] * 120))
    assert result.direction == "stable"
    assert result.window_count == 1
    assert result.p_value == 1.0
    assert result.change_points == []


def test_flat_stream_has_zero_t_statistic(make_trials):
    result = detect_trend(make_trials([100] * 1000))
    assert result.slope == 0.0
    assert result.t_statistic == 0.0
    assert result.p_value == 1.0
    assert result.direction == "stable"
    assert result.change_points == []


def test_rising_stream_is_increasing(make_trials):
    values = [80 + (40 * index) // 1000 for index in range(1000)]
    result = detect_trend(make_trials(values))
    assert result.direction == "increasing"
    assert result.significant
    assert result.slope > 0
    assert result.correlation > 0.9


def test_falling_stream_is_decreasing(make_trials):
    values = [120 - (40 * index) // 1000 for index in range(1000)]
    result = detect_trend(make_trials(values), AnalysisConfig(trend_window=50))
    assert result.direction == "decreasing"
    assert result.window_count == 80


def test_change_points_need_ten_windows():
    assert detect_change_points([0.0, 5.0] * 4) == []
    assert detect_change_points([1.0] * 20) == []


def test_change_point_confidence_is_capped():
    values = [0.0] * 10 + [5.0] * 10
    found = detect_change_points(values, 2.0)
    assert found
    for _, magnitude, confidence in found:
        assert confidence == pytest.approx(min(0.99, magnitude / 5))


def test_exactly_linear_stream_is_a_trend(make_trials):
    result = detect_trend(make_trials(list(range(200))), AnalysisConfig(trend_window=8))
    assert result.direction == "increasing"
    assert result.significant
    assert result.p_value == pytest.approx(0.0, abs=1e-12)
    assert result.correlation == pytest.approx(1.0)

    falling = detect_trend(
        make_trials(list(range(199, -1, -1))), AnalysisConfig(trend_window=8)
    )
    assert falling.direction == "decreasing"
