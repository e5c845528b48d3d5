import threading
import time

import pytest

from conftest import START, build_trials
from rngstats.baseline import calculate_baseline
from rngstats.calibration import (
    COMPLETED,
    FAILED,
    IDLE,
    RUNNING,
    CalibrationOrchestrator,
    environmental_correlations,
)
from rngstats.config import CalibrationConfig, EngineConfig
from rngstats.errors import ConcurrentCalibrationError
from rngstats.sources import PseudoRandomSource, SystemResources, trials_from_bits


class StaticResources:
    def read(self):
        return SystemResources(cpu_percent=10.0, memory_percent=20.0, disk_percent=30.0)


class BrokenProbe:
    def read(self):
        raise OSError("sensor offline")


class GatedSource:
    """Bit source that blocks until the test opens the gate."""

    def __init__(self):
        self.gate = threading.Event()
        self.entered = threading.Event()
        self._inner = PseudoRandomSource(seed=5)

    def generate_bits(self, count):
        self.entered.set()
        self.gate.wait(timeout=10)
        return self._inner.generate_bits(count)


def _config(**calibration):
    return EngineConfig(calibration=CalibrationConfig(**calibration))


@pytest.fixture
def orchestrator():
    instance = CalibrationOrchestrator(
        PseudoRandomSource(seed=99),
        _config(health_check_bits=2000),
        resource_probe=StaticResources(),
    )
    yield instance
    instance.shutdown()


def _wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_standard_calibration_reports_progress(orchestrator):
    assert orchestrator.status().state == IDLE
    result = orchestrator.run_standard_calibration(total_bits=20_000)

    assert result.total_bits == 20_000
    assert 0.0 <= result.pass_rate <= 100.0
    assert result.baseline.mean == pytest.approx(0.5, abs=0.02)
    assert result.next_calibration_due > result.completed_at
    assert result.recommendations

    status = orchestrator.status()
    assert status.state == COMPLETED
    assert status.progress == 100.0
    phases = [checkpoint.phase for checkpoint in status.checkpoints]
    assert phases[0] == "generating_data"
    assert "running_tests" in phases
    assert phases[-1] == "calculating_baseline"
    progress = [checkpoint.progress for checkpoint in status.checkpoints]
    assert progress == sorted(progress)
    assert orchestrator.baselines.history[-1] == result.baseline


def test_second_calibration_is_rejected_without_waiting():
    source = GatedSource()
    orchestrator = CalibrationOrchestrator(source, resource_probe=StaticResources())
    try:
        future = orchestrator.submit_standard_calibration(total_bits=1000)
        assert source.entered.wait(timeout=10)
        assert orchestrator.is_running

        started = time.monotonic()
        with pytest.raises(ConcurrentCalibrationError):
            orchestrator.run_standard_calibration(total_bits=1000)
        assert time.monotonic() - started < 1.0
        assert orchestrator.status().state == RUNNING

        source.gate.set()
        assert future.result(timeout=30).total_bits == 1000
        assert orchestrator.status().state == COMPLETED
        # the lock is free again
        assert orchestrator.run_standard_calibration(total_bits=1000).total_bits == 1000
    finally:
        source.gate.set()
        orchestrator.shutdown()


def test_failed_calibration_releases_lock(orchestrator):
    with pytest.raises(ValueError):
        orchestrator.run_extended_calibration(0)
    status = orchestrator.status()
    assert status.state == FAILED
    assert status.error
    assert orchestrator.run_standard_calibration(total_bits=1000).total_bits == 1000


def test_short_extended_calibration_completes(orchestrator):
    result = orchestrator.run_extended_calibration(0.05)
    assert not result.cancelled
    assert len(result.intervals) >= 1
    assert result.total_bits == 1000 * len(result.intervals)
    assert result.environmental_correlations == {}


def test_extended_calibration_can_be_cancelled(orchestrator):
    future = orchestrator.submit_extended_calibration(3600)
    assert _wait_for(lambda: orchestrator.status().phase == "collecting_intervals")
    assert orchestrator.cancel()

    result = future.result(timeout=30)
    assert result.cancelled
    assert result.actual_duration < 3600
    assert result.intervals
    assert result.suite.total_bits == result.total_bits
    assert orchestrator.status().state == COMPLETED


def test_cancel_without_running_calibration(orchestrator):
    assert orchestrator.cancel() is False


def test_environment_probe_failure_does_not_abort():
    orchestrator = CalibrationOrchestrator(
        PseudoRandomSource(seed=1),
        environment_probe=BrokenProbe(),
        resource_probe=StaticResources(),
    )
    try:
        result = orchestrator.run_extended_calibration(0.01)
        assert result.environmental_correlations == {}
    finally:
        orchestrator.shutdown()


def test_health_check(orchestrator):
    result = orchestrator.run_health_check()
    assert result.sample_size == 2000
    assert result.data_integrity == 100.0
    assert result.resources == StaticResources().read()
    assert 0.0 <= result.overall_health <= 100.0
    assert result.recommendations


def test_health_check_survives_resource_probe_failure():
    orchestrator = CalibrationOrchestrator(
        PseudoRandomSource(seed=3),
        _config(health_check_bits=1000),
        resource_probe=BrokenProbe(),
    )
    try:
        result = orchestrator.run_health_check()
        assert result.resources is None
    finally:
        orchestrator.shutdown()


def test_environmental_correlations():
    intervals = [calculate_baseline([m], START) for m in (0.1, 0.2, 0.3, 0.4)]
    readings = [
        {"temperature": 20.0, "humidity": 50.0},
        {"temperature": 21.0, "humidity": 50.0},
        None,
        {"temperature": 23.0, "humidity": 50.0},
    ]
    correlations = environmental_correlations(intervals, readings)
    assert correlations["temperature"] == pytest.approx(1.0)
    assert correlations["humidity"] == 0.0
    assert environmental_correlations(intervals[:2], readings[:2]) == {}


def test_trials_from_bits_groups_consecutive_bits():
    bits = [1] * 200 + [0] * 200 + [1] * 50
    trials = trials_from_bits(bits, 200, "calibration-1", start=START)
    assert [trial.value for trial in trials] == [200, 0]
    assert [trial.sequence_number for trial in trials] == [0, 1]
    assert trials[1].timestamp > trials[0].timestamp
    assert build_trials([1])[0].mode == "standard"


def test_short_extended_run_collects_enough_bits_for_the_battery():
    orchestrator = CalibrationOrchestrator(
        PseudoRandomSource(seed=11),
        _config(bits_per_interval=50),
        resource_probe=StaticResources(),
    )
    try:
        result = orchestrator.run_extended_calibration(0.001)
        assert result.total_bits >= orchestrator.config.randomness.minimum_bits
        assert result.suite.total_bits == result.total_bits
        assert orchestrator.status().state == COMPLETED
    finally:
        orchestrator.shutdown()


def test_cancelled_run_with_small_intervals_returns_partial_result():
    orchestrator = CalibrationOrchestrator(
        PseudoRandomSource(seed=12),
        _config(bits_per_interval=50),
        resource_probe=StaticResources(),
    )
    try:
        future = orchestrator.submit_extended_calibration(3600)
        assert _wait_for(lambda: orchestrator.status().phase == "collecting_intervals")
        assert orchestrator.cancel()
        result = future.result(timeout=30)
        assert result.cancelled
        assert result.suite.total_bits >= 128
        assert orchestrator.status().state == COMPLETED
    finally:
        orchestrator.shutdown()


def test_standard_run_below_battery_size_is_rejected_up_front(orchestrator):
    with pytest.raises(ValueError):
        orchestrator.run_standard_calibration(total_bits=100)
    with pytest.raises(ValueError):
        orchestrator.submit_standard_calibration(total_bits=127)
    assert orchestrator.status().state == IDLE
    assert orchestrator.run_standard_calibration(total_bits=128).total_bits == 128
