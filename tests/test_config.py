from datetime import timedelta

import pytest

from app.core.config import Settings, get_engine_config, get_settings
from rngstats.config import (
    AnalysisConfig,
    CalibrationConfig,
    EngineConfig,
    QualityThresholds,
    RandomnessConfig,
)
from rngstats.errors import InvalidConfigurationError


@pytest.mark.parametrize(
    "factory",
    [
        lambda: AnalysisConfig(alpha=0.0),
        lambda: AnalysisConfig(confidence_level=1.0),
        lambda: AnalysisConfig(trend_window=3),
        lambda: AnalysisConfig(bits_per_trial=0),
        lambda: QualityThresholds(bias=0.6),
        lambda: QualityThresholds(pattern_run_length=30, pattern_high_run_length=20),
        lambda: QualityThresholds(expected_interval_ms=0.0),
        lambda: RandomnessConfig(entropy_threshold=9.0),
        lambda: RandomnessConfig(serial_block=1),
        lambda: CalibrationConfig(schedule="hourly"),
        lambda: CalibrationConfig(calibration_bits=10),
    ],
)
def test_out_of_domain_values_are_rejected(factory):
    with pytest.raises(InvalidConfigurationError):
        factory()


def test_configuration_errors_are_value_errors():
    with pytest.raises(ValueError):
        AnalysisConfig(alpha=2.0)


def test_defaults():
    analysis = AnalysisConfig()
    assert analysis.bits_per_trial == 200
    assert analysis.excursion_threshold == 2.0
    assert analysis.excursion_min_duration == 100
    assert CalibrationConfig().schedule_interval == timedelta(days=30)
    assert CalibrationConfig(schedule="weekly").schedule_interval == timedelta(days=7)


def test_configuration_is_immutable():
    config = AnalysisConfig()
    with pytest.raises(AttributeError):
        config.alpha = 0.1


def test_settings_build_engine_config(monkeypatch):
    monkeypatch.setenv("RNG_BITS_PER_TRIAL", "100")
    monkeypatch.setenv("RNG_BIAS_THRESHOLD", "0.02")
    monkeypatch.setenv("RNG_CALIBRATION_SCHEDULE", "daily")
    monkeypatch.setenv("RNG_EXPECTED_INTERVAL_MS", "250")
    settings = Settings()
    config = settings.engine_config()
    assert config.analysis.bits_per_trial == 100
    assert config.quality.bias == 0.02
    assert config.quality.expected_interval_ms == 250.0
    assert config.calibration.schedule_interval == timedelta(days=1)


def test_invalid_settings_surface_as_configuration_errors(monkeypatch):
    monkeypatch.setenv("RNG_CALIBRATION_SCHEDULE", "never")
    with pytest.raises(InvalidConfigurationError):
        Settings().engine_config()


def test_storage_backend_selection(monkeypatch, tmp_path):
    for name in ("RNG_DATABASE_URL", "MARIADB_USER", "MARIADB_HOST", "MARIADB_PORT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("RNG_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("RNG_STORAGE_BACKEND", "mariadb")
    monkeypatch.setenv("MARIADB_PASSWORD", "p@ss word")
    settings = Settings()
    assert settings.use_database_storage
    assert settings.sqlalchemy_url.startswith("mysql+pymysql://rng:p%40ss+word@")

    monkeypatch.setenv("RNG_DATABASE_URL", "sqlite:///:memory:")
    assert Settings().sqlalchemy_url == "sqlite:///:memory:"

    monkeypatch.setenv("RNG_STORAGE_BACKEND", "file")
    settings = Settings()
    assert not settings.use_database_storage
    assert settings.trial_storage_path == tmp_path / "trials.json"


def test_allowed_origins_are_split(monkeypatch):
    monkeypatch.setenv("RNG_ALLOWED_ORIGINS", "http://a.test, http://b.test,,")
    assert Settings().allowed_origins == ["http://a.test", "http://b.test"]


def test_cached_settings(storage_env):
    assert get_settings() is get_settings()
    assert get_engine_config() is get_engine_config()
    assert get_settings().data_dir == storage_env


def test_calibration_bits_must_cover_the_battery():
    assert CalibrationConfig(calibration_bits=100).calibration_bits == 100
    with pytest.raises(InvalidConfigurationError):
        EngineConfig(calibration=CalibrationConfig(calibration_bits=100))
    with pytest.raises(InvalidConfigurationError):
        EngineConfig(
            randomness=RandomnessConfig(block_size=256),
            calibration=CalibrationConfig(calibration_bits=200),
        )
    engine = EngineConfig(calibration=CalibrationConfig(calibration_bits=128))
    assert engine.randomness.minimum_bits == 128
