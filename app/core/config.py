"""Application configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from urllib.parse import quote_plus

from app.core.env_loader import load_env_file
from rngstats.config import (
    AnalysisConfig,
    CalibrationConfig,
    EngineConfig,
    QualityThresholds,
    RandomnessConfig,
)

load_env_file()


def _env(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_field(name: str, default: str, cast=str):
    return field(default_factory=lambda: cast(_env(name, default)))


def _optional_float(raw: str) -> float | None:
    return float(raw) if raw.strip() else None


@dataclass(frozen=True)
class Settings:
    """Runtime configuration resolved from environment variables."""

    data_dir: Path = _env_field("RNG_DATA_DIR", "data", Path)
    storage_backend: str = _env_field("RNG_STORAGE_BACKEND", "file")
    database_url: str = _env_field("RNG_DATABASE_URL", "")
    mariadb_host: str = _env_field("MARIADB_HOST", "127.0.0.1")
    mariadb_port: int = _env_field("MARIADB_PORT", "3306", int)
    mariadb_user: str = _env_field("MARIADB_USER", "rng")
    mariadb_password: str = _env_field("MARIADB_PASSWORD", "")
    mariadb_db_name: str = _env_field("MARIADB_DB_NAME", "rng_inspec")
    cors_allowed_origins: str = _env_field(
        "RNG_ALLOWED_ORIGINS", "http://localhost:3000"
    )

    bits_per_trial: int = _env_field("RNG_BITS_PER_TRIAL", "200", int)
    analysis_alpha: float = _env_field("RNG_ANALYSIS_ALPHA", "0.05", float)
    confidence_level: float = _env_field("RNG_CONFIDENCE_LEVEL", "0.95", float)
    excursion_threshold: float = _env_field("RNG_EXCURSION_THRESHOLD", "2.0", float)
    excursion_min_duration: int = _env_field("RNG_EXCURSION_MIN_DURATION", "100", int)
    trend_window: int = _env_field("RNG_TREND_WINDOW", "100", int)

    bias_threshold: float = _env_field("RNG_BIAS_THRESHOLD", "0.05", float)
    variance_threshold: float = _env_field("RNG_VARIANCE_THRESHOLD", "0.1", float)
    autocorrelation_threshold: float = _env_field(
        "RNG_AUTOCORRELATION_THRESHOLD", "0.1", float
    )
    entropy_threshold: float = _env_field("RNG_ENTROPY_THRESHOLD", "0.95", float)
    outlier_threshold: float = _env_field("RNG_OUTLIER_THRESHOLD", "3.0", float)
    timing_threshold: float = _env_field("RNG_TIMING_THRESHOLD", "0.1", float)
    expected_interval_ms: float | None = _env_field(
        "RNG_EXPECTED_INTERVAL_MS", "", _optional_float
    )

    randomness_alpha: float = _env_field("RNG_RANDOMNESS_ALPHA", "0.01", float)
    randomness_block_size: int = _env_field("RNG_RANDOMNESS_BLOCK_SIZE", "128", int)
    randomness_serial_block: int = _env_field("RNG_RANDOMNESS_SERIAL_BLOCK", "2", int)

    calibration_bits: int = _env_field("RNG_CALIBRATION_BITS", "100000", int)
    health_check_bits: int = _env_field("RNG_HEALTH_CHECK_BITS", "10000", int)
    calibration_schedule: str = _env_field("RNG_CALIBRATION_SCHEDULE", "monthly")
    source_seed: int | None = _env_field(
        "RNG_SOURCE_SEED", "", lambda raw: int(raw) if raw.strip() else None
    )

    scheduler_enabled: bool = _env_field(
        "RNG_SCHEDULER_ENABLED", "true", lambda raw: raw.lower() in {"1", "true", "yes"}
    )
    scheduler_timezone: str = _env_field("RNG_SCHEDULER_TIMEZONE", "UTC")
    quality_scan_minute: int = _env_field("RNG_QUALITY_SCAN_MINUTE", "5", int)
    quality_scan_window_minutes: int = _env_field(
        "RNG_QUALITY_SCAN_WINDOW_MINUTES", "60", int
    )

    @property
    def trial_storage_path(self) -> Path:
        return self.data_dir / "trials.json"

    @property
    def report_storage_path(self) -> Path:
        return self.data_dir / "reports.json"

    @property
    def allowed_origins(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.cors_allowed_origins.split(",")
            if origin.strip()
        ]

    @property
    def use_database_storage(self) -> bool:
        """Return True when a SQL database is configured as the storage backend."""

        return self.storage_backend.lower() in {
            "mariadb",
            "mysql",
            "db",
            "database",
            "sql",
        }

    @property
    def mariadb_dsn(self) -> str:
        """SQLAlchemy-compatible DSN for the configured MariaDB connection."""

        password = quote_plus(self.mariadb_password)
        user = quote_plus(self.mariadb_user)
        return (
            f"mysql+pymysql://{user}:{password}"
            f"@{self.mariadb_host}:{self.mariadb_port}/{self.mariadb_db_name}"
        )

    @property
    def sqlalchemy_url(self) -> str:
        """Explicit RNG_DATABASE_URL if given, otherwise the MariaDB DSN."""

        return self.database_url or self.mariadb_dsn

    def engine_config(self) -> EngineConfig:
        """Build the validated engine configuration.

        Raises InvalidConfigurationError for out-of-domain values.
        """

        return EngineConfig(
            analysis=AnalysisConfig(
                bits_per_trial=self.bits_per_trial,
                alpha=self.analysis_alpha,
                confidence_level=self.confidence_level,
                excursion_threshold=self.excursion_threshold,
                excursion_min_duration=self.excursion_min_duration,
                trend_window=self.trend_window,
            ),
            quality=QualityThresholds(
                bias=self.bias_threshold,
                variance=self.variance_threshold,
                autocorrelation=self.autocorrelation_threshold,
                entropy=self.entropy_threshold,
                outlier=self.outlier_threshold,
                timing=self.timing_threshold,
                expected_interval_ms=self.expected_interval_ms,
            ),
            randomness=RandomnessConfig(
                alpha=self.randomness_alpha,
                block_size=self.randomness_block_size,
                serial_block=self.randomness_serial_block,
            ),
            calibration=CalibrationConfig(
                calibration_bits=self.calibration_bits,
                health_check_bits=self.health_check_bits,
                schedule=self.calibration_schedule,
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    settings = Settings()
    if (
        not settings.use_database_storage
        and not settings.data_dir.exists()
    ):
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    """Validated engine configuration, built once per process."""

    return get_settings().engine_config()
