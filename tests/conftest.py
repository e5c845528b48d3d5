from __future__ import annotations

from datetime import datetime, timedelta, timezone
from random import Random
from typing import Callable, List, Sequence

import pytest

from rngstats.models import Trial

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def build_trials(
    values: Sequence[int],
    session_id: str = "session-1",
    start: datetime = START,
    interval: timedelta = timedelta(seconds=1),
) -> List[Trial]:
    return [
        Trial(
            timestamp=start + interval * index,
            value=value,
            session_id=session_id,
            sequence_number=index,
        )
        for index, value in enumerate(values)
    ]


def binomial_values(count: int, seed: int, bits_per_trial: int = 200) -> List[int]:
    rng = Random(seed)
    return [bin(rng.getrandbits(bits_per_trial)).count("1") for _ in range(count)]


@pytest.fixture
def make_trials() -> Callable[..., List[Trial]]:
    return build_trials


@pytest.fixture
def random_trials() -> Callable[..., List[Trial]]:
    def _factory(count: int, seed: int = 7, **kwargs) -> List[Trial]:
        return build_trials(binomial_values(count, seed), **kwargs)

    return _factory


@pytest.fixture
def storage_env(tmp_path, monkeypatch):
    """Point the service at a fresh file backend under ``tmp_path``."""

    from app.core.config import get_engine_config, get_settings
    from app.services.calibration import shutdown_orchestrator

    monkeypatch.setenv("RNG_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("RNG_STORAGE_BACKEND", "file")
    monkeypatch.setenv("RNG_SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("RNG_SOURCE_SEED", "1234")
    get_settings.cache_clear()
    get_engine_config.cache_clear()
    shutdown_orchestrator()
    yield tmp_path
    shutdown_orchestrator()
    get_settings.cache_clear()
    get_engine_config.cache_clear()
