from datetime import timedelta

import pytest

from conftest import START, build_trials
from app.core.config import get_engine_config, get_settings
from app.core.db import dispose_engine, ping_database
from app.services.analysis_storage import get_latest_report, save_report_document
from app.services.trials import count_trials, load_trials, save_trials


@pytest.fixture
def sqlite_env(tmp_path, monkeypatch):
    monkeypatch.setenv("RNG_STORAGE_BACKEND", "database")
    monkeypatch.setenv("RNG_DATABASE_URL", f"sqlite:///{tmp_path / 'rng.db'}")
    monkeypatch.setenv("RNG_DATA_DIR", str(tmp_path))
    get_settings.cache_clear()
    get_engine_config.cache_clear()
    dispose_engine()
    yield
    dispose_engine()
    get_settings.cache_clear()
    get_engine_config.cache_clear()


def test_trials_upsert_in_database(sqlite_env):
    assert save_trials(build_trials([100, 101, 99])) == 3
    assert save_trials(build_trials([120, 101, 99, 98])) == 1
    assert count_trials() == 4
    assert ping_database() == (True, 4)

    stored = load_trials(session_id="session-1")
    assert [trial.value for trial in stored] == [120, 101, 99, 98]
    assert stored[0].timestamp == START

    window = load_trials(start=START + timedelta(seconds=1), end=START + timedelta(seconds=2))
    assert [trial.sequence_number for trial in window] == [1, 2]


def test_reports_in_database(sqlite_env):
    save_report_document("trend", {"slope": 0.1})
    newest = save_report_document("trend", {"slope": 0.2}, {"analysis": "trend"})
    record = get_latest_report("trend")
    assert record["_id"] == newest
    assert record["result"] == {"slope": 0.2}
    assert record["metadata"] == {"analysis": "trend"}
    assert get_latest_report("z_score") is None
