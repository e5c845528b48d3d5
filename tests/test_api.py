import time

import pytest
from fastapi.testclient import TestClient

from conftest import START, binomial_values
from app.main import app
from app.services.analysis_storage import get_latest_report
from rngstats.errors import ConcurrentCalibrationError


@pytest.fixture
def client(storage_env, monkeypatch):
    monkeypatch.setenv("RNG_HEALTH_CHECK_BITS", "1000")
    monkeypatch.setenv("RNG_CALIBRATION_BITS", "2000")
    return TestClient(app)


def _payload(values, session_id="session-1"):
    return {
        "trials": [
            {
                "timestamp": START.replace(second=index % 60, minute=index // 60).isoformat(),
                "value": value,
                "session_id": session_id,
                "sequence_number": index,
            }
            for index, value in enumerate(values)
        ]
    }


def _wait_for(predicate, timeout=30.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_storage_reports_file_backend(client):
    body = client.get("/system/storage").json()
    assert body["backend"] == "file"
    assert body["connected"] is True
    assert body["total_trials"] == 0


def test_ingest_and_count(client):
    response = client.post("/trials", json=_payload([100, 99, 101]))
    assert response.status_code == 200
    assert response.json() == {"received": 3, "inserted": 3}

    again = client.post("/trials", json=_payload([100, 99, 101, 102]))
    assert again.json() == {"received": 4, "inserted": 1}
    assert client.get("/trials/count").json() == {"total_trials": 4}


def test_ingest_rejects_out_of_range_values(client):
    response = client.post("/trials", json=_payload([100, 201]))
    assert response.status_code == 400
    assert response.json()["detail"]["sequence_numbers"] == [1]
    assert client.get("/trials/count").json() == {"total_trials": 0}

    assert client.post("/trials", json=_payload([-1])).status_code == 422
    assert client.post("/trials", json={"trials": []}).status_code == 422


def test_run_and_fetch_analysis(client):
    client.post("/trials", json=_payload(binomial_values(300, seed=8)))

    response = client.post("/analysis/z-score", json={"session_id": "session-1"})
    assert response.status_code == 200
    document = response.json()
    assert document["kind"] == "z_score"
    assert document["sample_size"] == 300

    latest = client.get("/analysis/z-score/latest")
    assert latest.status_code == 200
    record = latest.json()
    assert record["id"] == document["_id"]
    assert record["kind"] == "z_score"
    assert record["metadata"]["session_id"] == "session-1"


def test_analysis_errors(client):
    empty = client.post("/analysis/network-variance", json={"session_id": "missing"})
    assert empty.status_code == 400

    assert client.post("/analysis/fourier", json={"session_id": "a"}).status_code == 404
    assert client.get("/analysis/fourier/latest").status_code == 404
    assert client.get("/analysis/trend/latest").status_code == 404

    assert client.post("/analysis/z-score", json={}).status_code == 422
    inverted = {"start": "2024-01-02T00:00:00Z", "end": "2024-01-01T00:00:00Z"}
    assert client.post("/analysis/z-score", json=inverted).status_code == 422


def test_calibration_status_and_cancel(client):
    status = client.get("/calibration/status").json()
    assert status["state"] == "idle"
    assert status["checkpoints"] == []
    assert client.post("/calibration/cancel").json() == {"cancelled": False}


def test_health_check_is_stored(client):
    response = client.post("/calibration/health-check")
    assert response.status_code == 200
    document = response.json()
    assert document["kind"] == "health_check"
    assert document["sample_size"] == 1000
    assert get_latest_report("health_check")["_id"] == document["_id"]


def test_standard_calibration_runs_in_background(client):
    response = client.post("/calibration/standard", json={"total_bits": 2000})
    assert response.status_code == 202
    assert response.json()["calibration_type"] == "standard"

    assert _wait_for(lambda: get_latest_report("calibration") is not None)
    record = get_latest_report("calibration")
    assert record["result"]["total_bits"] == 2000
    assert record["metadata"] == {"trigger": "api"}
    assert client.get("/calibration/status").json()["state"] == "completed"


def test_busy_calibration_returns_conflict(client, monkeypatch):
    def _busy(*args, **kwargs):
        raise ConcurrentCalibrationError("A calibration is already running.")

    monkeypatch.setattr("app.api.routes_calibration.start_standard_calibration", _busy)
    monkeypatch.setattr("app.api.routes_calibration.start_extended_calibration", _busy)

    response = client.post("/calibration/standard")
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["message"] == "A calibration is already running."
    assert detail["status"]["state"] == "idle"

    extended = client.post("/calibration/extended", json={"duration_seconds": 10})
    assert extended.status_code == 409


def test_extended_calibration_validates_duration(client):
    assert client.post("/calibration/extended", json={"duration_seconds": 0}).status_code == 422


def test_standard_calibration_rejects_too_few_bits(client):
    response = client.post("/calibration/standard", json={"total_bits": 50})
    assert response.status_code == 400
    assert client.get("/calibration/status").json()["state"] == "idle"
