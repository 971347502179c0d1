"""
Tests for the console HTTP API
"""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeMediaDevices
from config.settings import Settings
from services.errors import CameraBusy
from utils.logger import ProctorLogger


@pytest.fixture
def app():
    from main import app
    return app


@pytest.fixture
def make_client(app, offline_gateway, tmp_path):
    """Build a TestClient around a controller with fake collaborators"""
    from main import build_controller

    test_settings = Settings(SIMULATE_DETECTIONS=False, TICK_INTERVAL_SECONDS=3600, LOG_DIR=str(tmp_path))

    def factory(devices=None):
        app.state.controller = build_controller(
            test_settings,
            devices=devices or FakeMediaDevices(),
            gateway=offline_gateway,
            proctor_logger=ProctorLogger(str(tmp_path)),
        )
        return TestClient(app)

    yield factory
    app.state.controller = None


def test_health_reports_offline_backend(make_client):
    with make_client() as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["backend"] == "offline"


def test_blank_candidate_rejected(make_client):
    with make_client() as client:
        response = client.post("/session/start", json={"candidate_name": "  "})

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidInput"


def test_full_session_flow(make_client):
    with make_client() as client:
        started = client.post("/session/start", json={"candidate_name": "Alice"})
        assert started.status_code == 200
        session_id = started.json()["session_id"]
        assert session_id.startswith("session_")

        event = client.post("/session/events", json={"kind": "NO_FACE"})
        assert event.status_code == 200
        assert event.json()["severity"] == "DANGER"

        live = client.get("/session").json()
        assert live["session"]["state"] == "Active"
        assert live["camera_status"] == "Active"
        assert live["live_status"]["face_detected"] is False
        assert live["integrity_score"] == 90

        stopped = client.post("/session/stop")
        assert stopped.status_code == 200
        report = stopped.json()
        assert report["integrity_score"] == 90
        assert report["band"] == "Excellent"
        assert report["event_counts"]["NO_FACE"] == 1

        assert client.get("/session/report").json()["session_id"] == session_id

        csv_export = client.get(f"/export/{session_id}/csv")
        assert csv_export.status_code == 200
        assert "NO_FACE,DANGER" in csv_export.text

        json_export = client.get(f"/export/{session_id}/json")
        assert json_export.json()["candidate_name"] == "Alice"

        reset = client.post("/session/reset")
        assert reset.status_code == 200
        assert reset.json()["session"] is None

        # Served from the log store once the console has moved on
        assert client.get(f"/export/{session_id}/json").status_code == 200


def test_camera_error_is_actionable(make_client):
    with make_client(FakeMediaDevices(failures=[CameraBusy()])) as client:
        response = client.post("/session/start", json={"candidate_name": "Alice"})
        assert response.status_code == 409
        assert response.json()["error"] == "CameraBusy"
        assert "another application" in response.json()["message"]

        retried = client.post("/session/retry")
        assert retried.status_code == 200
        assert retried.json()["state"] == "Active"

        client.post("/session/stop")


def test_utc_event_timestamp_accepted(make_client):
    with make_client() as client:
        client.post("/session/start", json={"candidate_name": "Alice"})

        event = client.post(
            "/session/events", json={"kind": "PHONE_DETECTED", "timestamp": "2024-05-01T10:00:00.000Z"}
        )
        live = client.get("/session")

        assert event.status_code == 200
        assert live.status_code == 200
        assert live.json()["total_events"] == 1
        assert live.json()["severity_counts"]["DANGER"] == 1

        client.post("/session/stop")


def test_stop_without_session_conflicts(make_client):
    with make_client() as client:
        response = client.post("/session/stop")

    assert response.status_code == 409


def test_missing_report_is_404(make_client):
    with make_client() as client:
        assert client.get("/session/report").status_code == 404
        assert client.get("/export/session_0/json").status_code == 404
