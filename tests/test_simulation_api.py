"""
Tests for the playback REST API.

The simulation backend is replaced by an in-memory client; ticks are slowed
down so the playback position only changes through the API.

Run tests:
    pytest tests/test_simulation_api.py -v
"""

import pytest

from api.backend_client import SimulationFetchError


@pytest.fixture()
def client(fake_client, slow_settings):
    """Create a FastAPI TestClient with the backend client mocked."""
    from fastapi.testclient import TestClient
    from api.playback import playback_manager
    from main import app

    previous_client, previous_settings = playback_manager._client, playback_manager._settings
    playback_manager.client = fake_client
    playback_manager.settings = slow_settings
    try:
        with TestClient(app) as c:
            yield c
    finally:
        playback_manager.client = previous_client
        playback_manager.settings = previous_settings


@pytest.fixture()
def session_id(client):
    response = client.post("/api/playback/sessions")
    assert response.status_code == 200
    return response.json()["session_id"]


def url(session_id, action=""):
    base = f"/api/playback/sessions/{session_id}"
    return f"{base}/{action}" if action else base


def run(client, session_id, catalog_id=7, target_quantity=4):
    return client.post(url(session_id, "run"), json={"catalog_id": catalog_id, "target_quantity": target_quantity})


# ============================================================================
# System and catalogs
# ============================================================================


class TestSystem:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_info(self, client):
        data = client.get("/api/system/info").json()
        assert "base_tick_ms" in data["settings"]
        assert "fastapi" in data["packages"]


class TestCatalogs:
    def test_list(self, client):
        data = client.get("/api/playback/catalogs").json()
        assert data == {"catalogs": [{"id": 7, "name": "Silla"}], "total": 1}

    def test_backend_down(self, client, fake_client):
        fake_client.fetch_catalog_list.side_effect = SimulationFetchError("unreachable")
        response = client.get("/api/playback/catalogs")
        assert response.status_code == 502
        assert "unreachable" in response.json()["detail"]


# ============================================================================
# Sessions
# ============================================================================


class TestSessions:
    def test_new_session_is_in_config_mode(self, client, session_id):
        data = client.get(url(session_id)).json()
        assert data["mode"] == "config"
        assert data["frame"] is None
        assert data["cursor"]["frame_count"] == 0

    def test_create_survives_catalog_failure(self, client, fake_client):
        fake_client.fetch_catalog_list.side_effect = SimulationFetchError("unreachable")
        response = client.post("/api/playback/sessions")
        assert response.status_code == 200
        assert response.json()["mode"] == "config"

    def test_list(self, client, session_id):
        data = client.get("/api/playback/sessions").json()
        assert session_id in [s["session_id"] for s in data["sessions"]]

    def test_unknown_session(self, client):
        assert client.get(url("nope")).status_code == 404
        assert client.post(url("nope", "play")).status_code == 404

    def test_delete(self, client, session_id):
        assert client.delete(url(session_id)).status_code == 200
        assert client.get(url(session_id)).status_code == 404
        assert client.delete(url(session_id)).status_code == 404


# ============================================================================
# Runs
# ============================================================================


class TestRun:
    def test_run_starts_playback(self, client, session_id):
        response = run(client, session_id)
        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "playback"
        assert data["product_name"] == "Silla"
        assert data["cursor"]["frame_count"] == 4
        assert data["cursor"]["playing"] is True
        assert data["frame"]["timestamp"] == 0.0
        assert data["node_states"]["1"]["display_name"] == "Corte"
        # Entity 2 first appears at t=12.5
        assert "2" not in data["node_states"]

    @pytest.mark.parametrize("body", [
        {"catalog_id": 7, "target_quantity": 0},
        {"catalog_id": 7, "target_quantity": -3},
        {"catalog_id": 7},
    ])
    def test_invalid_request(self, client, session_id, body):
        response = client.post(url(session_id, "run"), json=body)
        assert response.status_code == 422

    def test_backend_failure(self, client, session_id, fake_client):
        fake_client.fetch_simulation_run.side_effect = SimulationFetchError("optimizer crashed", 500)
        response = run(client, session_id)
        assert response.status_code == 502

        data = client.get(url(session_id)).json()
        assert data["mode"] == "config"
        assert data["notice"] == "fetch_failed"
        assert data["cursor"]["frame_count"] == 0

        errors = client.get("/api/system/errors").json()["errors"]
        assert errors[0]["endpoint"].endswith("/run")

    def test_empty_run(self, client, session_id, fake_client):
        fake_client.fetch_simulation_run.return_value = {"results": {}}
        data = run(client, session_id).json()
        assert data["notice"] == "no_visible_steps"
        assert data["cursor"]["playing"] is False

    def test_malformed_results(self, client, session_id, fake_client):
        fake_client.fetch_simulation_run.return_value = {"results": [1, 2]}
        response = run(client, session_id)
        assert response.status_code == 200
        assert response.json()["mode"] == "playback"
        assert response.json()["notice"] == "no_visible_steps"

        response = client.get(url(session_id))
        assert response.json()["mode"] == "playback"

    def test_back_to_config(self, client, session_id):
        run(client, session_id)
        data = client.post(url(session_id, "back")).json()
        assert data["mode"] == "config"
        assert data["cursor"]["frame_count"] == 0
        assert data["cursor"]["playing"] is False


# ============================================================================
# Controls
# ============================================================================


class TestControls:
    def test_pause_and_play(self, client, session_id):
        run(client, session_id)
        assert client.post(url(session_id, "pause")).json()["cursor"]["playing"] is False
        assert client.post(url(session_id, "play")).json()["cursor"]["playing"] is True
        assert client.post(url(session_id, "toggle")).json()["cursor"]["playing"] is False

    def test_seek(self, client, session_id):
        run(client, session_id)
        client.post(url(session_id, "pause"))
        data = client.post(url(session_id, "seek"), json={"percentage": 100}).json()
        assert data["cursor"]["current_index"] == 3
        assert data["progress_percent"] == 100.0
        assert data["frame"]["timestamp"] == 60.0
        assert data["metrics"]["elapsed_label"] == "1m 0s"

    @pytest.mark.parametrize("percentage", [-1, 101])
    def test_seek_out_of_range(self, client, session_id, percentage):
        run(client, session_id)
        response = client.post(url(session_id, "seek"), json={"percentage": percentage})
        assert response.status_code == 422

    def test_speed(self, client, session_id):
        run(client, session_id)
        speeds = [client.post(url(session_id, "speed")).json()["cursor"]["speed_multiplier"] for _ in range(5)]
        assert speeds == [2, 4, 8, 16, 1]

    def test_reset(self, client, session_id):
        run(client, session_id)
        client.post(url(session_id, "seek"), json={"percentage": 60})
        data = client.post(url(session_id, "reset")).json()
        assert data["cursor"]["current_index"] == 0
        assert data["cursor"]["playing"] is False

    def test_controls_without_timeline(self, client, session_id):
        data = client.post(url(session_id, "seek"), json={"percentage": 50}).json()
        assert data["cursor"]["current_index"] == 0
        assert client.post(url(session_id, "play")).json()["cursor"]["playing"] is False
