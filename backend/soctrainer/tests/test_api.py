"""HTTP API tests."""
import pytest
from fastapi.testclient import TestClient

from soctrainer.main import app
from soctrainer.store import clear_sessions, list_session_ids


@pytest.fixture
def client():
    clear_sessions()
    with TestClient(app) as client:
        yield client
    clear_sessions()


def _create(client, **overrides):
    payload = {"story_type": "credential-harvesting", "noise_level": "low", "seed": 5}
    payload.update(overrides)
    return client.post("/api/sessions", json=payload)


def test_health(client):
    """Test health endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_list_scenarios(client):
    """Test the catalog lists every template."""
    response = client.get("/api/scenarios")

    assert response.status_code == 200
    assert len(response.json()) == 11


def test_get_scenario(client):
    """Test one template with its ordered stages."""
    response = client.get("/api/scenarios/credential-harvesting")

    assert response.status_code == 200
    data = response.json()
    assert len(data["stages"]) == 6
    assert data["stages"][0]["stage"] == "initial-access"


def test_get_unknown_scenario(client):
    """Test 404 for an unknown template."""
    assert client.get("/api/scenarios/nope").status_code == 404


def test_create_and_get_session(client):
    """Test creating a session returns the trainee view."""
    response = _create(client)

    assert response.status_code == 201
    data = response.json()
    session_id = data["session_id"]
    assert data["status"] == "running"
    assert all("is_malicious" not in e for e in data["events"])

    assert session_id in client.get("/api/sessions").json()
    assert client.get(f"/api/sessions/{session_id}").json()["session_id"] == session_id


def test_create_unknown_story_type(client):
    """Test 404 when the template does not exist."""
    assert _create(client, story_type="nope").status_code == 404


def test_create_invalid_stage_count(client):
    """Test 422 when the stage count is out of range."""
    assert _create(client, stages=2).status_code == 422


def test_triage_alert(client):
    """Test valid and invalid triage moves."""
    session_id = _create(client).json()["session_id"]
    alerts = client.get(f"/api/sessions/{session_id}/alerts").json()
    alert_id = alerts[0]["id"]
    url = f"/api/sessions/{session_id}/alerts/{alert_id}/status"

    response = client.post(url, json={"status": "Investigating"})
    assert response.status_code == 200
    assert response.json()["status"] == "Investigating"
    assert response.json()["triaged_at"] is not None

    assert client.post(url, json={"status": "New"}).status_code == 409
    assert client.post(f"/api/sessions/{session_id}/alerts/missing/status", json={"status": "Investigating"}).status_code == 404


def test_finalize_and_get_evaluation(client):
    """Test finalize scores once and blocks further triage."""
    session_id = _create(client).json()["session_id"]
    assert client.get(f"/api/sessions/{session_id}/evaluation").status_code == 404

    response = client.post(
        f"/api/sessions/{session_id}/finalize",
        json={"user_tags": {"google.com": "confirmed-threat"}, "time_taken_seconds": 600},
    )
    assert response.status_code == 200
    result = response.json()
    assert 0 <= result["score"] <= 100
    assert result["over_flagged_iocs"][0]["ioc"] == "google.com"

    again = client.post(f"/api/sessions/{session_id}/finalize", json={"user_tags": {}})
    assert again.json() == result
    assert client.get(f"/api/sessions/{session_id}/evaluation").json() == result

    alert_id = client.get(f"/api/sessions/{session_id}/alerts").json()[0]["id"]
    triage = client.post(f"/api/sessions/{session_id}/alerts/{alert_id}/status", json={"status": "Investigating"})
    assert triage.status_code == 409


def test_delete_session(client):
    """Test a deleted session is gone."""
    session_id = _create(client).json()["session_id"]

    assert client.delete(f"/api/sessions/{session_id}").status_code == 200
    assert client.get(f"/api/sessions/{session_id}").status_code == 404
    assert client.delete(f"/api/sessions/{session_id}").status_code == 404


def test_shutdown_drops_sessions():
    """Test app shutdown stops timers and clears the session store."""
    clear_sessions()
    with TestClient(app) as client:
        session_id = _create(client).json()["session_id"]
        assert session_id in list_session_ids()

    assert list_session_ids() == []
