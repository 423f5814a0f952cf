import pytest
from fastapi.testclient import TestClient

from guardian.api.main import create_app
from guardian.api.services.settings import SettingsStore
from guardian.app import Guardian
from guardian.model.models import Verdict
from guardian.ui.notifications import NotificationService
from guardian.watchers.catalog import DomainCatalog


@pytest.fixture
def guardian(make_probes):
    window, url, _ = make_probes(title="Top 10 Fails — YouTube", url="https://www.youtube.com/watch?v=abc")
    instance = Guardian(
        window_probe=window,
        url_probe=url,
        settings=SettingsStore(),
        catalog=DomainCatalog(),
        notifier=NotificationService(),
        interval=60.0,
    )
    yield instance
    instance.shutdown()


@pytest.fixture
def client(guardian):
    """テスト用のFastAPIクライアント"""
    return TestClient(create_app(guardian))


class TestControlAPI:
    """制御APIのテスト"""

    def test_start_and_stop_session(self, client, guardian):
        response = client.post("/session/start", json={"task": "  leetcode "})

        assert response.status_code == 200
        assert response.json()["task"] == "leetcode"
        assert guardian.session.state().is_active

        response = client.post("/session/stop")

        assert response.status_code == 200
        assert not guardian.session.state().is_active
        assert guardian.session.state().task_title == "leetcode"

    def test_session_endpoints_start_and_stop_sampling(self, client, guardian):
        client.post("/session/start", json={"task": "leetcode"})
        assert guardian.sampler.running

        client.post("/session/stop")
        assert not guardian.sampler.running

    def test_empty_task_is_rejected(self, client, guardian):
        response = client.post("/session/start", json={"task": "   "})

        assert response.status_code == 422
        assert not guardian.session.state().is_active

    def test_status(self, client):
        client.post("/session/start", json={"task": "leetcode"})

        status = client.get("/status").json()

        assert status["mode"] == "active"
        assert status["task"] == "leetcode"
        assert status["session_id"] == 1
        assert status["verdict"] is None
        assert "error_counts" in status["sampler"]
        assert status["escalation"]["in_flight"] == 0

    def test_get_settings(self, client):
        settings = client.get("/settings").json()

        assert settings["grace_seconds"] == 20.0
        assert settings["tone"] == "buddy"

    def test_put_settings_clamps(self, client, guardian):
        response = client.put("/settings", json={"persistence_required": 50, "tone": "coach"})

        assert response.status_code == 200
        assert response.json()["persistence_required"] == 10
        assert guardian.settings.scorer_config().persistence_required == 10

    def test_put_settings_invalid(self, client, guardian):
        response = client.put("/settings", json={"tone": "angry"})

        assert response.status_code == 422
        assert guardian.settings.current.tone.value == "buddy"

    def test_monitoring_data(self, client, guardian):
        client.post("/session/start", json={"task": "leetcode"})
        guardian.sampler.poll_once().result(timeout=5)

        data = client.get("/api/monitoring_data").json()

        assert data["task"] == "leetcode"
        assert data["last_snapshot"]["url_host"] == "youtube.com"
        assert data["last_snapshot"]["category"] == "video"
        assert data["verdict"] == Verdict.ON_TASK.value
        assert any("started" in line for line in data["logs"])
