"""
HTTP and WebSocket tests for the notification relay.
"""

import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from service_notifications.app.main import NotificationService
from shared.config import get_config


class TestNotificationService:
    """Test cases for the notification relay endpoints."""

    @pytest.fixture
    def service(self):
        return NotificationService(get_config("notifications", 6003, env="test", max_ws_connections=2))

    @pytest.fixture
    def client(self, service):
        with TestClient(service.app) as test_client:
            yield test_client

    def test_latest_version_empty(self, client):
        response = client.get("/latest-version")

        assert response.status_code == 200
        assert response.json() == {"latest_version": None, "deployed_at": None, "total_deployments": 0}

    def test_notify_update_broadcasts(self, client):
        """Connected clients receive the update event."""
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text("ping")
            assert websocket.receive_text() == "pong"
            response = client.post("/notify-update", json={"version": "1.4.0", "project": "portal"})
            message = json.loads(websocket.receive_text())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["clients_notified"] == 1
        assert body["deployment"]["version"] == "1.4.0"
        assert message["event"] == "app-updated"
        assert message["data"]["version"] == "1.4.0"
        assert message["data"]["project"] == "portal"
        assert message["data"]["message"] == "New version available"

    def test_notify_update_without_clients(self, client):
        """A deployment with nobody listening is still recorded."""
        response = client.post("/notify-update", json={"version": "2.0.0"})

        assert response.status_code == 200
        assert response.json()["clients_notified"] == 0
        assert client.get("/latest-version").json()["latest_version"] == "2.0.0"

    def test_new_client_receives_history(self, client):
        for version in ("1.0.0", "1.1.0"):
            client.post("/notify-update", json={"version": version})

        with client.websocket_connect("/ws") as websocket:
            message = json.loads(websocket.receive_text())

        assert message["event"] == "deployment-history"
        assert [event["version"] for event in message["data"]] == ["1.0.0", "1.1.0"]

    def test_ping_pong(self, client):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text("ping")
            assert websocket.receive_text() == "pong"

    def test_connection_limit_closes_socket(self, client):
        """Sockets beyond the limit are closed with try-again-later."""
        with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
            first.send_text("ping")
            assert first.receive_text() == "pong"
            second.send_text("ping")
            assert second.receive_text() == "pong"
            with client.websocket_connect("/ws") as third:
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    third.receive_text()

        assert exc_info.value.code == 1013

    def test_latest_version_after_updates(self, client):
        client.post("/notify-update", json={"version": "1.0.0"})
        client.post("/notify-update", json={"version": "1.0.1", "timestamp": 1700000000000})

        body = client.get("/latest-version").json()

        assert body["latest_version"] == "1.0.1"
        assert body["total_deployments"] == 2

    def test_version_is_required(self, client):
        response = client.post("/notify-update", json={"project": "portal"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_health_reports_connections(self, client):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text("ping")
            websocket.receive_text()
            health = client.get("/health").json()

        assert health["status"] == "ok"
        assert health["connected_clients"] == 1
        assert health["max_connections"] == 2
