"""
Tests for the bridge HTTP surface

Tests:
    - GET /api/v1/bridge/status with and without a running bridge
    - GET /health
    - GET /metrics
"""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from main import app
from lightbridge.services import bridge_service as bridge_module
from lightbridge.services.bridge_service import get_bridge_service


client = TestClient(app)


def _status():
    return {
        "accessory": "Desk Lamp",
        "running": True,
        "state": {
            "power": True,
            "brightness": 75,
            "color_temperature": 300,
            "hue": 120.0,
            "saturation": 50.0,
        },
        "mqtt": {
            "connected": True,
            "broker": "broker.local:1883",
            "client_id": "lightbridge_desk_lamp_1a2b3c4d",
            "subscriptions": ["stat/lamp/POWER", "tele/lamp/STATE"],
            "last_connected_at": None,
            "messages_published": 1,
            "messages_received": 3,
            "connect_failures": 0,
            "last_error": None,
        },
        "homekit": {
            "running": True,
            "paired": False,
            "accessory_name": "Desk Lamp",
            "setup_code": "031-45-154",
            "setup_uri": "X-HM://0023B6WQLAB1C",
            "port": 51826,
            "error": None,
        },
    }


@pytest.fixture
def mock_bridge():
    bridge = MagicMock()
    bridge.get_status.return_value = _status()
    bridge.is_running = True
    bridge.mqtt.is_connected = True
    bridge.homekit.is_running = True
    return bridge


@pytest.fixture
def override_bridge(mock_bridge):
    app.dependency_overrides[get_bridge_service] = lambda: mock_bridge
    yield mock_bridge
    app.dependency_overrides.clear()


class TestBridgeStatusAPI:

    def test_status(self, override_bridge):
        response = client.get("/api/v1/bridge/status")

        assert response.status_code == 200
        data = response.json()
        assert data["accessory"] == "Desk Lamp"
        assert data["state"]["brightness"] == 75
        assert data["state"]["hue"] == 120.0
        assert data["mqtt"]["subscriptions"] == ["stat/lamp/POWER", "tele/lamp/STATE"]
        assert data["homekit"]["setup_code"] == "031-45-154"

    def test_status_without_bridge(self):
        app.dependency_overrides[get_bridge_service] = lambda: None
        try:
            response = client.get("/api/v1/bridge/status")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503
        assert response.json()["detail"] == "Bridge is not running"

    def test_status_is_read_only(self, override_bridge):
        response = client.post("/api/v1/bridge/status", json={})

        assert response.status_code == 405


class TestHealth:

    def test_health_before_start(self, monkeypatch):
        monkeypatch.setattr(bridge_module, "_bridge_service", None)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "starting",
            "mqtt_connected": False,
            "homekit_running": False,
        }

    def test_health_running(self, monkeypatch, mock_bridge):
        monkeypatch.setattr(bridge_module, "_bridge_service", mock_bridge)

        response = client.get("/health")

        assert response.json()["status"] == "healthy"
        assert response.json()["mqtt_connected"] is True

    def test_health_failed_start(self, monkeypatch, mock_bridge):
        mock_bridge.is_running = False
        mock_bridge.homekit.is_running = False
        monkeypatch.setattr(bridge_module, "_bridge_service", mock_bridge)

        response = client.get("/health")

        assert response.json()["status"] == "failed"
        assert response.json()["homekit_running"] is False


class TestMetricsEndpoint:

    def test_metrics(self):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "mqtt_connection_status" in response.text
