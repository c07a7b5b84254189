"""Tests for app factory and role-based routing."""

import os
from unittest.mock import patch

from fastapi.testclient import TestClient

from inboxly.api.factory import create_app


class TestWebhooksRole:
    def test_health_available(self):
        client = TestClient(create_app(role="webhooks"))
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_api_routes_not_mounted(self):
        client = TestClient(create_app(role="webhooks"))
        assert client.post("/conversations/c1/messages", json={"text": "x"}).status_code == 404
        assert client.get("/analytics/channels").status_code == 404


class TestApiRole:
    def test_webhooks_not_mounted(self):
        client = TestClient(create_app(role="api"))
        assert client.post("/webhooks/zapi", json={}).status_code == 404
        assert client.get("/webhooks/meta").status_code == 404

    def test_api_routes_mounted(self):
        client = TestClient(create_app(role="api"))
        # Mounted, but requires auth
        assert client.get("/analytics/channels").status_code == 401


class TestDefaultRole:
    def test_all_routes_from_env(self):
        with patch.dict(os.environ, {"APP_ROLE": "all"}):
            app = create_app()
        paths = {route.path for route in app.routes}
        assert "/webhooks/zapi" in paths
        assert "/webhooks/manychat" in paths
        assert "/conversations/{conversation_id}/messages" in paths
        assert "/analytics/channels" in paths


class TestCorrelationId:
    def test_generated_when_absent(self):
        response = TestClient(create_app(role="webhooks")).get("/health")
        assert response.headers["X-Correlation-ID"]

    def test_echoed_when_provided(self):
        response = TestClient(create_app(role="webhooks")).get(
            "/health", headers={"X-Correlation-ID": "cid-123"}
        )
        assert response.headers["X-Correlation-ID"] == "cid-123"
