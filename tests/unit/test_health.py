"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from notification_service.main import app
from notification_service.services.read_state_store import InMemoryReadStateStore


@pytest.fixture
def client():
    app.state.store_factory = lambda user_id: InMemoryReadStateStore()
    with TestClient(app) as test_client:
        yield test_client
    del app.state.store_factory


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = TestClient(app).get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "notification-service"


def test_readyz_endpoint_all_services_healthy(client):
    """Test readiness endpoint when Redis and the engine registry are up."""
    with patch("notification_service.routes.health.redis_ping", AsyncMock(return_value=True)):
        client.get("/notifications/unread-count", headers={"X-User-Id": "user-1"})
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True

    checks = data["checks"]
    assert checks["redis"]["ok"] is True
    assert checks["engines"]["ok"] is True
    assert checks["engines"]["active_sessions"] == 1
    assert checks["configuration"]["ok"] is True


def test_readyz_endpoint_redis_unhealthy(client):
    """Test readiness endpoint when Redis is down."""
    with patch("notification_service.routes.health.redis_ping", AsyncMock(return_value=False)):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["redis"]["ok"] is False


def test_readyz_endpoint_redis_raises(client):
    """A ping that raises is reported, not propagated."""
    with patch(
        "notification_service.routes.health.redis_ping",
        AsyncMock(side_effect=ConnectionError("refused")),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert response.status_code == 200
    assert data["overall_ok"] is False
    assert "ConnectionError" in data["checks"]["redis"]["error"]


def test_readyz_without_engine_registry():
    """Before startup there is no registry to serve sessions."""
    with patch("notification_service.routes.health.redis_ping", AsyncMock(return_value=True)):
        response = TestClient(app).get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["engines"]["ok"] is False
