"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)

HEALTHY_DB = {
    "healthy": True,
    "pool_stats": {"pool_size": 5, "pool_available": 4},
}


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "uvocollab-backend"


def test_readyz_endpoint_all_services_healthy():
    """Test readiness endpoint when all services are healthy."""
    with (
        patch("app.routes.health.fast_redis.ping", new=AsyncMock(return_value=True)),
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    checks = data["checks"]
    assert checks["redis"]["ok"] is True
    assert checks["database"]["ok"] is True
    assert checks["database"]["pool_size"] == 5
    assert checks["configuration"]["ok"] is True


def test_readyz_endpoint_redis_unhealthy():
    """Redis backs the payout and sweep locks, so readiness fails without it."""
    with (
        patch("app.routes.health.fast_redis.ping", new=AsyncMock(return_value=False)),
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["redis"]["ok"] is False


def test_readyz_endpoint_database_unhealthy():
    """Test readiness endpoint when the database pool reports unhealthy."""
    with (
        patch("app.routes.health.fast_redis.ping", new=AsyncMock(return_value=True)),
        patch(
            "app.routes.health.db_health_check",
            new=AsyncMock(return_value={"healthy": False, "error": "pool closed"}),
        ),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    database = response.json()["checks"]["database"]
    assert database["ok"] is False
    assert database["error"] == "pool closed"


def test_readyz_endpoint_check_raises():
    """Exceptions from a check are reported, not propagated."""
    with (
        patch(
            "app.routes.health.fast_redis.ping",
            new=AsyncMock(side_effect=ConnectionError("refused")),
        ),
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    assert "ConnectionError" in response.json()["checks"]["redis"]["error"]


def test_readyz_reports_missing_gateway_configuration():
    with (
        patch("app.routes.health.fast_redis.ping", new=AsyncMock(return_value=True)),
        patch("app.routes.health.db_health_check", new=AsyncMock(return_value=HEALTHY_DB)),
        patch("app.routes.health.settings.FLUTTERWAVE_SECRET_KEY", None),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    issues = response.json()["checks"]["configuration"]["issues"]
    assert "FLUTTERWAVE_SECRET_KEY not set" in issues


def test_request_id_is_echoed_or_generated():
    forwarded = client.get("/healthz", headers={"X-Request-ID": "req-42"})
    generated = client.get("/healthz")

    assert forwarded.headers["X-Request-ID"] == "req-42"
    assert len(generated.headers["X-Request-ID"]) == 32
