"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.features.interview_ingest.container import build_container
from app.main import app
from app.services.elevenlabs import ElevenLabsClient

client = TestClient(app)


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "interview-ingest"


def test_readyz_database_healthy_without_ingest():
    """Database is fine but the lifespan never wired the ingest container."""
    with (
        patch(
            "app.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": True, "pool_stats": {"pool_size": 1}}),
        ),
        patch("app.routes.health.settings.REDIS_URL", None),
        patch("app.routes.health.settings.ELEVENLABS_API_KEY", "el-key"),
        patch("app.routes.health.settings.ADMIN_API_KEY", "admin-key"),
    ):
        response = client.get("/readyz")

        assert response.status_code == 200
        data = response.json()
        checks = data["checks"]
        assert checks["database"]["ok"] is True
        assert checks["database"]["pool_stats"] == {"pool_size": 1}
        assert "redis" not in checks
        assert checks["ingest"]["ok"] is False
        assert data["overall_ok"] is False


def test_readyz_database_unhealthy():
    """Test readiness endpoint when Postgres is down."""
    with (
        patch(
            "app.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": False, "error": "Connection failed"}),
        ),
        patch("app.routes.health.settings.REDIS_URL", None),
    ):
        response = client.get("/readyz")

        assert response.status_code == 200
        data = response.json()
        assert data["overall_ok"] is False
        assert data["checks"]["database"]["ok"] is False
        assert data["checks"]["database"]["error"] == "Connection failed"


def test_readyz_database_check_raises():
    with (
        patch(
            "app.routes.health.db_health_check",
            AsyncMock(side_effect=RuntimeError("pool not initialized")),
        ),
        patch("app.routes.health.settings.REDIS_URL", None),
    ):
        response = client.get("/readyz")

        data = response.json()
        assert data["checks"]["database"]["ok"] is False
        assert "RuntimeError" in data["checks"]["database"]["error"]


def test_readyz_redis_checked_when_configured():
    with (
        patch("app.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})),
        patch("app.routes.health.settings.REDIS_URL", "redis://localhost:6379/0"),
        patch("app.routes.health.fast_redis.ping", AsyncMock(return_value=False)),
    ):
        response = client.get("/readyz")

        data = response.json()
        assert data["checks"]["redis"]["ok"] is False
        assert isinstance(data["checks"]["redis"]["latency_ms"], (int, float))
        assert data["overall_ok"] is False


def test_readyz_reports_missing_configuration():
    with (
        patch("app.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})),
        patch("app.routes.health.settings.REDIS_URL", None),
        patch("app.routes.health.settings.ELEVENLABS_API_KEY", None),
        patch("app.routes.health.settings.ADMIN_API_KEY", None),
    ):
        response = client.get("/readyz")

        issues = response.json()["checks"]["ingest"]["issues"]
        assert "ELEVENLABS_API_KEY not set" in issues
        assert "ADMIN_API_KEY not set" in issues


def test_readyz_with_ingest_wired(store):
    app.state.interview_ingest = build_container(
        store=store, client=ElevenLabsClient(api_key="el-key"), agent_id="agent_test"
    )
    try:
        with (
            patch("app.routes.health.db_health_check", AsyncMock(return_value={"healthy": True})),
            patch("app.routes.health.settings.REDIS_URL", None),
            patch("app.routes.health.settings.ELEVENLABS_API_KEY", "el-key"),
            patch("app.routes.health.settings.ADMIN_API_KEY", "admin-key"),
        ):
            response = client.get("/readyz")
    finally:
        del app.state.interview_ingest

    data = response.json()
    assert data["checks"]["ingest"]["ok"] is True
    assert data["checks"]["ingest"]["is_polling"] is False
    assert data["checks"]["elevenlabs"]["healthy"] is True
    assert data["overall_ok"] is True
