# app/routes/health.py
"""
Health check endpoints with database pool, Redis and poller status.
"""

import time

from fastapi import APIRouter, Request

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "interview-ingest"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check across the database pool, optional Redis and the ingest wiring.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False
    log_health_check(
        "database",
        checks["database"]["ok"],
        checks["database"]["latency_ms"],
        checks["database"].get("error"),
    )

    # 2) Redis, only when configured
    if settings.REDIS_URL:
        t0 = time.time()
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        overall_ok = overall_ok and redis_ok

    # 3) Ingest wiring and configuration
    container = getattr(request.app.state, "interview_ingest", None)
    config_issues = []
    if not settings.ELEVENLABS_API_KEY:
        config_issues.append("ELEVENLABS_API_KEY not set")
    if not settings.ADMIN_API_KEY:
        config_issues.append("ADMIN_API_KEY not set")

    checks["ingest"] = {
        "ok": container is not None and not config_issues,
        "agent_id": settings.ELEVENLABS_AGENT_ID,
        "is_polling": container.poller.is_polling if container else False,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and checks["ingest"]["ok"]

    # 4) Provider client configuration (informational)
    if container is not None:
        checks["elevenlabs"] = await container.client.health_check()

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
