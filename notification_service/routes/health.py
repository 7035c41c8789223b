# notification_service/routes/health.py
"""
Health check endpoints with Redis and notification engine status.
"""

import time

from fastapi import APIRouter, Request

from notification_service.config import settings
from notification_service.infrastructure.observability.logging import log_health_check
from notification_service.services.redis_client import fast_redis

router = APIRouter()


async def redis_ping() -> bool:
    return await fast_redis.ping()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "notification-service"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: Redis (read-state store) and engine registry.
    """
    checks = {}
    overall_ok = True

    # 1) Redis health check
    t0 = time.time()
    try:
        redis_ok = await redis_ping()
        latency_ms = round((time.time() - t0) * 1000, 1)
        checks["redis"] = {"ok": bool(redis_ok), "latency_ms": latency_ms}
        log_health_check("redis", bool(redis_ok), latency_ms)
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Engine registry
    registry = getattr(request.app.state, "engine_registry", None)
    checks["engines"] = {
        "ok": registry is not None,
        "active_sessions": len(registry) if registry is not None else 0,
    }
    overall_ok = overall_ok and registry is not None

    # 3) Configuration checks
    config_issues = []
    if not settings.REDIS_URL:
        config_issues.append("REDIS_URL not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
