# app/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.config import settings
from app.db.pool import db_health_check
from app.services.redis_client import fast_redis

router = APIRouter()


def _elapsed_ms(started: float) -> float:
    return round((time.time() - started) * 1000, 1)


async def _check_redis() -> dict[str, Any]:
    started = time.time()
    try:
        ok = bool(await fast_redis.ping())
    except Exception as e:
        return {"ok": False, "error": f"{type(e).__name__}: {e}"}
    return {"ok": ok, "latency_ms": _elapsed_ms(started)}


async def _check_database() -> dict[str, Any]:
    started = time.time()
    try:
        health = await db_health_check()
    except Exception as e:
        return {"ok": False, "error": f"{type(e).__name__}: {e}", "latency_ms": _elapsed_ms(started)}

    check = {"ok": bool(health.get("healthy")), "latency_ms": _elapsed_ms(started)}
    stats = health.get("pool_stats")
    if stats:
        check["pool_size"] = stats.get("pool_size", 0)
        check["pool_available"] = stats.get("pool_available", 0)
    if not check["ok"]:
        check["error"] = health.get("error", "Database unhealthy")
    return check


def _check_configuration() -> dict[str, Any]:
    # Missing gateway credentials degrade features but do not block readiness
    issues = []
    if not settings.FLUTTERWAVE_SECRET_KEY:
        issues.append("FLUTTERWAVE_SECRET_KEY not set")
    if not settings.mail_enabled():
        issues.append("Mailgun not configured, notifications disabled")
    return {"ok": True, "issues": issues or None, "environment": settings.environment}


@router.get("/healthz")
async def healthz():
    return {"status": "ok", "service": "uvocollab-backend"}


@router.get("/readyz")
async def readyz():
    """Document store pool, Redis locks and configuration; 503 if a dependency is down."""
    checks = {
        "redis": await _check_redis(),
        "database": await _check_database(),
        "configuration": _check_configuration(),
    }
    overall_ok = all(check["ok"] for check in checks.values())
    body = {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
