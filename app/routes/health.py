"""
Health check endpoints.
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Liveness: 200 whenever the process is serving."""
    return {"status": "ok", "service": "pipeline-scoring"}


@router.get("/readyz")
async def readyz():
    """Readiness: database reachable and required configuration present."""
    checks = {}

    t0 = time.time()
    db_health = await db_health_check()
    latency_ms = round((time.time() - t0) * 1000, 1)
    db_ok = bool(db_health.get("healthy", False))
    checks["database"] = {"ok": db_ok, "latency_ms": latency_ms}
    if "pool_stats" in db_health:
        checks["database"]["pool_stats"] = db_health["pool_stats"]
    if not db_ok:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    log_health_check("database", db_ok, latency_ms, db_health.get("error"))

    config_issues = []
    if not settings.SUPABASE_DB_URL:
        config_issues.append("SUPABASE_DB_URL not set")
    if settings.environment != "development" and not settings.CRON_SECRET:
        config_issues.append("CRON_SECRET not set")
    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }

    overall_ok = db_ok and not config_issues
    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
