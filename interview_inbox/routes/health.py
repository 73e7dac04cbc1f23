# interview_inbox/routes/health.py
"""
Liveness, readiness and poller status endpoints.
"""

import time

from fastapi import APIRouter, Request

from interview_inbox.db.pool import db_health_check
from interview_inbox.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "interview-inbox"}


@router.get("/readyz")
async def readyz(request: Request):
    """Readiness check covering the database pool and, when enabled, the in-process poller."""
    checks = {}
    overall_ok = True

    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = bool(db_health.get("healthy", False))
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    log_health_check(
        "database",
        checks["database"]["ok"],
        checks["database"].get("latency_ms", 0.0),
        checks["database"].get("error"),
    )

    poller_job = getattr(request.app.state, "poller_job", None)
    if poller_job is not None:
        poller_health = poller_job.health_check()
        checks["interview_poller"] = {"ok": poller_health["healthy"], **poller_health}
        overall_ok = overall_ok and poller_health["healthy"]

    return {"overall_ok": overall_ok, "checks": checks}


@router.get("/jobs/interview-poller")
async def interview_poller_status(request: Request):
    """Status and last-tick metrics of the in-process poller."""
    poller_job = getattr(request.app.state, "poller_job", None)
    if poller_job is None:
        return {"enabled": False, "job_name": "interview_poller"}
    return {"enabled": True, **poller_job.get_job_status()}
