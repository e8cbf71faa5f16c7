"""Health check endpoints"""
import time
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from devicehub.cache import CacheError
from devicehub.utils.dates import utcnow
from devicehub.utils.logger import logger

router = APIRouter(prefix="/health", tags=["health"])

# Track startup time
STARTUP_TIME = time.time()


@router.get("")
def health_check():
    """
    Basic health check endpoint

    Returns 200 if service is running
    """
    return {
        "status": "healthy",
        "service": "DeviceHub",
        "version": "0.1.0",
        "timestamp": utcnow().isoformat(),
    }


@router.get("/ready")
def readiness_check(request: Request):
    """
    Readiness check - verifies the database and the cache answer

    Returns 200 if ready to serve traffic, 503 if not ready
    """
    checks: Dict[str, Any] = {
        "database": False,
        "database_latency_ms": None,
        "cache": False,
    }

    try:
        start = time.time()
        request.app.state.database.ping()
        checks["database"] = True
        checks["database_latency_ms"] = round((time.time() - start) * 1000, 2)
    except SQLAlchemyError as e:
        logger.error("Readiness: database check failed", extra={"error": str(e)})

    try:
        checks["cache"] = request.app.state.cache.ping()
    except CacheError as e:
        logger.warning("Readiness: cache check failed", extra={"error": str(e)})

    if not (checks["database"] and checks["cache"]):
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "checks": checks, "timestamp": utcnow().isoformat()},
        )

    return {
        "status": "ready",
        "checks": checks,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/live")
def liveness_check():
    """
    Liveness check - verifies service is alive

    Used by Kubernetes liveness probe
    """
    return {
        "status": "alive",
        "uptime_seconds": round(time.time() - STARTUP_TIME, 2),
        "timestamp": utcnow().isoformat(),
    }
