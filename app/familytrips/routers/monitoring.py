"""Health and readiness endpoints for monitoring systems."""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..database import check_database, get_db
from ..utils.cache_middleware import get_response_cache

router = APIRouter()
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


def _base_status() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
    }


@router.get("/health")
def health_check():
    """Basic liveness information."""
    return _base_status()


@router.get("/health/detailed")
def detailed_health_check(request: Request, db: Session = Depends(get_db)):
    """Health check including the database and the response cache."""
    report = _base_status()
    report["checks"] = {}

    try:
        check_database(db)
        report["checks"]["database"] = {"status": "ok"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        report["checks"]["database"] = {"status": "error", "message": str(e)}
        report["status"] = "degraded"

    cache = get_response_cache(request)
    if cache is None:
        report["checks"]["cache"] = {"status": "disabled"}
    else:
        report["checks"]["cache"] = {"status": "ok", **cache.stats()}

    return report


@router.get("/ready")
def readiness_check(db: Session = Depends(get_db)):
    """Readiness check: the database must answer."""
    try:
        check_database(db)
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"ready": False, "error": "Database not ready"})
    return {"ready": True}


@router.get("/live")
def liveness_check():
    return {"alive": True}
