"""
Health endpoints for the TravelMate matching service.

Lightweight liveness and readiness probes; no secrets in responses.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from travelmate.core.config import settings
from travelmate.core.database import get_engine

logger = logging.getLogger("travelmate")

root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = ["app_users", "travel_plans", "match_requests"]


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables. In-memory mode is always ready."""
    if not settings.DATABASE_URL:
        return {"status": "ok", "backend": "memory"}

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")

        inspector = inspect(engine)
        missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
        if missing:
            detail = f"missing tables: {', '.join(missing)}"
            logger.warning(f"[readyz] {detail}")
            return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

        return {"status": "ok", "backend": "sql"}
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
