# backend/portal/api/v1/health.py

"""
/api/v1/health     liveness, never touches the database
/api/v1/health/db  readiness: the database answers and the portal schema is migrated
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.db.base import Base
from portal.db.session import get_db

logger = logging.getLogger("portal.health")

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Liveness probe")
def health():
    return {
        "status": "ok",
        "service": "client-portal-backend",
        "environment": settings.environment,
        "version": settings.version,
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
    }


def _db_unavailable(code: str, message: str, **extra) -> HTTPException:
    return HTTPException(status_code=503, detail={"code": code, "message": message, **extra})


@router.get("/db", summary="Database readiness probe")
def health_db(db: Session = Depends(get_db)):
    started = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
        present = set(inspect(db.get_bind()).get_table_names())
    except SQLAlchemyError as exc:
        logger.exception("DB health check failed")
        raise _db_unavailable("DB_DOWN", "Database unavailable.", error=str(exc))

    missing = sorted(set(Base.metadata.tables) - present)
    if missing:
        logger.error("DB health check: schema not migrated, missing=%s", ",".join(missing))
        raise _db_unavailable("SCHEMA_MISSING", "Database schema is not migrated.", missing_tables=missing)

    return {
        "status": "ok",
        "db": "up",
        "latency_ms": int((time.perf_counter() - started) * 1000),
    }
