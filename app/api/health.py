"""Health and readiness endpoints.

  /health (liveness):  is the process alive?  Always 200; ``status`` says
                       whether a backing service is impaired.
  /ready  (readiness): can this instance take traffic?  503 only when a
                       configured database is unreachable.  Redis is not
                       critical: deferred invalidation can be re-requested
                       and inline invalidation does not need it.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.db import engine as db
from app.db.redis import redis_healthy

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_healthy() -> bool | None:
    if db.engine is None:
        return None
    try:
        async with db.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.warning("Database health check failed")
        return False
    return True


def _label(healthy: bool | None) -> str:
    if healthy is None:
        return "not_configured"
    return "ok" if healthy else "degraded"


@router.get("/health")
async def health() -> dict:
    """Liveness probe plus per-dependency status."""
    checks = {
        "database": _label(await _database_healthy()),
        "redis": _label(await redis_healthy()),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _database_healthy() is False:
        return Response(status_code=503)
    return Response(status_code=200)
