"""ASGI entry point: ``uvicorn app.main:app``.

Runs the arrangement, course and progress routers.  Course-wide jobs
queued by the routers are consumed by ``python -m app.worker``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.arrangements import router as arrangements_router
from app.api.courses import router as courses_router
from app.api.errors import register_error_handlers
from app.api.health import router as health_router
from app.api.metrics_endpoint import router as metrics_router
from app.api.progress import router as progress_router
from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.db.redis import lifespan_redis
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware

setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    async with lifespan_db(), lifespan_redis():
        yield


app = FastAPI(
    title="course-arrangement-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)
# Outermost last: request ID is set before metrics and CORS see the request.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

register_error_handlers(app)

for router in (
    health_router,
    metrics_router,
    arrangements_router,
    courses_router,
    progress_router,
):
    app.include_router(router)

logger.info(
    "Service ready env=%s port=%d cors=%s media=%s queue=%s",
    SETTINGS.app_env,
    SETTINGS.port,
    ",".join(SETTINGS.cors_origins) or "-",
    "configured" if SETTINGS.media_service_url else "null",
    "redis" if SETTINGS.redis_url else "in-memory",
)
