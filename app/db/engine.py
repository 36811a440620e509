"""Async SQLAlchemy engine and declarative base.

When DATABASE_URL is configured (postgresql+asyncpg://...), provides the
async engine used by the health probes and a lifespan hook that checks the
connection on startup.  When it is unset, everything here is None and
the service runs on the in-memory repositories in app/services/registry.py.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the tables in app/db/tables.py."""


if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=SETTINGS.is_dev,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )
else:
    engine = None


@asynccontextmanager
async def lifespan_db():
    if engine is None:
        logger.info("No DATABASE_URL configured, using in-memory repositories")
        yield
        return

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database reachable: %s", engine.url.render_as_string(hide_password=True))
    except Exception:
        logger.exception("Database check failed on startup")
    yield
    await engine.dispose()
    logger.info("Database engine disposed")
