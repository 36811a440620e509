"""Redis connection management.

When REDIS_URL is configured, a shared asyncio connection pool backs the
task queue that carries bulk jobs (course-wide invalidation, duration
backfill) to the worker.  When it is unset, redis_pool is None and the
queue falls back to its in-memory implementation.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

redis_pool: aioredis.Redis | None = (  # type: ignore[type-arg]
    aioredis.from_url(SETTINGS.redis_url, decode_responses=True, max_connections=10)
    if SETTINGS.redis_url
    else None
)


async def redis_healthy() -> bool | None:
    """True/False when configured, None when Redis is not in use."""
    if redis_pool is None:
        return None
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except aioredis.RedisError:
        logger.warning("Redis ping failed")
        return False
    return True


@asynccontextmanager
async def lifespan_redis():
    """Ping on startup, close the pool on shutdown.  Never fatal."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, task queue runs in memory")
        yield
        return

    if await redis_healthy():
        logger.info("Redis connected")
    else:
        logger.error("Redis unreachable on startup; enqueues will fail until it recovers")
    yield
    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
