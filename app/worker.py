"""Background worker process.

RUN:  python -m app.worker

Same image as the API, different command.  Polls every registered queue
round-robin and hands each task to its handler.  A failing task is
logged with its traceback and dropped; the loop keeps going.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any
from uuid import UUID

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.services import registry
from app.services.task_queue import CONTENT_INVALIDATION, DURATION_BACKFILL, task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(CONTENT_INVALIDATION)
async def handle_content_invalidation(payload: dict) -> None:
    """Run the course-wide invalidation for one unit off the request path."""
    course_id = UUID(payload["course_id"])
    unit_id = UUID(payload["unit_id"])
    # The engine is synchronous; keep the event loop free while it walks rows.
    result = await asyncio.to_thread(registry.integrity.invalidate, course_id, unit_id)
    logger.info(
        "Invalidation done course=%s unit=%s affected=%d blocked=%d failures=%d",
        course_id,
        unit_id,
        result.students_affected,
        result.progressions_blocked,
        len(result.failures),
    )


@register_handler(DURATION_BACKFILL)
async def handle_duration_backfill(payload: dict) -> None:
    video_ids = [UUID(v) for v in payload.get("video_ids", [])]
    result = await asyncio.to_thread(registry.application.backfill_durations, video_ids)
    logger.info(
        "Duration backfill done updated=%d unavailable=%d failed=%d",
        result.updated,
        result.unavailable,
        result.failed,
    )


async def run_once(queue_name: str, timeout: int = 1) -> bool:
    """Process at most one task from ``queue_name``.  True if one was handled."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False
    try:
        await HANDLERS[queue_name](task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    queues = list(HANDLERS)
    logger.info("Worker started, listening on queues: %s", queues)
    while True:
        for queue_name in queues:
            await run_once(queue_name)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
