"""Background queue and worker handlers."""

from __future__ import annotations

import asyncio
import logging

from app import worker
from app.models.progress import NEEDS_REVIEW
from app.services import registry
from app.services.task_queue import (
    CONTENT_INVALIDATION,
    DURATION_BACKFILL,
    InMemoryTaskQueue,
    RedisTaskQueue,
    task_queue,
)
from tests.conftest import SeededCourse, add_video, finish_unit


class _FakeRedis:
    """Just the list commands RedisTaskQueue uses."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}

    async def lpush(self, key: str, value: str) -> int:
        self.lists.setdefault(key, []).insert(0, value)
        return len(self.lists[key])

    async def brpop(self, key: str, timeout: int = 0):
        items = self.lists.get(key)
        if not items:
            return None
        return key, items.pop()

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))


class _Media:
    def get_duration(self, external_id: str) -> int | None:
        return {"ext-a": 61}.get(external_id)


def test_in_memory_queue_is_fifo() -> None:
    queue = InMemoryTaskQueue()

    async def scenario():
        first = await queue.enqueue("q", {"n": 1})
        await queue.enqueue("q", {"n": 2})
        assert await queue.queue_length("q") == 2
        assert (await queue.dequeue("q")).id == first.id
        assert (await queue.dequeue("q")).payload == {"n": 2}
        assert await queue.dequeue("q") is None
        assert await queue.dequeue("never-used") is None

    asyncio.run(scenario())


def test_redis_queue_round_trips_json() -> None:
    redis = _FakeRedis()
    queue = RedisTaskQueue(redis)

    async def scenario():
        first = await queue.enqueue(CONTENT_INVALIDATION, {"course_id": "c", "unit_id": "u"})
        await queue.enqueue(CONTENT_INVALIDATION, {"course_id": "c", "unit_id": "v"})
        assert await queue.queue_length(CONTENT_INVALIDATION) == 2
        task = await queue.dequeue(CONTENT_INVALIDATION, timeout=0)
        assert task.id == first.id
        assert task.queue == CONTENT_INVALIDATION
        assert task.payload == {"course_id": "c", "unit_id": "u"}

    asyncio.run(scenario())
    assert list(redis.lists) == ["tasks:content_invalidation"]


def test_empty_queue_does_nothing() -> None:
    assert asyncio.run(worker.run_once(CONTENT_INVALIDATION, timeout=0)) is False


def test_handlers_cover_every_queue() -> None:
    assert set(worker.HANDLERS) == {CONTENT_INVALIDATION, DURATION_BACKFILL}


def test_invalidation_task_flags_students(seeded: SeededCourse) -> None:
    u1 = seeded.units[0]
    finish_unit(seeded, u1)
    add_video(u1, "v3")

    async def scenario():
        await task_queue.enqueue(
            CONTENT_INVALIDATION,
            {"course_id": str(seeded.course_id), "unit_id": str(u1.id)},
        )
        return await worker.run_once(CONTENT_INVALIDATION, timeout=0)

    assert asyncio.run(scenario()) is True
    row = registry.progress_repo.get(seeded.student.user_id, seeded.course_id)
    assert row.unit(u1.id).status == NEEDS_REVIEW
    assert asyncio.run(task_queue.queue_length(CONTENT_INVALIDATION)) == 0


def test_backfill_task_fills_durations(seeded: SeededCourse, monkeypatch) -> None:
    u1 = seeded.units[0]
    known = add_video(u1, "a", external_id="ext-a", duration=None)
    unknown = add_video(u1, "b", external_id="ext-b", duration=None)
    monkeypatch.setattr(registry.application, "_media", _Media())

    async def scenario():
        await task_queue.enqueue(
            DURATION_BACKFILL, {"video_ids": [str(known.id), str(unknown.id)]}
        )
        await worker.run_once(DURATION_BACKFILL, timeout=0)

    asyncio.run(scenario())
    assert registry.catalog.get_video(known.id).duration == 61
    assert registry.catalog.get_video(unknown.id).duration is None


def test_failing_task_is_logged_and_dropped(caplog) -> None:
    async def scenario():
        await task_queue.enqueue(CONTENT_INVALIDATION, {"course_id": "not-a-uuid"})
        return await worker.run_once(CONTENT_INVALIDATION, timeout=0)

    with caplog.at_level(logging.ERROR, logger="worker"):
        assert asyncio.run(scenario()) is True
    assert any("failed" in r.getMessage() for r in caplog.records)
    assert asyncio.run(task_queue.queue_length(CONTENT_INVALIDATION)) == 0
