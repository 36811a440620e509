"""Content application: apply, launch, progress migration, content updates."""

from __future__ import annotations

import uuid

import pytest

from app.core.errors import ExternalServiceDegraded, Forbidden, NotEditable, NotFound
from app.models.arrangement import Arrangement, ArrangementItem
from app.models.content import DOCUMENT, VIDEO
from app.models.progress import NEEDS_REVIEW
from app.services import audit_service, registry
from app.services.application_service import ContentApplicationEngine
from tests.conftest import (
    SeededCourse,
    add_document,
    add_video,
    finish_unit,
    launch_current_order,
    now,
    principal,
    seed_course,
)


class FakeMedia:
    def __init__(self, durations: dict[str, int | None], failing: set[str] = frozenset()):
        self.durations = durations
        self.failing = failing
        self.calls: list[str] = []

    def get_duration(self, external_id: str) -> int | None:
        self.calls.append(external_id)
        if external_id in self.failing:
            raise ExternalServiceDegraded("media down", external_id=external_id)
        return self.durations.get(external_id)


def _engine(media) -> ContentApplicationEngine:
    return ContentApplicationEngine(
        catalog=registry.catalog,
        courses=registry.course_repo,
        arrangements=registry.arrangement_repo,
        progress=registry.progress_repo,
        integrity=registry.integrity,
        media=media,
        authority=registry.authority,
        audit=registry.audit,
        batch_size=2,
    )


def _arrangement(seeded: SeededCourse, items: list[ArrangementItem]) -> Arrangement:
    return Arrangement.new(
        course_id=seeded.course_id,
        coordinator_id=seeded.coordinator.user_id,
        version=1,
        items=tuple(items),
        now=now(),
    )


def _item(content, content_type: str, unit_id, order: int) -> ArrangementItem:
    return ArrangementItem(
        content_type=content_type,
        content_id=content.id,
        title=content.title,
        unit_id=unit_id,
        order=order,
    )


# ---- apply ----


def test_apply_orders_videos_and_documents_per_unit() -> None:
    seeded = seed_course(units=2, videos_per_unit=2, documents_per_unit=1)
    u1, u2 = seeded.units
    a, b = seeded.videos[u1.id]
    c, d = seeded.videos[u2.id]
    doc = seeded.documents[u1.id][0]
    items = [
        _item(b, VIDEO, u1.id, 1),
        _item(doc, DOCUMENT, u1.id, 2),
        _item(a, VIDEO, u1.id, 3),
        _item(d, VIDEO, u2.id, 1),
        _item(c, VIDEO, u2.id, 2),
    ]

    result = registry.application.apply(_arrangement(seeded, items), backfill=False)

    assert result.units_updated == 2
    assert result.items_applied == 5
    assert result.skipped_items == ()
    assert [v.id for v in registry.catalog.list_videos_in_unit(u1.id)] == [b.id, a.id]
    assert [v.id for v in registry.catalog.list_videos_in_unit(u2.id)] == [d.id, c.id]
    assert registry.catalog.unit_membership(u1.id) == ((b.id, a.id), (doc.id,))
    assert registry.catalog.get_document(doc.id).sequence == 1


def test_apply_skips_dangling_and_foreign_items(seeded: SeededCourse) -> None:
    u1 = seeded.units[0]
    a, b = seeded.videos[u1.id]
    ghost = ArrangementItem(
        content_type=VIDEO, content_id=uuid.uuid4(), title="gone", unit_id=u1.id, order=2
    )
    stray = ArrangementItem(
        content_type=VIDEO, content_id=b.id, title=b.title, unit_id=uuid.uuid4(), order=1
    )
    result = registry.application.apply(
        _arrangement(seeded, [_item(a, VIDEO, u1.id, 1), ghost, stray]), backfill=False
    )
    assert set(result.skipped_items) == {ghost.content_id, b.id}
    assert result.items_applied == 1


def test_apply_removes_moved_content_from_untouched_units(seeded: SeededCourse) -> None:
    u1, u2, _ = seeded.units
    moved = seeded.videos[u1.id][0]
    items = [_item(v, VIDEO, u2.id, n) for n, v in enumerate(seeded.videos[u2.id], start=1)]
    items.append(_item(moved, VIDEO, u2.id, 3))

    registry.application.apply(_arrangement(seeded, items), backfill=False)

    u1_videos, _ = registry.catalog.unit_membership(u1.id)
    assert moved.id not in u1_videos
    assert registry.catalog.get_video(moved.id).unit_id == u2.id


def test_apply_is_all_or_nothing(seeded: SeededCourse, monkeypatch) -> None:
    u1, u2, _ = seeded.units
    before = {u.id: registry.catalog.unit_membership(u.id) for u in seeded.units}
    real_set = registry.catalog.set_content_sequence

    def fail_on_second_unit(content_type, content_id, unit_id, sequence):
        if unit_id == u2.id:
            raise RuntimeError("disk full")
        real_set(content_type, content_id, unit_id, sequence)

    monkeypatch.setattr(registry.catalog, "set_content_sequence", fail_on_second_unit)
    items = [_item(v, VIDEO, u1.id, 3 - n) for n, v in enumerate(seeded.videos[u1.id], 1)]
    items += [_item(v, VIDEO, u2.id, n) for n, v in enumerate(seeded.videos[u2.id], 1)]
    with pytest.raises(RuntimeError):
        registry.application.apply(_arrangement(seeded, items), backfill=False)

    assert {u.id: registry.catalog.unit_membership(u.id) for u in seeded.units} == before
    assert [v.id for v in registry.catalog.list_videos_in_unit(u1.id)] == [
        v.id for v in seeded.videos[u1.id]
    ]


# ---- duration backfill ----


def test_apply_backfills_missing_durations(seeded: SeededCourse) -> None:
    u1 = seeded.units[0]
    known = add_video(u1, "has length", external_id="ext-ok", duration=None)
    unknown = add_video(u1, "no length yet", external_id="ext-none", duration=None)
    down = add_video(u1, "media down", external_id="ext-down", duration=None)
    media = FakeMedia({"ext-ok": 300, "ext-none": None}, failing={"ext-down"})
    engine = _engine(media)
    items = [
        _item(v, VIDEO, u1.id, n)
        for n, v in enumerate(registry.catalog.list_videos_in_unit(u1.id), start=1)
    ]

    result = engine.apply(_arrangement(seeded, items))

    assert set(result.backfill_candidates) == {known.id, unknown.id, down.id}
    assert sorted(media.calls) == ["ext-down", "ext-none", "ext-ok"]
    assert registry.catalog.get_video(known.id).duration == 300
    assert registry.catalog.get_video(unknown.id).duration is None
    assert registry.catalog.get_video(down.id).duration is None


def test_backfill_reports_each_outcome(seeded: SeededCourse) -> None:
    u1 = seeded.units[0]
    ok = add_video(u1, "a", external_id="a", duration=None)
    missing = add_video(u1, "b", external_id="b", duration=None)
    failing = add_video(u1, "c", external_id="c", duration=None)
    result = _engine(FakeMedia({"a": 42}, failing={"c"})).backfill_durations(
        [ok.id, missing.id, failing.id, uuid.uuid4()]
    )
    assert (result.updated, result.unavailable, result.failed) == (1, 1, 1)


# ---- launch ----


def test_launch_requires_an_approved_arrangement(seeded: SeededCourse) -> None:
    with pytest.raises(NotEditable):
        registry.application.launch(seeded.course_id, seeded.head)


def test_launch_requires_review_authority(seeded: SeededCourse) -> None:
    with pytest.raises(Forbidden):
        registry.application.launch(seeded.course_id, seeded.coordinator)


def test_launch_goes_live_and_migrates_progress(seeded: SeededCourse) -> None:
    students = [principal(None, "student") for _ in range(3)]
    for s in students:
        registry.progress.get_or_create(s.user_id, seeded.course_id)

    result = launch_current_order(seeded)

    course = seeded.refresh()
    assert course.is_launched is True
    assert course.active_arrangement_version == 1
    assert course.current_arrangement_status == "approved"
    assert course.has_new_content is False
    assert [r.version for r in course.launch_history] == [1]
    assert course.launch_history[0].launched_by == seeded.head.user_id
    assert result.content_approved == 6
    assert result.migration.migrated == 3
    assert result.migration.failures == ()
    for s in students:
        assert registry.progress_repo.get(s.user_id, seeded.course_id).arrangement_version == 1
    video = seeded.videos[seeded.units[0].id][0]
    assert registry.catalog.get_video(video.id).approval_status == "approved"
    actions = [r.action for r in registry.audit_repo.list_for_target(seeded.course_id)]
    assert audit_service.LAUNCH in actions


def test_relaunch_appends_history(seeded: SeededCourse) -> None:
    launch_current_order(seeded)
    registry.application.mark_content_updated(seeded.course_id, None, seeded.coordinator)
    launch_current_order(seeded)

    course = seeded.refresh()
    assert [r.version for r in course.launch_history] == [1, 2]
    assert course.active_arrangement_version == 2


def test_migration_records_failures_and_continues(seeded: SeededCourse, monkeypatch) -> None:
    students = [principal(None, "student") for _ in range(3)]
    rows = [registry.progress.get_or_create(s.user_id, seeded.course_id) for s in students]
    real_save = registry.progress_repo.save

    def flaky_save(progress):
        if progress.id == rows[1].id:
            raise RuntimeError("deadlock")
        return real_save(progress)

    monkeypatch.setattr(registry.progress_repo, "save", flaky_save)
    result = _engine(FakeMedia({})).migrate_student_progress(seeded.course_id, 4)

    assert result.migrated == 2
    assert [f.progress_id for f in result.failures] == [rows[1].id]
    again = _engine(FakeMedia({})).migrate_student_progress(seeded.course_id, 4)
    assert again.unchanged == 2


def test_migration_keeps_a_watch_recorded_mid_batch(seeded: SeededCourse, monkeypatch) -> None:
    student = seeded.student
    row = registry.progress.get_or_create(student.user_id, seeded.course_id)
    video = seeded.videos[seeded.units[0].id][0]
    real_save = registry.progress_repo.save
    watched = []

    def watch_first(progress):
        if progress.id == row.id and progress.arrangement_version == 4 and not watched:
            fresh = registry.progress_repo.get(student.user_id, seeded.course_id)
            watched.append(registry.progress.record_video_watched(fresh, video.id))
        return real_save(progress)

    monkeypatch.setattr(registry.progress_repo, "save", watch_first)
    result = _engine(FakeMedia({})).migrate_student_progress(seeded.course_id, 4)

    assert watched
    assert result.migrated == 1
    assert result.failures == ()
    stored = registry.progress_repo.get(student.user_id, seeded.course_id)
    assert stored.arrangement_version == 4
    assert video.id in stored.completed_video_ids


# ---- content updates ----


def test_content_updated_invalidates_inline(seeded: SeededCourse) -> None:
    u1 = seeded.units[0]
    finish_unit(seeded, u1)
    add_document(u1, "new reading")

    result = registry.application.mark_content_updated(
        seeded.course_id, u1.id, seeded.coordinator
    )

    assert result.invalidation is not None
    assert result.invalidation.students_affected == 1
    assert result.course.has_new_content is True
    assert result.course.current_arrangement_status == "pending_relaunch"
    assert result.course.last_content_update is not None
    row = registry.progress_repo.get(seeded.student.user_id, seeded.course_id)
    assert row.unit(u1.id).status == NEEDS_REVIEW


def test_content_updated_deferred_skips_invalidation(seeded: SeededCourse) -> None:
    u1 = seeded.units[0]
    finish_unit(seeded, u1)
    add_video(u1, "v3")

    result = registry.application.mark_content_updated(
        seeded.course_id, u1.id, seeded.coordinator, defer=True
    )

    assert result.invalidation is None
    assert result.course.has_new_content is True
    row = registry.progress_repo.get(seeded.student.user_id, seeded.course_id)
    assert row.unit(u1.id).status != NEEDS_REVIEW


def test_content_updated_checks_authority_and_unit(seeded: SeededCourse) -> None:
    with pytest.raises(Forbidden):
        registry.application.mark_content_updated(
            seeded.course_id, None, principal(None, "student")
        )
    other = seed_course(units=1)
    with pytest.raises(NotFound):
        registry.application.mark_content_updated(
            seeded.course_id, other.units[0].id, seeded.coordinator
        )
    assert seeded.refresh().has_new_content is False


def test_content_updated_by_admin(seeded: SeededCourse) -> None:
    result = registry.application.mark_content_updated(
        seeded.course_id, None, principal(None, "admin")
    )
    assert result.course.current_arrangement_status == "pending_relaunch"
    assert result.course.has_new_content is True
