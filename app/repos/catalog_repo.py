"""Content Catalog: units and their ordered video/document members.

Storage and transcoding live elsewhere; this service reads unit
membership and identity, and writes exactly one thing back: the
reordering produced by an approved arrangement (ContentApplicationEngine).
That write path runs inside ``transaction()`` so one approval is applied
all-or-nothing.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.content import DOCUMENT, VIDEO, Document, Video
from app.models.course import Unit


class ContentCatalog(Protocol):
    def get_unit(self, unit_id: UUID) -> Unit | None: ...
    def list_units(self, course_id: UUID) -> list[Unit]: ...
    def add_unit(self, unit: Unit) -> None: ...
    def get_video(self, video_id: UUID) -> Video | None: ...
    def get_document(self, document_id: UUID) -> Document | None: ...
    def list_videos_in_unit(self, unit_id: UUID) -> list[Video]: ...
    def list_documents_in_unit(self, unit_id: UUID) -> list[Document]: ...
    def add_video(self, video: Video) -> None: ...
    def add_document(self, document: Document) -> None: ...
    def unit_membership(
        self, unit_id: UUID
    ) -> tuple[tuple[UUID, ...], tuple[UUID, ...]]: ...
    def set_unit_membership(
        self, unit_id: UUID, video_ids: list[UUID], document_ids: list[UUID]
    ) -> None: ...
    def set_content_sequence(
        self, content_type: str, content_id: UUID, unit_id: UUID, sequence: int
    ) -> None: ...
    def set_video_duration(self, video_id: UUID, duration: int) -> None: ...
    def mark_approved(
        self,
        video_ids: Iterable[UUID],
        document_ids: Iterable[UUID],
        approved_by: UUID,
        now: int,
    ) -> int: ...
    def transaction(self) -> AbstractContextManager[None]: ...


def _content_sort_key(item: Video | Document) -> tuple[int, int, str]:
    return (item.sequence, item.created_at, str(item.id))


class InMemoryContentCatalog:
    def __init__(self) -> None:
        self._units: dict[UUID, Unit] = {}
        self._videos: dict[UUID, Video] = {}
        self._documents: dict[UUID, Document] = {}
        # unit_id -> (video ids, document ids), the unit's membership arrays
        self._membership: dict[UUID, tuple[tuple[UUID, ...], tuple[UUID, ...]]] = {}
        self._lock = threading.RLock()

    # --- units ---

    def get_unit(self, unit_id: UUID) -> Unit | None:
        return self._units.get(unit_id)

    def list_units(self, course_id: UUID) -> list[Unit]:
        units = [u for u in self._units.values() if u.course_id == course_id]
        return sorted(units, key=lambda u: u.order)

    def add_unit(self, unit: Unit) -> None:
        with self._lock:
            if unit.id in self._units:
                raise ValueError("unit already exists")
            self._units[unit.id] = unit
            self._membership[unit.id] = ((), ())

    # --- content ---

    def get_video(self, video_id: UUID) -> Video | None:
        return self._videos.get(video_id)

    def get_document(self, document_id: UUID) -> Document | None:
        return self._documents.get(document_id)

    def list_videos_in_unit(self, unit_id: UUID) -> list[Video]:
        videos = [v for v in self._videos.values() if v.unit_id == unit_id]
        return sorted(videos, key=_content_sort_key)

    def list_documents_in_unit(self, unit_id: UUID) -> list[Document]:
        docs = [d for d in self._documents.values() if d.unit_id == unit_id]
        return sorted(docs, key=_content_sort_key)

    def add_video(self, video: Video) -> None:
        with self._lock:
            if video.unit_id not in self._units:
                raise KeyError("unit not found")
            self._videos[video.id] = video
            vids, docs = self._membership[video.unit_id]
            self._membership[video.unit_id] = (vids + (video.id,), docs)

    def add_document(self, document: Document) -> None:
        with self._lock:
            if document.unit_id not in self._units:
                raise KeyError("unit not found")
            self._documents[document.id] = document
            vids, docs = self._membership[document.unit_id]
            self._membership[document.unit_id] = (vids, docs + (document.id,))

    # --- writes used by the application engine ---

    def unit_membership(
        self, unit_id: UUID
    ) -> tuple[tuple[UUID, ...], tuple[UUID, ...]]:
        return self._membership.get(unit_id, ((), ()))

    def set_unit_membership(
        self, unit_id: UUID, video_ids: list[UUID], document_ids: list[UUID]
    ) -> None:
        with self._lock:
            if unit_id not in self._units:
                raise KeyError("unit not found")
            self._membership[unit_id] = (tuple(video_ids), tuple(document_ids))

    def set_content_sequence(
        self, content_type: str, content_id: UUID, unit_id: UUID, sequence: int
    ) -> None:
        with self._lock:
            if content_type == VIDEO:
                v = self._videos.get(content_id)
                if v is None:
                    raise KeyError("video not found")
                self._videos[content_id] = replace(v, unit_id=unit_id, sequence=sequence)
            elif content_type == DOCUMENT:
                d = self._documents.get(content_id)
                if d is None:
                    raise KeyError("document not found")
                self._documents[content_id] = replace(
                    d, unit_id=unit_id, sequence=sequence
                )
            else:
                raise ValueError(f"unknown content type {content_type!r}")

    def set_video_duration(self, video_id: UUID, duration: int) -> None:
        with self._lock:
            v = self._videos.get(video_id)
            if v is None:
                raise KeyError("video not found")
            self._videos[video_id] = replace(v, duration=duration)

    def mark_approved(
        self,
        video_ids: Iterable[UUID],
        document_ids: Iterable[UUID],
        approved_by: UUID,
        now: int,
    ) -> int:
        changed = 0
        with self._lock:
            for vid in video_ids:
                v = self._videos.get(vid)
                if v is None:
                    continue
                self._videos[vid] = replace(
                    v, approval_status="approved", approved_at=now, approved_by=approved_by
                )
                changed += 1
            for did in document_ids:
                d = self._documents.get(did)
                if d is None:
                    continue
                self._documents[did] = replace(
                    d, approval_status="approved", approved_at=now, approved_by=approved_by
                )
                changed += 1
        return changed

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """All-or-nothing write scope.

        Holds the catalog lock for the duration and restores the pre-call
        snapshot if the body raises.
        """
        with self._lock:
            snapshot = (
                dict(self._videos),
                dict(self._documents),
                copy.copy(self._membership),
            )
            try:
                yield
            except BaseException:
                self._videos, self._documents, self._membership = snapshot
                raise
