from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

VIDEO = "video"
DOCUMENT = "document"
CONTENT_TYPES = (VIDEO, DOCUMENT)


@dataclass(frozen=True, slots=True)
class Video:
    id: UUID
    unit_id: UUID
    title: str
    sequence: int
    created_at: int
    duration: int | None = None  # seconds; None until the media service reports it
    external_id: str | None = None  # media-service video id
    approval_status: str = "pending"  # pending|approved|deprecated
    approved_at: int | None = None
    approved_by: UUID | None = None

    @property
    def is_deprecated(self) -> bool:
        return self.approval_status == "deprecated"

    @staticmethod
    def new(
        *,
        unit_id: UUID,
        title: str,
        sequence: int,
        created_at: int,
        duration: int | None = None,
        external_id: str | None = None,
    ) -> Video:
        return Video(
            id=uuid4(),
            unit_id=unit_id,
            title=title,
            sequence=sequence,
            created_at=created_at,
            duration=duration,
            external_id=external_id,
        )


@dataclass(frozen=True, slots=True)
class Document:
    id: UUID
    unit_id: UUID
    title: str
    sequence: int
    created_at: int
    approval_status: str = "pending"  # pending|approved|deprecated
    approved_at: int | None = None
    approved_by: UUID | None = None

    @property
    def is_deprecated(self) -> bool:
        return self.approval_status == "deprecated"

    @staticmethod
    def new(*, unit_id: UUID, title: str, sequence: int, created_at: int) -> Document:
        return Document(
            id=uuid4(),
            unit_id=unit_id,
            title=title,
            sequence=sequence,
            created_at=created_at,
        )
