from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

OPEN = "open"
SUBMITTED = "submitted"
APPROVED = "approved"
REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class ArrangementItem:
    content_type: str  # video|document
    content_id: UUID
    title: str
    unit_id: UUID
    order: int
    original_unit_id: UUID | None = None
    original_order: int | None = None


@dataclass(frozen=True, slots=True)
class Arrangement:
    id: UUID
    course_id: UUID
    coordinator_id: UUID
    version: int
    created_at: int
    updated_at: int
    status: str = OPEN  # open|submitted|approved|rejected
    items: tuple[ArrangementItem, ...] = ()
    submitted_at: int | None = None
    approved_at: int | None = None
    approved_by: UUID | None = None
    rejected_at: int | None = None
    rejected_by: UUID | None = None
    rejection_reason: str | None = None

    @staticmethod
    def new(
        *,
        course_id: UUID,
        coordinator_id: UUID,
        version: int,
        items: tuple[ArrangementItem, ...],
        now: int,
    ) -> Arrangement:
        return Arrangement(
            id=uuid4(),
            course_id=course_id,
            coordinator_id=coordinator_id,
            version=version,
            created_at=now,
            updated_at=now,
            items=items,
        )


# ---------------------------------------------------------------------------
# Call-site state variant
# ---------------------------------------------------------------------------
# Storage holds a flat ``status`` string (and "no row at all" for a
# coordinator who never opened one).  The workflow dispatches on these
# variants instead, so every state is handled explicitly.


@dataclass(frozen=True, slots=True)
class NoneYet:
    pass


@dataclass(frozen=True, slots=True)
class Open:
    arrangement: Arrangement


@dataclass(frozen=True, slots=True)
class Submitted:
    arrangement: Arrangement


@dataclass(frozen=True, slots=True)
class Approved:
    arrangement: Arrangement


@dataclass(frozen=True, slots=True)
class Rejected:
    arrangement: Arrangement


ArrangementState = NoneYet | Open | Submitted | Approved | Rejected

_STATE_BY_STATUS: dict[str, type[Open | Submitted | Approved | Rejected]] = {
    OPEN: Open,
    SUBMITTED: Submitted,
    APPROVED: Approved,
    REJECTED: Rejected,
}


def arrangement_state(arrangement: Arrangement | None) -> ArrangementState:
    if arrangement is None:
        return NoneYet()
    try:
        variant = _STATE_BY_STATUS[arrangement.status]
    except KeyError:
        raise ValueError(f"unknown arrangement status {arrangement.status!r}") from None
    return variant(arrangement)
