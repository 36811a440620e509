"""Domain error taxonomy.

Services raise these; the API layer maps each class to one HTTP status
in a single exception handler (see app/api/errors.py).  Every error
carries a ``detail`` dict so callers can tell the user exactly which
unit, item, or state blocked them.
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for errors surfaced synchronously to the caller."""

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail: dict[str, Any] = detail


class NotFound(DomainError):
    """Course, unit, arrangement, content, or progress record missing."""


class Forbidden(DomainError):
    """Authority check failed for the requested operation."""


class InvalidRequest(DomainError):
    """Structurally bad input (unknown action, malformed items)."""


class NotEditable(DomainError):
    """Arrangement status does not allow the requested transition."""


class AlreadyReviewed(NotEditable):
    """Lost a review race: the arrangement left ``submitted`` first."""


class ArrangementLocked(DomainError):
    """Approved arrangement exists and nothing warrants a new version."""


class RequirementsNotMet(DomainError):
    """Revalidation or completion attempted before all items are done."""


class ExternalServiceDegraded(DomainError):
    """A best-effort external call failed.  Never fatal to the caller."""


class DuplicateVersionError(ValueError):
    """Storage-level uniqueness violation on (course_id, version)."""


class ProgressConflict(DomainError):
    """Progress row kept changing underneath a write; the caller may retry."""


class DuplicateOpenArrangementError(DuplicateVersionError):
    """Coordinator already has an open arrangement for the course."""


class StaleProgressError(ValueError):
    """Progress row changed since it was read (revision mismatch on save)."""
