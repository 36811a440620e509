"""Single mapping from the domain error taxonomy to HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AlreadyReviewed,
    ArrangementLocked,
    DomainError,
    ExternalServiceDegraded,
    Forbidden,
    InvalidRequest,
    NotEditable,
    NotFound,
    ProgressConflict,
    RequirementsNotMet,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses before their bases.
STATUS_BY_ERROR: tuple[tuple[type[DomainError], int], ...] = (
    (NotFound, 404),
    (Forbidden, 403),
    (AlreadyReviewed, 409),
    (NotEditable, 409),
    (ArrangementLocked, 423),
    (RequirementsNotMet, 409),
    (ProgressConflict, 409),
    (InvalidRequest, 422),
    (ExternalServiceDegraded, 503),
)


def status_for(exc: DomainError) -> int:
    for cls, code in STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return code
    return 400


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info(
            "%s %s rejected: %s %s",
            request.method,
            request.url.path,
            type(exc).__name__,
            exc.message,
        )
    return JSONResponse(
        status_code=code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "detail": exc.detail,
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
