"""
Error handling: maps :class:`LexSpineError` subclasses to RFC 7807 responses.

=====================  ======
Error                  Status
=====================  ======
ValidationError        400
RequestValidationError 400
AuthError              401
JobNotFoundError       404
JobConflictError       409
JobTerminalError       409
KillSwitchActiveError  503 (+ ``Retry-After`` until it expires)
RateLimitError         429 (+ ``Retry-After``)
TransientError         503
anything else          500
=====================  ======
"""

from __future__ import annotations

import math
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lexspine.api.schemas.common import ErrorDetail, ProblemDetail
from lexspine.core.errors import (
    AuthError,
    JobConflictError,
    JobNotFoundError,
    JobTerminalError,
    KillSwitchActiveError,
    LexSpineError,
    RateLimitError,
    TransientError,
    ValidationError,
)
from lexspine.core.logging import get_logger

logger = get_logger(__name__)

# order matters: RateLimitError is a TransientError
ERROR_STATUS: list[tuple[type[LexSpineError], int, str]] = [
    (ValidationError, 400, "Invalid request"),
    (AuthError, 401, "Unauthorized"),
    (JobNotFoundError, 404, "Job not found"),
    (JobConflictError, 409, "Job conflict"),
    (JobTerminalError, 409, "Job already finished"),
    (KillSwitchActiveError, 503, "Emergency stop active"),
    (RateLimitError, 429, "Too many requests"),
    (TransientError, 503, "Temporarily unavailable"),
]


def status_for_error(exc: LexSpineError) -> tuple[int, str]:
    for error_type, status, title in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status, title
    return 500, "Internal Server Error"


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    errors: list[dict[str, Any]] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(title=title, status=status, detail=detail, instance=instance)
    if errors:
        body.errors = [ErrorDetail(**e) for e in errors]
    return JSONResponse(
        status_code=status,
        content=body.model_dump(),
        headers=headers,
        media_type="application/problem+json",
    )


async def lexspine_exception_handler(request: Request, exc: LexSpineError) -> JSONResponse:
    status, title = status_for_error(exc)
    headers = None
    errors = None
    if isinstance(exc, (RateLimitError, KillSwitchActiveError)) and exc.retry_after is not None:
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}
    if isinstance(exc, ValidationError):
        errors = [{"code": "VALIDATION_FAILED", "message": exc.message, "field": exc.field}]

    log = logger.error if status >= 500 else logger.info
    log("request_failed", path=request.url.path, status=status, **exc.to_dict())
    return problem_response(
        status=status,
        title=title,
        detail=exc.message,
        instance=request.url.path,
        errors=errors,
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query strings are a 400, like invalid payloads."""
    errors = [
        {
            "code": "VALIDATION_FAILED",
            "message": err.get("msg", "invalid value"),
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body") or None,
        }
        for err in exc.errors()
    ]
    logger.info("request_invalid", path=request.url.path, errors=len(errors))
    return problem_response(
        status=400,
        title="Invalid request",
        detail="Request failed validation",
        instance=request.url.path,
        errors=errors,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions; 500 without internals."""
    logger.error("request_crashed", path=request.url.path, error=str(exc), exc_info=exc)
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail="An unexpected error occurred.",
        instance=request.url.path,
    )
