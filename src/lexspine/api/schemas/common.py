"""
RFC 7807 error envelope.

Every non-2xx response from the API is a :class:`ProblemDetail`::

    {
        "type": "about:blank",
        "title": "Job not found",
        "status": 404,
        "detail": "Job not found: 9b1c...",
        "instance": "/api/v1/jobs/9b1c...",
        "errors": []
    }
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Field-level error, e.g. the payload key that failed validation."""

    code: str = Field(description="Machine-readable error code (e.g. 'VALIDATION_FAILED')")
    message: str
    field: str | None = None


class ProblemDetail(BaseModel):
    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str = ""
    instance: str = ""
    errors: list[ErrorDetail] = Field(default_factory=list)
