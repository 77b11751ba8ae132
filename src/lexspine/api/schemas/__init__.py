"""Request and response models for the HTTP API."""

from lexspine.api.schemas.common import ErrorDetail, ProblemDetail
from lexspine.api.schemas.jobs import (
    CancelJobBody,
    ChunkReportSchema,
    ContinueJobBody,
    JobAcceptedSchema,
    KillSwitchBody,
    ReprocessBody,
    StartJobBody,
)

__all__ = [
    "ErrorDetail",
    "ProblemDetail",
    "CancelJobBody",
    "ChunkReportSchema",
    "ContinueJobBody",
    "JobAcceptedSchema",
    "KillSwitchBody",
    "ReprocessBody",
    "StartJobBody",
]
