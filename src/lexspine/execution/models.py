"""Job domain models.

Defines the core data structures of the job store:

- Job: a resumable dictionary-import or corpus-annotation run
- JobEvent: append-only lifecycle events of a job

These models are used by JobStore, ChunkedJobEngine and the API layer.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class InvalidTransitionError(ValueError):
    """Raised when an illegal status transition is attempted.

    If a legitimate transition is blocked, add it to
    ``JOB_VALID_TRANSITIONS`` explicitly; never bypass the guard.
    """

    def __init__(self, current: str, target: str, enum_name: str = "JobStatus") -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid {enum_name} transition: {current} → {target}")


class JobKind(str, Enum):
    """Kinds of job the engine knows how to run."""

    DICTIONARY_IMPORT = "dictionary-import"
    CORPUS_ANNOTATE = "corpus-annotate"


class JobStatus(str, Enum):
    """Status of a job.

    Valid transition graph::

        QUEUED     → RUNNING
        RUNNING    → PAUSED | COMPLETED | FAILED | CANCELLED | CANCELLING
        PAUSED     → RUNNING
        CANCELLING → CANCELLED
        COMPLETED  → (terminal)
        FAILED     → (terminal)
        CANCELLED  → (terminal)
    """

    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


JOB_VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({
        JobStatus.PAUSED,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
        JobStatus.CANCELLING,
    }),
    JobStatus.PAUSED: frozenset({JobStatus.RUNNING}),
    JobStatus.CANCELLING: frozenset({JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),  # terminal
    JobStatus.FAILED: frozenset(),  # terminal
    JobStatus.CANCELLED: frozenset(),  # terminal
}


def validate_job_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_job_transition(JobStatus.RUNNING, JobStatus.PAUSED)
        >>> validate_job_transition(JobStatus.PAUSED, JobStatus.CANCELLED)
        InvalidTransitionError: Invalid JobStatus transition: paused → cancelled
    """
    allowed = JOB_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value)


class EventType(str, Enum):
    """Lifecycle events recorded for a job."""

    CREATED = "created"
    STARTED = "started"
    CHUNK_COMMITTED = "chunk_committed"
    PAUSED = "paused"
    RESUMED = "resumed"
    CANCEL_REQUESTED = "cancel_requested"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"
    UNITS_RELEASED = "units_released"


@dataclass
class Job:
    """A resumable background job.

    ``cursor`` is the offset of the next unit to process; it equals
    ``processed_count`` at every checkpoint.

    Example:
        >>> job = Job.create(JobKind.DICTIONARY_IMPORT, metadata={"source": "gutenberg"})
        >>> job.status
        <JobStatus.QUEUED: 'queued'>
    """

    id: str
    kind: JobKind
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    total_units: int = 0
    processed_count: int = 0
    inserted_count: int = 0
    error_count: int = 0
    unresolved_count: int = 0
    cursor: int = 0
    cancel_requested: bool = False
    cancel_reason: str | None = None
    cancelled_by: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, kind: JobKind | str, metadata: dict[str, Any] | None = None) -> "Job":
        """Create a new job in QUEUED status."""
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            kind=JobKind(kind),
            status=JobStatus.QUEUED,
            created_at=now,
            updated_at=now,
            metadata=metadata or {},
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def progress(self) -> float:
        """Fraction of units processed, 0.0 - 1.0."""
        if self.total_units == 0:
            return 1.0 if self.is_terminal else 0.0
        return min(1.0, self.processed_count / self.total_units)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "total_units": self.total_units,
            "processed_count": self.processed_count,
            "inserted_count": self.inserted_count,
            "error_count": self.error_count,
            "unresolved_count": self.unresolved_count,
            "cursor": self.cursor,
            "progress": round(self.progress, 4),
            "cancel_requested": self.cancel_requested,
            "cancel_reason": self.cancel_reason,
            "cancelled_by": self.cancelled_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error_message": self.error_message,
            "metadata": self.metadata,
        }


@dataclass
class JobEvent:
    """Immutable, append-only record of something that happened to a job."""

    id: str
    job_id: str
    event_type: EventType
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        job_id: str,
        event_type: "EventType | str",
        data: dict[str, Any] | None = None,
    ) -> "JobEvent":
        return cls(
            id=str(uuid.uuid4()),
            job_id=job_id,
            event_type=EventType(event_type),
            timestamp=utcnow(),
            data=data or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }
