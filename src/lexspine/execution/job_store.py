"""Job store - persistent record of every job, its units and its events.

The JobStore is the single source of truth for resumability and
cancellation. Every status change is a compare-and-set on the current
status; every checkpoint is a compare-and-set on the cursor. A writer
that lost the race gets :class:`JobConflictError` instead of silently
overwriting a newer state.

Architecture:
    .. code-block:: text

        JobStore: Single Source of Truth
        ┌───────────────────────────────────────────────────────────┐
        │  JOB CRUD                  UNIT SEQUENCE                  │
        │  create_job()              store_units()                  │
        │  get_job() / require_job() load_units(start, stop)        │
        │  list_jobs() list_active() release_units()                │
        │                                                           │
        │  STATE (CAS)               EVENT RECORDING                │
        │  transition()              record_event()                 │
        │  checkpoint()              get_events()                   │
        │  request_cancellation()                                   │
        ├───────────────────────────────────────────────────────────┤
        │  lex_jobs ──< lex_job_units                               │
        │      └────< lex_job_events (append-only)                  │
        └───────────────────────────────────────────────────────────┘

Mutating methods take ``commit=True``; the chunk engine passes
``commit=False`` to fold a checkpoint into the same transaction as the
chunk's output rows.

Example:
    >>> store = JobStore(conn)
    >>> job = store.create_job(Job.create(JobKind.DICTIONARY_IMPORT))
    >>> store.transition(job.id, JobStatus.QUEUED, JobStatus.RUNNING)
"""

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from lexspine.core.errors import JobConflictError, JobNotFoundError, JobTerminalError

from .models import (
    TERMINAL_STATUSES,
    EventType,
    Job,
    JobEvent,
    JobKind,
    JobStatus,
    validate_job_transition,
)


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


_JOB_COLUMNS = """
    id, kind, status, total_units, processed_count, inserted_count,
    error_count, unresolved_count, cursor, cancel_requested, cancel_reason,
    cancelled_by, error_message, metadata, created_at, updated_at,
    started_at, finished_at
"""

_STATUS_EVENTS = {
    JobStatus.RUNNING: EventType.STARTED,
    JobStatus.PAUSED: EventType.PAUSED,
    JobStatus.CANCELLING: EventType.CANCELLING,
    JobStatus.CANCELLED: EventType.CANCELLED,
    JobStatus.COMPLETED: EventType.COMPLETED,
    JobStatus.FAILED: EventType.FAILED,
}


def _ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class JobStore:
    """CRUD and compare-and-set operations on jobs, units and events."""

    def __init__(self, conn):
        self._conn = conn

    @property
    def conn(self):
        return self._conn

    # =========================================================================
    # JOB CRUD
    # =========================================================================

    def create_job(self, job: Job, *, commit: bool = True) -> Job:
        """Persist a new job and record its CREATED event."""
        self._conn.execute(
            f"""
            INSERT INTO lex_jobs ({_JOB_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.kind.value,
                job.status.value,
                job.total_units,
                job.processed_count,
                job.inserted_count,
                job.error_count,
                job.unresolved_count,
                job.cursor,
                int(job.cancel_requested),
                job.cancel_reason,
                job.cancelled_by,
                job.error_message,
                json.dumps(job.metadata),
                job.created_at.isoformat(),
                job.updated_at.isoformat(),
                None,
                None,
            ),
        )
        self.record_event(job.id, EventType.CREATED, {"kind": job.kind.value}, commit=False)
        if commit:
            self._conn.commit()
        return job

    def get_job(self, job_id: str) -> Job | None:
        row = self._conn.execute(
            f"SELECT {_JOB_COLUMNS} FROM lex_jobs WHERE id = ?",
            (job_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_job(row)

    def require_job(self, job_id: str) -> Job:
        """Like :meth:`get_job` but raises :class:`JobNotFoundError`."""
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(
        self,
        kind: JobKind | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
        updated_before: datetime | None = None,
    ) -> list[Job]:
        """List jobs, newest first, with optional filters."""
        query = f"SELECT {_JOB_COLUMNS} FROM lex_jobs WHERE 1=1"
        params: list[Any] = []

        if kind:
            query += " AND kind = ?"
            params.append(JobKind(kind).value)
        if status:
            query += " AND status = ?"
            params.append(JobStatus(status).value)
        if updated_before:
            query += " AND updated_at < ?"
            params.append(updated_before.isoformat())

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def list_active(self, limit: int = 1000) -> list[Job]:
        """Jobs that are not terminal, oldest first."""
        terminal = [s.value for s in TERMINAL_STATUSES]
        rows = self._conn.execute(
            f"SELECT {_JOB_COLUMNS} FROM lex_jobs WHERE status NOT IN (?, ?, ?) ORDER BY created_at LIMIT ?",
            (*terminal, limit),
        ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT status, COUNT(*) FROM lex_jobs GROUP BY status"
        ).fetchall()
        return {row[0]: row[1] for row in rows}

    def set_total_units(self, job_id: str, total: int, *, commit: bool = True) -> None:
        self._conn.execute(
            "UPDATE lex_jobs SET total_units = ?, updated_at = ? WHERE id = ? AND status = ?",
            (total, utcnow().isoformat(), job_id, JobStatus.QUEUED.value),
        )
        if commit:
            self._conn.commit()

    def update_metadata(self, job_id: str, updates: dict[str, Any], *, commit: bool = True) -> dict:
        """Merge ``updates`` into the job's metadata (non-terminal jobs only)."""
        job = self.require_job(job_id)
        if job.is_terminal:
            raise JobTerminalError(job_id, job.status.value)
        merged = {**job.metadata, **updates}
        self._conn.execute(
            "UPDATE lex_jobs SET metadata = ?, updated_at = ? WHERE id = ?",
            (json.dumps(merged), utcnow().isoformat(), job_id),
        )
        if commit:
            self._conn.commit()
        return merged

    # =========================================================================
    # STATE TRANSITIONS (COMPARE-AND-SET)
    # =========================================================================

    def transition(
        self,
        job_id: str,
        expected: JobStatus,
        target: JobStatus,
        *,
        error_message: str | None = None,
        event_data: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> Job:
        """Move a job from ``expected`` to ``target`` atomically.

        Raises:
            InvalidTransitionError: If the edge is not legal
            JobNotFoundError: If the job does not exist
            JobTerminalError: If the job is already terminal
            JobConflictError: If the job is no longer in ``expected``
        """
        validate_job_transition(expected, target)
        now = utcnow().isoformat()

        sets = ["status = ?", "updated_at = ?"]
        params: list[Any] = [target.value, now]
        if target == JobStatus.RUNNING:
            sets.append("started_at = COALESCE(started_at, ?)")
            params.append(now)
        if target in TERMINAL_STATUSES:
            sets.append("finished_at = ?")
            params.append(now)
        if error_message is not None:
            sets.append("error_message = ?")
            params.append(error_message)

        cursor = self._conn.execute(
            f"UPDATE lex_jobs SET {', '.join(sets)} WHERE id = ? AND status = ?",
            (*params, job_id, expected.value),
        )
        if cursor.rowcount == 0:
            self._conn.rollback()
            self._raise_lost_race(job_id, f"expected status {expected.value}")

        data = dict(event_data or {})
        data["from"] = expected.value
        if error_message is not None:
            data["error"] = error_message
        event = EventType.RESUMED if expected == JobStatus.PAUSED else _STATUS_EVENTS[target]
        self.record_event(job_id, event, data, commit=False)
        if commit:
            self._conn.commit()
        return self.require_job(job_id)

    def checkpoint(
        self,
        job_id: str,
        expected_cursor: int,
        new_cursor: int,
        *,
        inserted: int = 0,
        errors: int = 0,
        unresolved: int = 0,
        metadata: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> Job:
        """Advance the cursor and counters of a running job atomically.

        ``processed_count`` is set to ``new_cursor`` so the two never
        diverge at a checkpoint.

        Raises:
            ValueError: If ``new_cursor`` is behind ``expected_cursor``
            JobConflictError: If the job is not running at ``expected_cursor``
        """
        if new_cursor < expected_cursor:
            raise ValueError(f"cursor cannot move backwards: {expected_cursor} → {new_cursor}")

        sets = [
            "cursor = ?",
            "processed_count = ?",
            "inserted_count = inserted_count + ?",
            "error_count = error_count + ?",
            "unresolved_count = unresolved_count + ?",
            "updated_at = ?",
        ]
        params: list[Any] = [new_cursor, new_cursor, inserted, errors, unresolved, utcnow().isoformat()]
        if metadata is not None:
            sets.append("metadata = ?")
            params.append(json.dumps(metadata))

        cursor = self._conn.execute(
            f"UPDATE lex_jobs SET {', '.join(sets)} WHERE id = ? AND status = ? AND cursor = ?",
            (*params, job_id, JobStatus.RUNNING.value, expected_cursor),
        )
        if cursor.rowcount == 0:
            self._conn.rollback()
            self._raise_lost_race(job_id, f"expected running at cursor {expected_cursor}")

        self.record_event(
            job_id,
            EventType.CHUNK_COMMITTED,
            {
                "from": expected_cursor,
                "to": new_cursor,
                "inserted": inserted,
                "errors": errors,
                "unresolved": unresolved,
            },
            commit=False,
        )
        if commit:
            self._conn.commit()
        return self.require_job(job_id)

    def request_cancellation(
        self, job_id: str, reason: str, caller: str | None = None, *, commit: bool = True
    ) -> Job:
        """Set the cancellation flag; a no-op on terminal or already-flagged jobs."""
        cursor = self._conn.execute(
            """
            UPDATE lex_jobs
            SET cancel_requested = 1, cancel_reason = ?, cancelled_by = ?, updated_at = ?
            WHERE id = ? AND cancel_requested = 0 AND status NOT IN (?, ?, ?)
            """,
            (
                reason,
                caller,
                utcnow().isoformat(),
                job_id,
                *(s.value for s in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)),
            ),
        )
        if cursor.rowcount:
            self.record_event(
                job_id,
                EventType.CANCEL_REQUESTED,
                {"reason": reason, "caller": caller},
                commit=False,
            )
        if commit:
            self._conn.commit()
        return self.require_job(job_id)

    def _raise_lost_race(self, job_id: str, expectation: str) -> None:
        current = self.require_job(job_id)
        if current.is_terminal:
            raise JobTerminalError(job_id, current.status.value)
        raise JobConflictError(
            job_id,
            f"Job {job_id} changed concurrently ({expectation}, "
            f"found {current.status.value} at cursor {current.cursor})",
        )

    # =========================================================================
    # UNIT SEQUENCE
    # =========================================================================

    def store_units(self, job_id: str, units: Iterable[dict[str, Any]], *, commit: bool = True) -> int:
        """Durably store the job's unit sequence; returns the unit count."""
        rows = [(job_id, idx, json.dumps(unit, ensure_ascii=False)) for idx, unit in enumerate(units)]
        self._conn.executemany(
            "INSERT OR REPLACE INTO lex_job_units (job_id, idx, payload) VALUES (?, ?, ?)",
            rows,
        )
        if commit:
            self._conn.commit()
        return len(rows)

    def load_units(self, job_id: str, start: int, stop: int) -> list[dict[str, Any]]:
        """Units with ``start <= idx < stop`` in sequence order."""
        rows = self._conn.execute(
            """
            SELECT payload FROM lex_job_units
            WHERE job_id = ? AND idx >= ? AND idx < ?
            ORDER BY idx
            """,
            (job_id, start, stop),
        ).fetchall()
        return [json.loads(row[0]) for row in rows]

    def count_units(self, job_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM lex_job_units WHERE job_id = ?", (job_id,)
        ).fetchone()
        return row[0]

    def release_units(self, job_id: str, *, commit: bool = True) -> int:
        """Delete the stored unit sequence of a finished job."""
        cursor = self._conn.execute("DELETE FROM lex_job_units WHERE job_id = ?", (job_id,))
        released = cursor.rowcount
        if released:
            self.record_event(job_id, EventType.UNITS_RELEASED, {"units": released}, commit=False)
        if commit:
            self._conn.commit()
        return released

    # =========================================================================
    # EVENT RECORDING
    # =========================================================================

    def record_event(
        self,
        job_id: str,
        event_type: "EventType | str",
        data: dict[str, Any] | None = None,
        *,
        commit: bool = True,
    ) -> JobEvent:
        event = JobEvent.create(job_id, event_type, data)
        self._conn.execute(
            """
            INSERT INTO lex_job_events (id, job_id, event_type, timestamp, data)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.job_id,
                event.event_type.value,
                event.timestamp.isoformat(),
                json.dumps(event.data),
            ),
        )
        if commit:
            self._conn.commit()
        return event

    def get_events(self, job_id: str, event_type: EventType | None = None) -> list[JobEvent]:
        query = "SELECT id, job_id, event_type, timestamp, data FROM lex_job_events WHERE job_id = ?"
        params: list[Any] = [job_id]
        if event_type:
            query += " AND event_type = ?"
            params.append(EventType(event_type).value)
        query += " ORDER BY timestamp, rowid"

        return [
            JobEvent(
                id=row[0],
                job_id=row[1],
                event_type=EventType(row[2]),
                timestamp=datetime.fromisoformat(row[3]),
                data=json.loads(row[4]) if row[4] else {},
            )
            for row in self._conn.execute(query, params).fetchall()
        ]

    # =========================================================================
    # REJECTS
    # =========================================================================

    def record_rejects(self, job_id: str, source: str | None, rejects: Iterable[dict[str, Any]], *, commit: bool = True) -> int:
        """Store parser rejects for audit."""
        now = utcnow().isoformat()
        rows = [
            (job_id, source, r.get("line_number"), r.get("reason", "rejected"), r.get("raw_text"), now)
            for r in rejects
        ]
        self._conn.executemany(
            """
            INSERT INTO lex_rejects (job_id, source, line_number, reason, raw_text, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        if commit:
            self._conn.commit()
        return len(rows)

    def get_rejects(self, job_id: str, limit: int = 100) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            """
            SELECT line_number, reason, raw_text FROM lex_rejects
            WHERE job_id = ? ORDER BY id LIMIT ?
            """,
            (job_id, limit),
        ).fetchall()
        return [{"line_number": r[0], "reason": r[1], "raw_text": r[2]} for r in rows]

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _row_to_job(self, row) -> Job:
        return Job(
            id=row[0],
            kind=JobKind(row[1]),
            status=JobStatus(row[2]),
            total_units=row[3],
            processed_count=row[4],
            inserted_count=row[5],
            error_count=row[6],
            unresolved_count=row[7],
            cursor=row[8],
            cancel_requested=bool(row[9]),
            cancel_reason=row[10],
            cancelled_by=row[11],
            error_message=row[12],
            metadata=json.loads(row[13]) if row[13] else {},
            created_at=datetime.fromisoformat(row[14]),
            updated_at=datetime.fromisoformat(row[15]),
            started_at=_ts(row[16]),
            finished_at=_ts(row[17]),
        )
