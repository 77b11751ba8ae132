"""
Chunked, resumable job engine.

Each invocation of :meth:`ChunkedJobEngine.process_chunk` handles at most
one slice of a job's unit sequence, commits the slice's output together
with the cursor advance, and then either finishes the job, pauses it, or
hands the next slice to the continuation scheduler. Nothing a chunk
decides lives only in memory: a crash between chunks loses nothing, and
a crash inside a chunk re-runs that chunk, whose writes are upserts.

Manifesto:
    - **Single-flight:** a job's chunks never run concurrently; the
      ``job:{id}`` advisory lock admits one invocation, others are skipped
    - **Strict cursor order:** ``from_index`` must equal the stored
      cursor; an older index is a no-op, a newer one is a conflict
    - **Cancellation first:** the kill switch and the cancel flag are
      checked before any work
    - **Atomic chunk:** handler writes and the checkpoint share one
      SQLite transaction, re-run whole when the file is locked
    - **Terminal is final:** completed, failed and cancelled jobs are
      never touched again

Connections:
    The engine's own connection serves control and read calls
    (``start_job``, ``cancel_job``, ``get_job``...) under ``db_lock``.
    Given a ``connect`` factory, each thread that processes chunks opens
    its own connection, so classifier calls and retry sleeps inside a
    chunk never hold ``db_lock``. Without one (an in-memory database)
    chunks share the engine's connection and run under ``db_lock``.

Architecture:
    ::

        process_chunk(job_id, from_index)
          │
          ├─ lock held elsewhere ─────────────────────► SKIPPED
          ├─ terminal / stale index ──────────────────► NOOP
          ├─ future index ───────────────────────────► JobConflictError
          ├─ kill switch ──► cancel_requested
          ├─ cancel_requested ──► (paused→)running→cancelling→cancelled
          ├─ paused ──► running
          ├─ load units[cursor : cursor+chunk_size]
          ├─ BEGIN  handler.process(...)  checkpoint(...)  COMMIT
          ├─ cursor == total ──► completed, units released ──► COMPLETED
          ├─ budget spent ──► paused ─────────────────────────► PAUSED
          └─ scheduler.schedule(ChunkTask(job_id, cursor)) ──► CONTINUED

        any other exception ──► failed "{Type}: {message}" ──► FAILED

Example:
    >>> engine = ChunkedJobEngine(conn, default_registry(settings), settings=settings)
    >>> ticket = engine.start_job("dictionary-import", {"source_text": text})
    >>> engine.store.require_job(ticket.job_id).status
    <JobStatus.COMPLETED: 'completed'>
"""

from __future__ import annotations

import queue
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import timedelta
from enum import Enum
from typing import Any, TypeVar

from lexspine.core.database import transaction
from lexspine.core.errors import (
    JobConflictError,
    JobError,
    JobNotFoundError,
    JobTerminalError,
    KillSwitchActiveError,
    ValidationError,
    describe_error,
)
from lexspine.core.logging import LogContext, get_logger
from lexspine.core.settings import LexSpineSettings, get_settings

from .concurrency import ConcurrencyGuard, job_lock_key
from .job_store import JobStore, utcnow
from .kill_switch import KillState, KillSwitch
from .models import Job, JobEvent, JobKind, JobStatus
from .rate_limit import KeyedRateLimiter
from .retry import STORE_RETRY, RetryContext, RetryStrategy
from .timeout import TimeBudget
from .worker import ChunkTask, ContinuationScheduler, InlineScheduler

logger = get_logger(__name__)

T = TypeVar("T")

MIN_CANCEL_REASON = 5


class ChunkOutcome(str, Enum):
    SKIPPED = "skipped"
    NOOP = "noop"
    CANCELLED = "cancelled"
    PAUSED = "paused"
    COMPLETED = "completed"
    CONTINUED = "continued"
    FAILED = "failed"


@dataclass(frozen=True)
class ChunkReport:
    """What one :meth:`ChunkedJobEngine.process_chunk` call did."""

    job_id: str
    outcome: ChunkOutcome
    cursor: int
    status: JobStatus | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "outcome": self.outcome.value,
            "cursor": self.cursor,
            "status": self.status.value if self.status else None,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class JobTicket:
    job_id: str
    total_units: int

    def to_dict(self) -> dict[str, Any]:
        return {"jobId": self.job_id, "totalUnits": self.total_units}


@dataclass(frozen=True)
class KillReport:
    """Result of :meth:`ChunkedJobEngine.kill_all`.

    ``cancelled`` jobs were finalized at once; ``stopping`` jobs had a
    chunk in flight and are cancelled at its boundary.
    """

    state: KillState
    cancelled: list[str] = field(default_factory=list)
    stopping: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {**self.state.to_dict(), "cancelled": self.cancelled, "stopping": self.stopping}


@dataclass(frozen=True)
class ReprocessPlan:
    corpus: str | None
    candidates: int
    job_id: str | None = None
    total_units: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "corpus": self.corpus,
            "candidates": self.candidates,
            "jobId": self.job_id,
            "totalUnits": self.total_units,
        }


@dataclass(frozen=True)
class _Session:
    """A connection with the job store, lock table and kill switch bound to it."""

    conn: Any
    store: JobStore
    guard: ConcurrencyGuard
    kill_switch: KillSwitch

    @classmethod
    def open(cls, conn) -> _Session:
        return cls(conn, JobStore(conn), ConcurrencyGuard(conn), KillSwitch(conn))


class ChunkedJobEngine:
    """Starts, advances, pauses and cancels chunked jobs.

    Args:
        conn: SQLite connection shared by the store, the lock table and
            the handlers' output tables
        handlers: Registry resolving a job kind to its handler
        settings: Chunk budget, lock timeout and cancel rate limit
        scheduler: Where continuations run (inline by default)
        cancel_limiter: Per-caller limiter for cancellation requests
        worker_id: Prefix of the lock owner ids this engine uses
        connect: Opens a connection to the same database; chunk threads
            get their own connection from it (file databases only)
        store_retry: Retry strategy for writes that hit a locked database
        sleep: Sleep between store retries (injected by tests)
    """

    def __init__(
        self,
        conn,
        handlers,
        *,
        settings: LexSpineSettings | None = None,
        scheduler: ContinuationScheduler | None = None,
        cancel_limiter: KeyedRateLimiter | None = None,
        worker_id: str | None = None,
        connect: Callable[[], Any] | None = None,
        store_retry: RetryStrategy = STORE_RETRY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        self._shared = _Session.open(conn)
        self.conn = conn
        self.store = self._shared.store
        self.guard = self._shared.guard
        self.kill_switch = self._shared.kill_switch
        self.handlers = handlers
        self.scheduler = scheduler or InlineScheduler()
        self.scheduler.bind(self)
        self.cancel_limiter = cancel_limiter or KeyedRateLimiter.sliding_window(
            self.settings.cancel_rate_limit,
            self.settings.cancel_rate_window_seconds,
        )
        self.worker_id = worker_id or f"engine-{uuid.uuid4().hex[:8]}"
        self.store_retry = store_retry
        self._sleep = sleep
        # guards self.conn: transactions from different threads must not interleave
        self._db_lock = threading.RLock()
        self._connect = connect
        self._local = threading.local()
        self._sessions: list[_Session] = []
        self._sessions_lock = threading.Lock()

    # =========================================================================
    # CONNECTIONS AND STORE RETRIES
    # =========================================================================

    @contextmanager
    def _chunk_session(self) -> Iterator[_Session]:
        if self._connect is None:
            with self._db_lock:
                yield self._shared
            return
        session = getattr(self._local, "session", None)
        if session is None:
            session = _Session.open(self._connect())
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        yield session

    def close(self) -> None:
        """Close the chunk threads' connections; ``conn`` stays with its owner."""
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.conn.close()
        self._local = threading.local()

    def _retry_store(self, conn, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            conn.rollback()
            logger.warning("store_busy_retry", attempt=attempt, delay=delay, error=describe_error(error))

        return RetryContext(self.store_retry, on_retry=on_retry, sleep=self._sleep).run(func, *args, **kwargs)

    def _atomic(self, conn, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``func`` in one transaction; the whole transaction is retried."""

        def attempt() -> T:
            with transaction(conn):
                return func(*args, **kwargs)

        return self._retry_store(conn, attempt)

    def _refuse_if_killed(self, session: _Session) -> None:
        state = session.kill_switch.state()
        if state is not None:
            raise KillSwitchActiveError(state.reason, retry_after=state.remaining_seconds())

    # =========================================================================
    # START
    # =========================================================================

    def start_job(self, kind: JobKind | str, payload: dict[str, Any]) -> JobTicket:
        """Validate, materialize and persist a job, then schedule chunk 0.

        Raises:
            ValidationError: If the kind is unknown or the payload is invalid
            KillSwitchActiveError: While the emergency stop is active
        """
        handler = self.handlers.get(kind)
        normalized = handler.validate(payload)

        with self._db_lock:
            self._refuse_if_killed(self._shared)
            job = self._retry_store(self.conn, self.store.create_job, Job.create(handler.kind))

        with LogContext(job_id=job.id, job_kind=job.kind.value):
            try:
                materialized = handler.materialize(normalized)
            except Exception as e:
                with self._db_lock:
                    self._fail(self._shared, job.id, e)
                raise

            with self._db_lock:
                total = self._atomic(self.conn, self._persist_units, job, materialized)
            logger.info("job_started", total_units=total, rejected=len(materialized.rejects))

        self._schedule(ChunkTask(job.id, 0))
        return JobTicket(job.id, total)

    def _persist_units(self, job: Job, materialized) -> int:
        total = self.store.store_units(job.id, materialized.units, commit=False)
        self.store.set_total_units(job.id, total, commit=False)
        if materialized.rejects:
            self.store.record_rejects(job.id, materialized.source, materialized.rejects, commit=False)
        self.store.update_metadata(job.id, materialized.metadata, commit=False)
        self.store.transition(
            job.id,
            JobStatus.QUEUED,
            JobStatus.RUNNING,
            event_data={"total_units": total},
            commit=False,
        )
        return total

    # =========================================================================
    # CHUNK PROCESSING
    # =========================================================================

    def process_chunk(self, job_id: str, from_index: int, *, budget: TimeBudget | None = None) -> ChunkReport:
        """Run one chunk of ``job_id`` starting at ``from_index``.

        Raises:
            JobNotFoundError: If the job does not exist
            JobConflictError: If ``from_index`` is ahead of the cursor or a
                concurrent writer won a compare-and-set
        """
        budget = budget or TimeBudget(self.settings.chunk_time_budget_seconds)
        lock_key = job_lock_key(job_id)
        owner = f"{self.worker_id}:{uuid.uuid4().hex[:8]}"
        next_task = None

        with self._chunk_session() as session:
            acquired = self._retry_store(
                session.conn, session.guard.acquire, lock_key, owner, self.settings.lock_timeout_seconds
            )
            if not acquired:
                logger.info("chunk_skipped", job_id=job_id, holder=session.guard.get_lock_holder(lock_key))
                return ChunkReport(job_id, ChunkOutcome.SKIPPED, from_index, detail="locked")
            try:
                job = session.store.require_job(job_id)
                with LogContext(job_id=job_id, job_kind=job.kind.value):
                    report, next_task = self._run_chunk(session, job, from_index, budget)
            finally:
                self._retry_store(session.conn, session.guard.release, lock_key, owner)

        if next_task is not None:
            self._schedule(next_task)
        return report

    def _run_chunk(
        self, session: _Session, job: Job, from_index: int, budget: TimeBudget
    ) -> tuple[ChunkReport, ChunkTask | None]:
        if job.is_terminal:
            return self._report(job, ChunkOutcome.NOOP, "terminal"), None
        if from_index < job.cursor:
            logger.info("chunk_stale_index", from_index=from_index, cursor=job.cursor)
            return self._report(job, ChunkOutcome.NOOP, "stale_index"), None
        if from_index > job.cursor:
            raise JobConflictError(job.id, f"from_index {from_index} is ahead of cursor {job.cursor}")

        store = session.store
        try:
            kill = session.kill_switch.state()
            if kill is not None and not job.cancel_requested:
                job = self._retry_store(
                    session.conn, store.request_cancellation, job.id, f"emergency stop: {kill.reason}", kill.set_by
                )
            if job.cancel_requested or job.status == JobStatus.CANCELLING:
                job = self._cancel(session, job)
                return self._report(job, ChunkOutcome.CANCELLED, "kill_switch" if kill else None), None

            if job.status == JobStatus.PAUSED:
                job = self._atomic(
                    session.conn,
                    store.transition,
                    job.id,
                    JobStatus.PAUSED,
                    JobStatus.RUNNING,
                    event_data={"cursor": job.cursor},
                    commit=False,
                )
                logger.info("job_resumed", cursor=job.cursor)
            elif job.status == JobStatus.QUEUED:
                job = self._atomic(
                    session.conn, store.transition, job.id, JobStatus.QUEUED, JobStatus.RUNNING, commit=False
                )

            if job.cursor >= job.total_units:
                job = self._complete(session, job)
                return self._report(job, ChunkOutcome.COMPLETED), None

            job = self._commit_chunk(session, job)

            if job.cursor >= job.total_units:
                job = self._complete(session, job)
                return self._report(job, ChunkOutcome.COMPLETED), None

            if budget.exhausted:
                job = self._atomic(
                    session.conn,
                    store.transition,
                    job.id,
                    JobStatus.RUNNING,
                    JobStatus.PAUSED,
                    event_data={"cursor": job.cursor, "elapsed_seconds": round(budget.elapsed, 2)},
                    commit=False,
                )
                logger.info("job_paused", cursor=job.cursor, elapsed_seconds=round(budget.elapsed, 2))
                return self._report(job, ChunkOutcome.PAUSED, "time_budget"), None

            return self._report(job, ChunkOutcome.CONTINUED), ChunkTask(job.id, job.cursor, budget)

        except (JobConflictError, JobTerminalError, JobNotFoundError):
            raise
        except Exception as e:
            job = self._fail(session, job.id, e)
            return self._report(job, ChunkOutcome.FAILED, job.error_message), None

    def _commit_chunk(self, session: _Session, job: Job) -> Job:
        handler = self.handlers.get(job.kind)
        start = job.cursor
        stop = min(start + handler.chunk_size, job.total_units)
        units = session.store.load_units(job.id, start, stop)
        if len(units) != stop - start:
            raise JobError(f"Unit sequence of job {job.id} is incomplete: expected {stop - start}, found {len(units)}")

        def write_chunk():
            result = handler.process(session.conn, job, units)
            metadata = {**job.metadata, **result.metadata} if result.metadata else None
            checkpointed = session.store.checkpoint(
                job.id,
                start,
                stop,
                inserted=result.inserted,
                errors=result.errors,
                unresolved=result.unresolved,
                metadata=metadata,
                commit=False,
            )
            return result, checkpointed

        result, job = self._atomic(session.conn, write_chunk)

        logger.info(
            "chunk_committed",
            from_index=start,
            cursor=stop,
            total_units=job.total_units,
            inserted=result.inserted,
            errors=result.errors,
            unresolved=result.unresolved,
        )
        return job

    def _complete(self, session: _Session, job: Job) -> Job:
        def finish() -> Job:
            done = session.store.transition(job.id, JobStatus.RUNNING, JobStatus.COMPLETED, commit=False)
            session.store.release_units(job.id, commit=False)
            return done

        job = self._atomic(session.conn, finish)
        logger.info(
            "job_completed",
            processed=job.processed_count,
            inserted=job.inserted_count,
            errors=job.error_count,
            unresolved=job.unresolved_count,
        )
        return session.store.require_job(job.id)

    def _cancel(self, session: _Session, job: Job) -> Job:
        store = session.store

        def finish() -> Job:
            current = job
            if current.status == JobStatus.PAUSED:
                current = store.transition(current.id, JobStatus.PAUSED, JobStatus.RUNNING, commit=False)
            elif current.status == JobStatus.QUEUED:
                current = store.transition(current.id, JobStatus.QUEUED, JobStatus.RUNNING, commit=False)
            if current.status == JobStatus.RUNNING:
                current = store.transition(
                    current.id,
                    JobStatus.RUNNING,
                    JobStatus.CANCELLING,
                    event_data={"reason": current.cancel_reason, "cursor": current.cursor},
                    commit=False,
                )
            current = store.transition(current.id, JobStatus.CANCELLING, JobStatus.CANCELLED, commit=False)
            store.release_units(current.id, commit=False)
            return current

        job = self._atomic(session.conn, finish)
        logger.info("job_cancelled", processed=job.processed_count, reason=job.cancel_reason, by=job.cancelled_by)
        return store.require_job(job.id)

    def _fail(self, session: _Session, job_id: str, error: BaseException) -> Job:
        message = describe_error(error)
        logger.error("job_failed", job_id=job_id, error=message, exc_info=error)
        session.conn.rollback()
        store = session.store
        job = store.require_job(job_id)
        if job.is_terminal:
            return job

        def finish() -> Job:
            current = job
            if current.status in (JobStatus.QUEUED, JobStatus.PAUSED):
                current = store.transition(current.id, current.status, JobStatus.RUNNING, commit=False)
            if current.status == JobStatus.CANCELLING:
                return store.transition(current.id, JobStatus.CANCELLING, JobStatus.CANCELLED, commit=False)
            return store.transition(
                current.id, JobStatus.RUNNING, JobStatus.FAILED, error_message=message, commit=False
            )

        return self._atomic(session.conn, finish)

    def _report(self, job: Job, outcome: ChunkOutcome, detail: str | None = None) -> ChunkReport:
        return ChunkReport(job.id, outcome, job.cursor, job.status, detail)

    def _schedule(self, task: ChunkTask) -> None:
        try:
            self.scheduler.schedule(task)
        except queue.Full as e:
            # the job stays running at its cursor; recover_stalled() picks it up
            logger.warning("continuation_not_scheduled", job_id=task.job_id, cursor=task.from_index, error=describe_error(e))

    # =========================================================================
    # CANCELLATION AND RECOVERY
    # =========================================================================

    def cancel_job(self, job_id: str, reason: str, caller: str | None = None, *, rate_key: str | None = None) -> Job:
        """Ask a job to stop at its next chunk boundary.

        Idempotent: terminal jobs and already-flagged jobs come back
        unchanged. ``caller`` is recorded as ``cancelled_by``; the rate
        limit is keyed on ``rate_key`` (the authenticated identity) and
        falls back to ``caller`` for trusted local callers such as the CLI.

        Raises:
            RateLimitExceeded: If the identity exceeded the cancellation rate
            ValidationError: If ``reason`` is shorter than 5 characters
            JobNotFoundError: If the job does not exist
        """
        self.cancel_limiter.check(f"cancel-job:{rate_key or caller or 'anonymous'}")
        reason = _check_reason(reason)

        with self._db_lock:
            job = self.store.require_job(job_id)
            if job.is_terminal:
                return job
            job = self._retry_store(self.conn, self.store.request_cancellation, job_id, reason, caller)
        logger.info("job_cancel_requested", job_id=job_id, caller=caller, status=job.status.value)
        return job

    def kill_all(self, reason: str, caller: str | None = None, *, ttl_minutes: int | None = None) -> KillReport:
        """Emergency stop: set the kill switch and cancel every active job.

        Jobs nobody is working on are cancelled at once; a job with a chunk
        in flight is flagged and cancelled when that chunk returns. Until
        the switch is cleared or expires, :meth:`start_job` is refused and
        every chunk invocation cancels its job instead of processing it.

        Raises:
            ValidationError: If ``reason`` is shorter than 5 characters
        """
        reason = _check_reason(reason)
        ttl_seconds = (ttl_minutes or self.settings.kill_switch_ttl_minutes) * 60
        cancelled: list[str] = []
        stopping: list[str] = []
        owner = f"{self.worker_id}:kill"

        with self._db_lock:
            state = self._retry_store(self.conn, self.kill_switch.activate, reason, caller, ttl_seconds)
            for job in self.store.list_active():
                self._retry_store(
                    self.conn, self.store.request_cancellation, job.id, f"emergency stop: {reason}", caller
                )
                lock_key = job_lock_key(job.id)
                if not self._retry_store(
                    self.conn, self.guard.acquire, lock_key, owner, self.settings.lock_timeout_seconds
                ):
                    stopping.append(job.id)
                    continue
                try:
                    current = self.store.require_job(job.id)
                    if not current.is_terminal:
                        with LogContext(job_id=job.id, job_kind=job.kind.value):
                            self._cancel(self._shared, current)
                        cancelled.append(job.id)
                finally:
                    self._retry_store(self.conn, self.guard.release, lock_key, owner)

        logger.warning(
            "kill_switch_activated",
            reason=reason,
            by=caller,
            cancelled=len(cancelled),
            stopping=len(stopping),
            ttl_minutes=ttl_seconds // 60,
        )
        return KillReport(state, cancelled, stopping)

    def clear_kill(self, caller: str | None = None) -> bool:
        """Lift the emergency stop; True if it was active."""
        with self._db_lock:
            cleared = self._retry_store(self.conn, self.kill_switch.clear)
        logger.warning("kill_switch_cleared", by=caller, was_active=cleared)
        return cleared

    def kill_status(self) -> KillState | None:
        with self._db_lock:
            return self.kill_switch.state()

    def reprocess_unclassified(
        self,
        corpus: str | None = None,
        *,
        below_confidence: float | None = None,
        dry_run: bool = False,
    ) -> ReprocessPlan:
        """Re-run the cascade over stored occurrences that are still unresolved.

        Starts one corpus-annotate job over those occurrences (classifier
        answers cached for them are forgotten first, so ``NC`` words are
        asked again). With ``dry_run`` only the candidates are counted.

        Raises:
            KillSwitchActiveError: While the emergency stop is active
        """
        handler = self.handlers.get(JobKind.CORPUS_ANNOTATE)
        with self._db_lock:
            if not dry_run:
                self._refuse_if_killed(self._shared)
            occurrences = handler.unresolved_occurrences(self.conn, corpus, below_confidence=below_confidence)

        plan = ReprocessPlan(corpus, len(occurrences))
        logger.info("reprocess_candidates", corpus=corpus, candidates=plan.candidates, dry_run=dry_run)
        if dry_run or not occurrences:
            return plan

        ticket = self.start_job(
            JobKind.CORPUS_ANNOTATE,
            {"corpus_name": corpus or "*", "occurrences": occurrences, "reprocess": True},
        )
        return replace(plan, job_id=ticket.job_id, total_units=ticket.total_units)

    # =========================================================================
    # READS
    # =========================================================================

    @property
    def db_lock(self) -> threading.RLock:
        return self._db_lock

    def get_job(self, job_id: str) -> Job:
        """The job's current state; raises :class:`JobNotFoundError`."""
        with self._db_lock:
            return self.store.require_job(job_id)

    def list_jobs(self, kind: JobKind | None = None, status: JobStatus | None = None, limit: int = 100) -> list[Job]:
        with self._db_lock:
            return self.store.list_jobs(kind=kind, status=status, limit=limit)

    def get_events(self, job_id: str) -> list[JobEvent]:
        with self._db_lock:
            self.store.require_job(job_id)
            return self.store.get_events(job_id)

    def resume_paused(self, limit: int = 100) -> list[str]:
        """Schedule every paused job at its cursor; returns their ids."""
        with self._db_lock:
            jobs = self.store.list_jobs(status=JobStatus.PAUSED, limit=limit)
        for job in jobs:
            self._schedule(ChunkTask(job.id, job.cursor))
        if jobs:
            logger.info("paused_jobs_resumed", count=len(jobs))
        return [job.id for job in jobs]

    def recover_stalled(self, older_than_minutes: int | None = None, limit: int = 100) -> list[str]:
        """Reschedule running jobs whose worker vanished.

        A job counts as stalled when it has not been updated for
        ``older_than_minutes`` and nobody holds its lock.
        """
        minutes = older_than_minutes or self.settings.stale_job_minutes
        cutoff = utcnow() - timedelta(minutes=minutes)
        with self._db_lock:
            jobs = [
                job
                for job in self.store.list_jobs(status=JobStatus.RUNNING, updated_before=cutoff, limit=limit)
                if not self.guard.is_locked(job_lock_key(job.id))
            ]
        for job in jobs:
            logger.warning("stalled_job_rescheduled", job_id=job.id, cursor=job.cursor)
            self._schedule(ChunkTask(job.id, job.cursor))
        return [job.id for job in jobs]


def _check_reason(reason: str | None) -> str:
    reason = (reason or "").strip()
    if len(reason) < MIN_CANCEL_REASON:
        raise ValidationError(
            f"cancellation reason must be at least {MIN_CANCEL_REASON} characters",
            field="reason",
            value=reason,
        )
    return reason
