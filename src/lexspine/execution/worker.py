"""Continuation schedulers and the background chunk worker.

After committing a chunk the engine hands a :class:`ChunkTask` for the
next one to its scheduler. The scheduler decides where the next
invocation runs:

    InlineScheduler   - in the caller, one chunk after another, until the
                        job completes, pauses, fails or is cancelled
    QueueScheduler    - on a bounded queue drained by ChunkWorker threads;
                        one invocation processes exactly one chunk
    DeferredScheduler - nowhere yet; tasks are kept for an external
                        trigger (HTTP continue, cron, CLI)

Usage::

    scheduler = QueueScheduler()
    engine = ChunkedJobEngine(conn, handlers, settings=settings, scheduler=scheduler)
    scheduler.start_workers(2)
    engine.start_job("dictionary-import", payload)
    ...
    scheduler.stop_workers()
"""

from __future__ import annotations

import queue
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from lexspine.core.errors import describe_error
from lexspine.core.logging import get_logger

from .timeout import TimeBudget

if TYPE_CHECKING:
    from .engine import ChunkedJobEngine

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ChunkTask:
    """Process the chunk of ``job_id`` starting at ``from_index``.

    ``budget`` carries the invocation's time budget across inline
    continuations; queued tasks start a fresh budget.
    """

    job_id: str
    from_index: int
    budget: TimeBudget | None = field(default=None, compare=False, repr=False)


class ContinuationScheduler(Protocol):
    def bind(self, engine: ChunkedJobEngine) -> None: ...

    def schedule(self, task: ChunkTask) -> None: ...


class _BoundScheduler:
    _engine: ChunkedJobEngine | None = None

    def bind(self, engine: ChunkedJobEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> ChunkedJobEngine:
        if self._engine is None:
            raise RuntimeError(f"{type(self).__name__} is not bound to an engine")
        return self._engine


class InlineScheduler(_BoundScheduler):
    """Runs continuations in the calling thread.

    A continuation scheduled while a chunk is running is queued and picked
    up once that chunk returns, so the call stack stays flat however many
    chunks a job has.
    """

    def __init__(self):
        self._local = threading.local()

    def _pending(self) -> deque[ChunkTask]:
        if not hasattr(self._local, "pending"):
            self._local.pending = deque()
            self._local.draining = False
        return self._local.pending

    def schedule(self, task: ChunkTask) -> None:
        pending = self._pending()
        pending.append(task)
        if self._local.draining:
            return

        self._local.draining = True
        try:
            while pending:
                next_task = pending.popleft()
                self.engine.process_chunk(next_task.job_id, next_task.from_index, budget=next_task.budget)
        finally:
            pending.clear()
            self._local.draining = False


class DeferredScheduler(_BoundScheduler):
    """Keeps continuations until something triggers them."""

    def __init__(self):
        self.pending: deque[ChunkTask] = deque()
        self._lock = threading.Lock()

    def schedule(self, task: ChunkTask) -> None:
        with self._lock:
            self.pending.append(ChunkTask(task.job_id, task.from_index))

    def pop(self) -> ChunkTask | None:
        with self._lock:
            return self.pending.popleft() if self.pending else None

    def run_next(self):
        """Run one pending continuation; returns its report or None."""
        task = self.pop()
        if task is None:
            return None
        return self.engine.process_chunk(task.job_id, task.from_index)


class QueueScheduler(_BoundScheduler):
    """Bounded in-process queue consumed by :class:`ChunkWorker` threads."""

    def __init__(self, maxsize: int = 1000, put_timeout: float = 5.0):
        self.queue: queue.Queue[ChunkTask] = queue.Queue(maxsize=maxsize)
        self.put_timeout = put_timeout
        self.workers: list[ChunkWorker] = []

    def schedule(self, task: ChunkTask) -> None:
        # queued tasks are separate invocations with their own budget
        self.queue.put(ChunkTask(task.job_id, task.from_index), timeout=self.put_timeout)

    def get(self, timeout: float) -> ChunkTask | None:
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def task_done(self) -> None:
        self.queue.task_done()

    def start_workers(self, count: int, poll_timeout: float = 0.5) -> list[ChunkWorker]:
        for _ in range(count):
            worker = ChunkWorker(self, poll_timeout=poll_timeout)
            worker.start_background()
            self.workers.append(worker)
        return self.workers

    def stop_workers(self, timeout: float = 10.0) -> None:
        for worker in self.workers:
            worker.stop()
        for worker in self.workers:
            worker.join(timeout)
        self.workers.clear()

    def join(self) -> None:
        """Block until every queued task has been processed."""
        self.queue.join()


@dataclass
class WorkerStats:
    """Aggregate statistics for a chunk worker."""

    chunks_processed: int = 0
    completed: int = 0
    paused: int = 0
    cancelled: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    last_task_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunks_processed": self.chunks_processed,
            "completed": self.completed,
            "paused": self.paused,
            "cancelled": self.cancelled,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
            "last_task_at": self.last_task_at.isoformat() if self.last_task_at else None,
        }


class ChunkWorker:
    """Thread that drains a :class:`QueueScheduler`.

    A task that raises (lost compare-and-set, unknown job) is logged and
    counted; the worker keeps going.
    """

    def __init__(self, scheduler: QueueScheduler, *, poll_timeout: float = 0.5, worker_id: str | None = None):
        self.scheduler = scheduler
        self.poll_timeout = poll_timeout
        self.worker_id = worker_id or f"chunk-worker-{uuid.uuid4().hex[:8]}"
        self.stats = WorkerStats()
        self.started_at = _utcnow()
        self._shutdown = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run the loop in the current thread until :meth:`stop`."""
        logger.info("worker_started", worker_id=self.worker_id)
        while not self._shutdown.is_set():
            task = self.scheduler.get(self.poll_timeout)
            if task is None:
                continue
            try:
                self.run_task(task)
            finally:
                self.scheduler.task_done()
        logger.info("worker_stopped", worker_id=self.worker_id, **self.stats.to_dict())

    def start_background(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.start, name=self.worker_id, daemon=True)
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self._shutdown.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run_task(self, task: ChunkTask) -> None:
        self.stats.last_task_at = _utcnow()
        try:
            report = self.scheduler.engine.process_chunk(task.job_id, task.from_index)
        except Exception as e:
            self.stats.errors += 1
            logger.warning(
                "chunk_task_error",
                worker_id=self.worker_id,
                job_id=task.job_id,
                from_index=task.from_index,
                error=describe_error(e),
            )
            return

        self.stats.chunks_processed += 1
        outcome = report.outcome.value
        if hasattr(self.stats, outcome):
            setattr(self.stats, outcome, getattr(self.stats, outcome) + 1)
