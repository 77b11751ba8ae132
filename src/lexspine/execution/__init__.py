"""Job execution and resilience.

ARCHITECTURE
────────────
::

    ChunkedJobEngine (engine.py)
      ├── JobStore          ─ jobs, unit sequences, events (CAS updates)
      ├── ConcurrencyGuard  ─ job:{id} advisory lock with expiry
      ├── TimeBudget        ─ per-invocation wall-clock budget
      └── scheduler         ─ Inline / Queue / Deferred continuations
                                └── ChunkWorker threads (worker.py)

    Resilience kit:  retry.py · circuit_breaker.py · rate_limit.py
    Health:          health.py

The engine is imported from :mod:`lexspine.execution.engine` directly;
this package only re-exports the leaf modules.
"""

from lexspine.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    get_circuit_breaker,
)
from lexspine.execution.concurrency import ConcurrencyGuard, job_lock_key
from lexspine.execution.job_store import JobStore
from lexspine.execution.models import (
    EventType,
    InvalidTransitionError,
    Job,
    JobEvent,
    JobKind,
    JobStatus,
    validate_job_transition,
)
from lexspine.execution.rate_limit import KeyedRateLimiter, RateLimitExceeded
from lexspine.execution.retry import ExponentialBackoff, RetryContext, with_retry
from lexspine.execution.timeout import TimeBudget

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
    "get_circuit_breaker",
    "ConcurrencyGuard",
    "job_lock_key",
    "JobStore",
    "EventType",
    "InvalidTransitionError",
    "Job",
    "JobEvent",
    "JobKind",
    "JobStatus",
    "validate_job_transition",
    "KeyedRateLimiter",
    "RateLimitExceeded",
    "ExponentialBackoff",
    "RetryContext",
    "with_retry",
    "TimeBudget",
]
