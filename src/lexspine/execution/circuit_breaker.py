"""Circuit breaker for the cascade's external dependencies.

Stops calling a dependency (the generative classifier, a remote store)
once it has failed repeatedly, so that a dead service costs nothing but
an immediate rejection until its cooldown has passed.

States:
    CLOSED: Normal operation; consecutive failures are counted and any
        success resets the count
    OPEN: Calls rejected without invoking the operation; the fallback
        runs if one was given, otherwise CircuitOpenError names the
        remaining cooldown
    HALF_OPEN: After ``reset_timeout`` exactly one trial call is let
        through; success closes the circuit, failure reopens it

Breaker state lives in process memory, one registry per worker. It is a
performance optimisation only: with several workers each one learns about
a failing dependency separately, and nothing depends on the state for
correctness. Accurate global state would need a shared counter with a TTL
in an external store.

Example:
    >>> breaker = get_circuit_breaker("classifier", NORMAL)
    >>> result = breaker.call(client.classify, batch)
    >>> result = breaker.call(client.classify, batch, fallback=lambda: [])
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from lexspine.core.errors import ErrorCategory, ErrorContext, LexSpineError
from lexspine.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(LexSpineError):
    """Raised when a call is rejected by an open circuit."""

    default_category = ErrorCategory.NETWORK
    default_retryable = False

    def __init__(self, name: str, retry_after: float):
        self.name = name
        super().__init__(
            f"Circuit '{name}' is open, retrying in {retry_after:.0f}s",
            retry_after=retry_after,
            context=ErrorContext(dependency=name),
        )


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds for one class of dependency."""

    failure_threshold: int
    reset_timeout: float


CRITICAL = CircuitBreakerConfig(failure_threshold=3, reset_timeout=30.0)
NORMAL = CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0)
RELAXED = CircuitBreakerConfig(failure_threshold=10, reset_timeout=120.0)


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Failure rate as percentage of executed calls."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


@dataclass
class CircuitBreaker:
    """Circuit breaker guarding one named dependency.

    Attributes:
        name: Dependency name, used in errors and health reports
        failure_threshold: Consecutive failures before opening
        reset_timeout: Seconds the circuit stays open before a trial call
    """

    name: str = "default"
    failure_threshold: int = 5
    reset_timeout: float = 60.0

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: datetime | None = field(default=None, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    @classmethod
    def from_config(cls, name: str, config: CircuitBreakerConfig) -> "CircuitBreaker":
        return cls(
            name=name,
            failure_threshold=config.failure_threshold,
            reset_timeout=config.reset_timeout,
        )

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def remaining_cooldown(self) -> float:
        """Seconds until an open circuit admits its trial call (0 if not open)."""
        with self._lock:
            if self._state != CircuitState.OPEN or self._opened_at is None:
                return 0.0
            elapsed = (utcnow() - self._opened_at).total_seconds()
            return max(0.0, self.reset_timeout - elapsed)

    def _check_state_transition(self) -> None:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            elapsed = (utcnow() - self._opened_at).total_seconds()
            if elapsed >= self.reset_timeout:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = utcnow()

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None
        elif new_state == CircuitState.OPEN:
            self._opened_at = utcnow()
        self._trial_in_flight = False

        logger.info(
            "circuit_state_changed",
            circuit=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
        )

    def allow_request(self) -> bool:
        """True if a call may proceed now.

        In HALF_OPEN only the first caller gets True until that trial call has
        been recorded as a success or a failure.
        """
        with self._lock:
            self._check_state_transition()
            self._stats.total_requests += 1

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True

            self._stats.rejected_requests += 1
            return False

    def record_success(self) -> None:
        with self._lock:
            self._stats.successful_requests += 1
            self._stats.last_success_time = utcnow()

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._failure_count += 1
            self._stats.failed_requests += 1
            self._stats.last_failure_time = utcnow()

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                logger.warning(
                    "circuit_opened",
                    circuit=self.name,
                    failures=self._failure_count,
                    error=str(error) if error else None,
                )
                self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        """Reset circuit to closed state."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Force circuit open (maintenance, tests)."""
        with self._lock:
            self._transition_to(CircuitState.OPEN)

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        fallback: Callable[[], T] | None = None,
        **kwargs: Any,
    ) -> T:
        """Execute ``func`` through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit rejects the call and no
                fallback was given
        """
        if not self.allow_request():
            if fallback is not None:
                return fallback()
            raise CircuitOpenError(self.name, self.remaining_cooldown())

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def snapshot(self) -> dict[str, Any]:
        """State and counters for health reports."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "remaining_cooldown": round(self.remaining_cooldown(), 1),
            "total_requests": self._stats.total_requests,
            "rejected_requests": self._stats.rejected_requests,
            "failure_rate": round(self._stats.failure_rate, 1),
        }


class CircuitBreakerRegistry:
    """Registry of named circuit breakers (one per process)."""

    def __init__(self):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()

    def get(self, name: str) -> CircuitBreaker | None:
        with self._lock:
            return self._breakers.get(name)

    def get_or_create(self, name: str, config: CircuitBreakerConfig = NORMAL) -> CircuitBreaker:
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker.from_config(name, config)
            return self._breakers[name]

    def all(self) -> dict[str, CircuitBreaker]:
        with self._lock:
            return dict(self._breakers)

    def clear(self) -> None:
        with self._lock:
            self._breakers.clear()

    def reset_all(self) -> None:
        with self._lock:
            for breaker in self._breakers.values():
                breaker.reset()


_default_registry = CircuitBreakerRegistry()


def get_circuit_breaker(name: str, config: CircuitBreakerConfig = NORMAL) -> CircuitBreaker:
    """Get or create a circuit breaker from the process registry."""
    return _default_registry.get_or_create(name, config)


def get_all_circuit_breakers() -> dict[str, CircuitBreaker]:
    return _default_registry.all()


def reset_all_circuit_breakers() -> None:
    _default_registry.reset_all()


def clear_circuit_breakers() -> None:
    """Drop every registered breaker (primarily for testing)."""
    _default_registry.clear()
