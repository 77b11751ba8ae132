"""Retry with exponential backoff.

Transient failures (network errors, 5xx from the classifier, a locked
SQLite file) are absorbed here so they never reach a Job record unless
every attempt fails. Retrying is stateless and nestable: a retried
operation may itself contain retried operations.

After attempt ``n`` fails the caller sleeps
``base_delay * multiplier ** (n - 1)`` seconds; once ``max_attempts``
attempts have failed the last error is re-raised unchanged.

Example:
    >>> from lexspine.execution.retry import with_retry
    >>>
    >>> result = with_retry(lambda: fetch(), max_attempts=3, base_delay=1.0)
    >>>
    >>> @retrying(CLASSIFIER_RETRY)
    ... def classify(batch):
    ...     return client.classify(batch)
"""

import functools
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from lexspine.core.database import is_busy_error
from lexspine.core.errors import LexSpineError

T = TypeVar("T")

RetryCallback = Callable[[int, Exception, float], None]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay after the 1-based ``attempt`` has failed."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """True if another attempt may follow the failed ``attempt``."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * multiplier ** (attempt - 1), max_delay) ± jitter

    Attributes:
        max_attempts: Total attempts, including the first one
        base_delay: Delay after the first failure, in seconds
        multiplier: Exponential multiplier
        max_delay: Delay cap in seconds
        jitter: Randomize each delay by ``jitter_range`` of its value
        jitter_range: Fraction of the delay used for jitter
        retryable_errors: Exception types worth retrying (None = all).
            A LexSpineError marked non-retryable is never retried.
        retry_if: Extra predicate an error must pass to be retried
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: bool = False
    jitter_range: float = 0.25
    retryable_errors: tuple[type[BaseException], ...] | None = None
    retry_if: Callable[[BaseException], bool] | None = None

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_attempts:
            return False
        if isinstance(error, LexSpineError) and not error.retryable:
            return False
        if error is not None and self.retryable_errors is not None and not isinstance(error, self.retryable_errors):
            return False
        if error is not None and self.retry_if is not None:
            return self.retry_if(error)
        return True


@dataclass
class NoRetry(RetryStrategy):
    """Single attempt, fail immediately."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return False


# Persistence calls: only SQLite lock contention is worth another attempt
STORE_RETRY = ExponentialBackoff(max_attempts=5, base_delay=0.2, multiplier=2.0, retry_if=is_busy_error)
# Generative classifier: slow and rate limited upstream
CLASSIFIER_RETRY = ExponentialBackoff(max_attempts=3, base_delay=2.0, multiplier=2.0)


@dataclass
class RetryContext:
    """Runs a callable under a strategy and records every failed attempt.

    Example:
        >>> ctx = RetryContext(ExponentialBackoff(max_attempts=3))
        >>> result = ctx.run(call_api)
        >>> ctx.attempts
        1
    """

    strategy: RetryStrategy
    on_retry: RetryCallback | None = None
    sleep: Callable[[float], None] = time.sleep
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        return self.attempt

    @property
    def elapsed_seconds(self) -> float:
        return (utcnow() - self.started_at).total_seconds()

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds or the strategy gives up.

        Raises:
            The last exception once no further retry is allowed.
        """
        while True:
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))

                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                self.sleep(delay)


def with_retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    multiplier: float = 2.0,
    *,
    retry_on: tuple[type[BaseException], ...] | None = None,
    on_retry: RetryCallback | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` with exponential backoff between failed attempts.

    Args:
        operation: Zero-argument callable to run
        max_attempts: Total attempts before the last error is re-raised
        base_delay: Seconds to wait after the first failure
        multiplier: Growth factor of the delay per failed attempt
        retry_on: Exception types worth retrying; others propagate at once
        on_retry: Called as ``(attempt, error, delay)`` before each sleep
        sleep: Sleep function (injected by tests)

    Returns:
        The first successful result of ``operation``.
    """
    strategy = ExponentialBackoff(
        max_attempts=max_attempts,
        base_delay=base_delay,
        multiplier=multiplier,
        max_delay=float("inf"),
        retryable_errors=retry_on,
    )
    return RetryContext(strategy=strategy, on_retry=on_retry, sleep=sleep).run(operation)


def retrying(
    strategy: RetryStrategy | None = None,
    on_retry: RetryCallback | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator factory applying ``strategy`` to every call of a function.

    Example:
        >>> @retrying(STORE_RETRY)
        ... def save(row):
        ...     conn.execute(...)
    """
    strategy = strategy or ExponentialBackoff()

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return RetryContext(strategy=strategy, on_retry=on_retry).run(func, *args, **kwargs)

        return wrapper

    return decorator
