"""Rate Limiting: per-caller throttles for user-triggered actions.

Manifesto:
Cancellation and job triggers are user actions reachable over HTTP.
A caller hammering the cancel endpoint must be turned away with a
structured error that says when to come back, without touching the
job store.

ARCHITECTURE
────────────
::

    RateLimiter (ABC)
      ├── TokenBucketLimiter     ─ steady rate + burst capacity
      ├── SlidingWindowLimiter   ─ exact count in rolling window
    KeyedRateLimiter             ─ one limiter per caller identity
      ├── check(key)             ─ raises RateLimitExceeded(retry_after)
      └── eviction               ─ LRU cap (max_keys) + idle keys dropped after idle_ttl

    Presets: STRICT (5/min, cancellation), STANDARD (30/min, triggers).
    All limiters are thread-safe (internal Lock). State is in-process.

Related modules:
    circuit_breaker.py: fail-fast on sustained failures
    retry.py: backoff on transient failures

Example::

    limiter = KeyedRateLimiter.from_config(STRICT)
    limiter.check(f"cancel-job:{caller}")   # raises when over limit

Tags:
    execution, rate-limit, throttle, sliding-window

Doc-Types:
    api-reference
"""

import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from lexspine.core.errors import RateLimitError


def monotonic() -> float:
    """Clock used by all limiters (patched in tests)."""
    return time.monotonic()


class RateLimitExceeded(RateLimitError):
    """Raised when a caller exceeds its limit.

    Attributes:
        key: Caller identity the limit applies to
        limit: Requests allowed per window
        window_seconds: Window size
        retry_after: Seconds until the next request would be admitted
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        key: str | None = None,
        limit: int | None = None,
        window_seconds: float | None = None,
        retry_after: float = 0.0,
    ):
        super().__init__(message, retry_after=retry_after)
        self.key = key
        self.limit = limit
        self.window_seconds = window_seconds

    def to_dict(self) -> dict:
        result = super().to_dict()
        result.update({"key": self.key, "limit": self.limit, "window_seconds": self.window_seconds})
        return result


@dataclass(frozen=True)
class RateLimitConfig:
    """Named per-caller limit: ``max_requests`` per ``window_seconds``."""

    name: str
    max_requests: int
    window_seconds: float


STRICT = RateLimitConfig("strict", max_requests=5, window_seconds=60.0)
STANDARD = RateLimitConfig("standard", max_requests=30, window_seconds=60.0)
RELAXED = RateLimitConfig("relaxed", max_requests=120, window_seconds=60.0)


class RateLimiter(ABC):
    """Abstract base for rate limiters."""

    @abstractmethod
    def acquire(self, tokens: int = 1) -> bool:
        """Attempt to acquire tokens; True if admitted."""
        ...

    @abstractmethod
    def get_wait_time(self, tokens: int = 1) -> float:
        """Seconds to wait before ``tokens`` would be admitted (0 if now)."""
        ...


@dataclass
class TokenBucketLimiter(RateLimiter):
    """Token bucket rate limiter.

    Tokens are added at a fixed rate up to capacity.

    Attributes:
        rate: Tokens added per second
        capacity: Maximum tokens (burst size)
    """

    rate: float
    capacity: float

    _tokens: float = field(default=0.0, init=False)
    _last_update: float = field(default=0.0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self):
        self._tokens = self.capacity
        self._last_update = monotonic()

    def _refill(self) -> None:
        now = monotonic()
        elapsed = now - self._last_update
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_update = now

    def acquire(self, tokens: int = 1) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    def get_wait_time(self, tokens: int = 1) -> float:
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                return 0.0
            return (tokens - self._tokens) / self.rate


@dataclass
class SlidingWindowLimiter(RateLimiter):
    """Sliding window rate limiter.

    Counts requests in a rolling window, so there is no burst at window
    boundaries.

    Attributes:
        max_requests: Maximum requests per window
        window_seconds: Window size in seconds
    """

    max_requests: int
    window_seconds: float

    _timestamps: list[float] = field(default_factory=list, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def _cleanup(self, now: float) -> None:
        cutoff = now - self.window_seconds
        self._timestamps = [ts for ts in self._timestamps if ts > cutoff]

    def acquire(self, tokens: int = 1) -> bool:
        with self._lock:
            now = monotonic()
            self._cleanup(now)
            if len(self._timestamps) + tokens <= self.max_requests:
                self._timestamps.extend([now] * tokens)
                return True
            return False

    def get_wait_time(self, tokens: int = 1) -> float:
        with self._lock:
            now = monotonic()
            self._cleanup(now)
            available = self.max_requests - len(self._timestamps)
            if available >= tokens:
                return 0.0
            need_to_expire = tokens - available
            if need_to_expire <= len(self._timestamps):
                oldest = self._timestamps[need_to_expire - 1]
                return max(0.0, (oldest + self.window_seconds) - now)
            return self.window_seconds

    @property
    def current_count(self) -> int:
        with self._lock:
            self._cleanup(monotonic())
            return len(self._timestamps)


@dataclass
class KeyedRateLimiter:
    """Rate limiter with one limiter per key (caller identity).

    Keys are kept in LRU order. A key idle for longer than ``idle_ttl``
    seconds is dropped, and at most ``max_keys`` keys are held; the least
    recently used goes first. For sliding windows the default ``idle_ttl``
    is the window itself, so dropping a key never forgets a live count.

    Example:
        >>> limiter = KeyedRateLimiter.from_config(STRICT)
        >>> limiter.check("cancel-job:host:10.0.0.7")
    """

    factory: Callable[[], RateLimiter]
    limit: int | None = None
    window_seconds: float | None = None
    max_keys: int = 10_000
    idle_ttl: float | None = None

    _limiters: OrderedDict[str, RateLimiter] = field(default_factory=OrderedDict, init=False)
    _last_used: dict[str, float] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    @classmethod
    def from_config(cls, config: RateLimitConfig, **kwargs) -> "KeyedRateLimiter":
        return cls.sliding_window(config.max_requests, config.window_seconds, **kwargs)

    @classmethod
    def sliding_window(cls, max_requests: int, window_seconds: float, **kwargs) -> "KeyedRateLimiter":
        kwargs.setdefault("idle_ttl", window_seconds)
        return cls(
            factory=lambda: SlidingWindowLimiter(max_requests, window_seconds),
            limit=max_requests,
            window_seconds=window_seconds,
            **kwargs,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._limiters)

    def _evict(self, now: float) -> None:
        if self.idle_ttl is not None:
            while self._limiters:
                oldest = next(iter(self._limiters))
                if now - self._last_used[oldest] <= self.idle_ttl:
                    break
                self._drop(oldest)
        while len(self._limiters) > self.max_keys:
            self._drop(next(iter(self._limiters)))

    def _drop(self, key: str) -> None:
        self._limiters.pop(key, None)
        self._last_used.pop(key, None)

    def _get_limiter(self, key: str) -> RateLimiter:
        now = monotonic()
        with self._lock:
            limiter = self._limiters.get(key)
            if limiter is None:
                limiter = self._limiters[key] = self.factory()
            else:
                self._limiters.move_to_end(key)
            self._last_used[key] = now
            self._evict(now)
            return limiter

    def acquire(self, key: str, tokens: int = 1) -> bool:
        """Acquire tokens for a specific key."""
        return self._get_limiter(key).acquire(tokens)

    def get_wait_time(self, key: str, tokens: int = 1) -> float:
        return self._get_limiter(key).get_wait_time(tokens)

    def check(self, key: str) -> None:
        """Admit one request for ``key`` or raise :class:`RateLimitExceeded`."""
        limiter = self._get_limiter(key)
        if limiter.acquire():
            return
        retry_after = limiter.get_wait_time()
        raise RateLimitExceeded(
            f"Rate limit exceeded for {key}; retry after {retry_after:.1f}s",
            key=key,
            limit=self.limit,
            window_seconds=self.window_seconds,
            retry_after=retry_after,
        )

    def reset(self, key: str | None = None) -> None:
        """Forget state for one key, or for all keys."""
        with self._lock:
            if key is None:
                self._limiters.clear()
                self._last_used.clear()
            else:
                self._drop(key)
