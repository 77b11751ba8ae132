"""
Structured error types for lexicon-spine.

Every error raised by the job engine, the resolution cascade and the outer
surfaces extends LexSpineError so that retry decisions, job failure messages
and API problem bodies all read from the same metadata:

- **Category:** What kind of error (network, job, resolution, etc.)
- **Retryable:** Whether the operation can be retried automatically
- **Retry-after:** How long to wait before retrying
- **Context:** Job id, job kind, strategy, dependency and custom fields
- **Cause:** Chained underlying exception

Manifesto:
    - **Typed Error Hierarchy:** Different error types for different domains
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Malformed input is data:** Parser rejects are counted, never raised
    - **Degraded results are data:** An Unresolved word is not an exception

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      LexSpineError                               │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │  TransientError    SourceError       ValidationError            │
        │  (retryable=True)  (SOURCE)          (VALIDATION)               │
        │       │                │                                         │
        │  NetworkError      ParseError                                   │
        │  TimeoutError                                                    │
        │  RateLimitError                                                  │
        │                                                                  │
        │  ConfigError       AuthError         JobError                   │
        │       │                                   │                      │
        │  MissingConfig                       JobNotFoundError           │
        │                                      JobConflictError           │
        │                                      JobTerminalError           │
        │                                      KillSwitchActiveError      │
        │                                                                  │
        │  ResolutionError ── ClassifierError                             │
        └─────────────────────────────────────────────────────────────────┘

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"
    DATABASE = "DATABASE"

    # Source/data errors
    SOURCE = "SOURCE"
    PARSE = "PARSE"
    VALIDATION = "VALIDATION"

    # Configuration errors (never retryable)
    CONFIG = "CONFIG"
    AUTH = "AUTH"

    # Application errors
    JOB = "JOB"
    RESOLUTION = "RESOLUTION"

    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Typed fields cover what the job engine and the cascade know at the point
    of failure. Anything else goes into ``metadata``; ``to_dict()`` emits only
    fields that are set, which keeps log lines short.

    Attributes:
        job_id: Job being processed when the error occurred
        job_kind: Kind of that job (``dictionary-import``, ``corpus-annotate``)
        strategy: Resolution strategy that was running
        dependency: Name of the external dependency (circuit breaker name)
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    job_id: str | None = None
    job_kind: str | None = None
    strategy: str | None = None
    dependency: str | None = None
    url: str | None = None
    http_status: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_id", "job_kind", "strategy", "dependency", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class LexSpineError(Exception):
    """
    Base exception for all lexicon-spine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    rarely pass them explicitly.

    Examples:
        >>> error = LexSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(job_id="job-1").context.job_id
        'job-1'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> LexSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ClassifierError("Bad response").with_context(
                dependency="classifier", http_status=502
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(LexSpineError):
    """
    Temporary error that may succeed on retry.

    Transient errors are absorbed by the resilience kit below the job layer.
    They only reach a Job record when retries are exhausted.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Network-related transient error."""

    default_category = ErrorCategory.NETWORK


class TimeoutError(TransientError):
    """Operation timed out."""

    default_category = ErrorCategory.NETWORK


class RateLimitError(TransientError):
    """Upstream rate limit exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float = 60,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)


# =============================================================================
# SOURCE / VALIDATION ERRORS
# =============================================================================


class SourceError(LexSpineError):
    """Error reading a source payload (missing file, unreadable corpus)."""

    default_category = ErrorCategory.SOURCE
    default_retryable = False


class ParseError(SourceError):
    """Error parsing a source document as a whole."""

    default_category = ErrorCategory.PARSE


class ValidationError(LexSpineError):
    """
    Invalid request or payload.

    Never retryable - the caller must fix the input.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


# =============================================================================
# CONFIGURATION / AUTH ERRORS
# =============================================================================


class ConfigError(LexSpineError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class AuthError(LexSpineError):
    """Caller could not be authenticated."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


# =============================================================================
# JOB ERRORS
# =============================================================================


class JobError(LexSpineError):
    """Error in the job store or chunked job engine."""

    default_category = ErrorCategory.JOB
    default_retryable = False


class JobNotFoundError(JobError):
    """No job with the given id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}", context=ErrorContext(job_id=job_id))


class JobConflictError(JobError):
    """A compare-and-set on the job record lost, or the job is locked elsewhere."""

    def __init__(self, job_id: str, message: str):
        self.job_id = job_id
        super().__init__(message, context=ErrorContext(job_id=job_id))


class JobTerminalError(JobError):
    """Attempted to mutate a completed, failed or cancelled job."""

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(
            f"Job {job_id} is {status} and cannot be modified",
            context=ErrorContext(job_id=job_id),
        )


class KillSwitchActiveError(JobError):
    """The emergency stop is active; no job may start or advance."""

    def __init__(self, reason: str, *, retry_after: float | None = None):
        self.reason = reason
        super().__init__(f"Emergency stop is active: {reason}", retry_after=retry_after)


# =============================================================================
# RESOLUTION ERRORS
# =============================================================================


class ResolutionError(LexSpineError):
    """Error inside a resolution strategy."""

    default_category = ErrorCategory.RESOLUTION
    default_retryable = False


class ClassifierError(ResolutionError):
    """The generative classifier returned an error or an unusable response."""

    default_retryable = True


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, LexSpineError):
        return error.retryable
    return isinstance(error, (ConnectionError, OSError))


def get_retry_after(error: Exception) -> float | None:
    """Get retry delay from error, if specified."""
    if isinstance(error, LexSpineError):
        return error.retry_after
    return None


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, LexSpineError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


def describe_error(error: BaseException) -> str:
    """Render an exception as the failure message stored on a job."""
    message = str(error) or error.__class__.__name__
    return f"{error.__class__.__name__}: {message}"


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "LexSpineError",
    "TransientError",
    "NetworkError",
    "TimeoutError",
    "RateLimitError",
    "SourceError",
    "ParseError",
    "ValidationError",
    "ConfigError",
    "MissingConfigError",
    "AuthError",
    "JobError",
    "JobNotFoundError",
    "JobConflictError",
    "JobTerminalError",
    "KillSwitchActiveError",
    "ResolutionError",
    "ClassifierError",
    "is_retryable",
    "get_retry_after",
    "categorize_error",
    "describe_error",
]
