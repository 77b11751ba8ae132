"""Job handler contract and registry.

A handler knows one job kind end to end: how to validate a start payload,
how to turn it into an ordered unit sequence, and how to process one
slice of that sequence. The chunk engine owns everything else (locking,
checkpoints, status transitions, scheduling).

::

    start_job(kind, payload)
      handler.validate(payload)      → normalized payload / ValidationError
      handler.materialize(payload)   → Materialized(units, metadata, rejects)

    process_chunk(job_id, cursor)
      handler.process(conn, job, units[cursor:cursor+chunk_size])
                                     → ChunkResult(inserted, errors, unresolved, metadata)

``process`` writes through the given connection without committing; the
engine commits the handler's rows together with the checkpoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from lexspine.core.errors import ValidationError
from lexspine.execution.models import Job, JobKind


@dataclass
class Materialized:
    """Unit sequence produced from a start payload."""

    units: list[dict[str, Any]]
    metadata: dict[str, Any] = field(default_factory=dict)
    rejects: list[dict[str, Any]] = field(default_factory=list)
    source: str | None = None


@dataclass
class ChunkResult:
    """Counters and metadata produced by processing one chunk.

    ``metadata`` replaces the matching keys of the job metadata, so
    handlers return cumulative values.
    """

    inserted: int = 0
    errors: int = 0
    unresolved: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


class JobHandler(Protocol):
    kind: JobKind
    chunk_size: int

    def validate(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    def materialize(self, payload: dict[str, Any]) -> Materialized: ...

    def process(self, conn, job: Job, units: list[dict[str, Any]]) -> ChunkResult: ...


class HandlerRegistry:
    """Handlers by job kind.

    Example:
        >>> registry = HandlerRegistry()
        >>> registry.register(DictionaryImportHandler(settings))
        >>> registry.get("dictionary-import").chunk_size
        5000
    """

    def __init__(self, handlers: list[JobHandler] | None = None):
        self._handlers: dict[JobKind, JobHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: JobHandler) -> None:
        self._handlers[JobKind(handler.kind)] = handler

    def get(self, kind: JobKind | str) -> JobHandler:
        """Handler for ``kind``.

        Raises:
            ValidationError: If the kind is unknown or has no handler
        """
        try:
            return self._handlers[JobKind(kind)]
        except (ValueError, KeyError):
            available = sorted(k.value for k in self._handlers)
            raise ValidationError(
                f"No handler registered for job kind {kind!r}. Available: {available or 'none'}",
                field="kind",
                value=kind,
            ) from None

    def has(self, kind: JobKind | str) -> bool:
        try:
            return JobKind(kind) in self._handlers
        except ValueError:
            return False

    def kinds(self) -> list[str]:
        return sorted(k.value for k in self._handlers)


def require_str(payload: dict[str, Any], key: str, *, default: str | None = None) -> str:
    value = payload.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{key}' must be a non-empty string", field=key, value=value)
    return value.strip()
