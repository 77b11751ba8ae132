"""Fixtures for engine and worker tests: a small, scriptable handler."""

from __future__ import annotations

import threading
from typing import Any

import pytest

from lexspine.core.errors import SourceError, ValidationError
from lexspine.execution.engine import ChunkedJobEngine
from lexspine.execution.models import Job, JobKind
from lexspine.execution.worker import DeferredScheduler
from lexspine.handlers.base import ChunkResult, HandlerRegistry, Materialized


class CountingHandler:
    """Units are ``{"n": i}``; each processed unit writes one lex_synonyms row.

    ``fail_at`` makes the chunk containing that unit raise after writing
    its rows, so tests can check the rollback.
    """

    kind = JobKind.DICTIONARY_IMPORT

    def __init__(self, chunk_size: int = 3, fail_at: int | None = None, fail_materialize: bool = False):
        self.chunk_size = chunk_size
        self.fail_at = fail_at
        self.fail_materialize = fail_materialize
        self.chunks: list[tuple[int, int]] = []

    def validate(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(payload.get("count"), int):
            raise ValidationError("'count' must be an integer", field="count")
        return payload

    def materialize(self, payload: dict[str, Any]) -> Materialized:
        if self.fail_materialize:
            raise SourceError("source vanished")
        return Materialized(
            units=[{"n": i} for i in range(payload["count"])],
            metadata={"origin": "test"},
            rejects=[{"line_number": 1, "reason": "no_body_fragments", "raw_text": "zeta"}],
            source="test",
        )

    def process(self, conn, job: Job, units: list[dict[str, Any]]) -> ChunkResult:
        self.chunks.append((units[0]["n"], units[-1]["n"]))
        for unit in units:
            conn.execute("INSERT OR REPLACE INTO lex_synonyms (key_a, key_b) VALUES (?, ?)", (job.id, str(unit["n"])))
        if self.fail_at is not None and any(unit["n"] == self.fail_at for unit in units):
            raise RuntimeError("disk on fire")
        return ChunkResult(inserted=len(units), metadata={"last_unit": units[-1]["n"]})


@pytest.fixture()
def output_rows(conn):
    """Rows a CountingHandler job has written."""

    def count(job_id: str) -> int:
        return conn.execute("SELECT COUNT(*) FROM lex_synonyms WHERE key_a = ?", (job_id,)).fetchone()[0]

    return count


@pytest.fixture()
def counting_handler() -> CountingHandler:
    return CountingHandler()


@pytest.fixture()
def deferred() -> DeferredScheduler:
    return DeferredScheduler()


@pytest.fixture()
def counting_engine(conn, settings, counting_handler, deferred) -> ChunkedJobEngine:
    return ChunkedJobEngine(
        conn,
        HandlerRegistry([counting_handler]),
        settings=settings,
        scheduler=deferred,
        worker_id="test",
    )


@pytest.fixture()
def make_counting_engine(conn, settings):
    """Build an engine around a CountingHandler configured with ``kwargs``."""

    def build(scheduler=None, **kwargs) -> tuple[ChunkedJobEngine, CountingHandler]:
        handler = CountingHandler(**kwargs)
        engine = ChunkedJobEngine(
            conn,
            HandlerRegistry([handler]),
            settings=settings,
            scheduler=scheduler,
            worker_id="test",
        )
        return engine, handler

    return build


class GatedHandler(CountingHandler):
    """A CountingHandler that blocks inside ``process`` until ``gate`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.connections: list = []

    def process(self, conn, job: Job, units: list[dict[str, Any]]) -> ChunkResult:
        self.connections.append(conn)
        self.entered.set()
        self.gate.wait(10)
        return super().process(conn, job, units)


@pytest.fixture()
def gated_handler() -> GatedHandler:
    return GatedHandler()
