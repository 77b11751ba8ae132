"""Strategy 6: batched generative classification.

Occurrences that strategies 1-5 could not settle are grouped into batches
and sent to the classifier. Every answer, including ``NC`` (not
classified), is cached by ``(key, context_hash)`` so re-processing the
same occurrence never calls the classifier twice. An ``NC`` answer still
counts as a miss for the cascade.

Each batch call runs as ``breaker.call(retry(classify))``: transient
errors are retried, and only a batch that fails after its retries counts
against the circuit. A failed batch marks its occurrences as failed and
the next batch is still attempted; the cascade decides what a failed
occurrence falls back to.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from lexspine.core.errors import describe_error
from lexspine.core.logging import get_logger
from lexspine.execution.circuit_breaker import NORMAL, CircuitBreaker, get_circuit_breaker
from lexspine.execution.retry import CLASSIFIER_RETRY, RetryContext, RetryStrategy

from .classifier import NOT_CLASSIFIED, ClassifierClient, ClassifierVerdict, verdicts_by_key
from .models import ResolutionResult, Strategy, WordContext
from .strategies import decode_classification, encode_classification

logger = get_logger(__name__)

CLASSIFIER_CIRCUIT = "classifier"


def utcnow() -> datetime:
    return datetime.now(UTC)


def forget_cached(conn, contexts: Iterable[WordContext]) -> int:
    """Drop cached classifier answers so these occurrences are asked again."""
    removed = 0
    for ctx in contexts:
        cursor = conn.execute(
            "DELETE FROM lex_classifier_cache WHERE key = ? AND context_hash = ?",
            (ctx.key, ctx.context_hash),
        )
        removed += cursor.rowcount
    return removed


@dataclass
class GenerativeBatch:
    """Outcome of one :meth:`GenerativeResolver.resolve_batch` call.

    ``results`` maps input positions to a result, or ``None`` for a miss.
    Positions whose classifier batch failed are in ``failed`` instead.
    """

    results: dict[int, ResolutionResult | None] = field(default_factory=dict)
    failed: set[int] = field(default_factory=set)
    calls: int = 0
    cache_hits: int = 0
    failures: int = 0


class GenerativeResolver:
    strategy = Strategy.GENERATIVE

    def __init__(
        self,
        conn,
        client: ClassifierClient | None,
        *,
        breaker: CircuitBreaker | None = None,
        retry: RetryStrategy = CLASSIFIER_RETRY,
        batch_size: int = 15,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.conn = conn
        self.client = client
        self.breaker = breaker or get_circuit_breaker(CLASSIFIER_CIRCUIT, NORMAL)
        self.retry = retry
        self.batch_size = max(1, batch_size)
        self.sleep = sleep

    @property
    def available(self) -> bool:
        return self.client is not None

    # ── cache ────────────────────────────────────────────────────

    def _cached(self, key: str, ctx_hash: str) -> tuple[bool, ResolutionResult | None]:
        row = self.conn.execute(
            "SELECT classification, confidence, model FROM lex_classifier_cache WHERE key = ? AND context_hash = ?",
            (key, ctx_hash),
        ).fetchone()
        if row is None:
            return False, None
        codes = decode_classification(row[0])
        return True, self._to_result(key, codes, float(row[1]), row[2])

    def _store(self, key: str, ctx_hash: str, verdict: ClassifierVerdict) -> None:
        self.conn.execute(
            """
            INSERT OR REPLACE INTO lex_classifier_cache
                (key, context_hash, classification, confidence, is_polysemous, model, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                key,
                ctx_hash,
                encode_classification(verdict.classification or (NOT_CLASSIFIED,)),
                verdict.confidence,
                int(verdict.is_polysemous),
                getattr(self.client, "model", None),
                utcnow().isoformat(),
            ),
        )

    def _to_result(self, key: str, codes: tuple[str, ...], confidence: float, model: str | None) -> ResolutionResult | None:
        if not codes or codes[0] == NOT_CLASSIFIED:
            return None
        return ResolutionResult(
            key=key,
            classification=codes,
            confidence=confidence,
            strategy=self.strategy,
            source_detail=model,
        )

    # ── batching ─────────────────────────────────────────────────

    def resolve_batch(self, contexts: Sequence[WordContext]) -> GenerativeBatch:
        batch = GenerativeBatch()
        pending: dict[tuple[str, str], list[int]] = {}
        representatives: dict[tuple[str, str], WordContext] = {}

        for index, ctx in enumerate(contexts):
            cache_key = (ctx.key, ctx.context_hash)
            if cache_key in pending:
                pending[cache_key].append(index)
                continue
            hit, result = self._cached(*cache_key)
            if hit:
                batch.cache_hits += 1
                batch.results[index] = result
                continue
            pending[cache_key] = [index]
            representatives[cache_key] = ctx

        if not pending:
            return batch
        if self.client is None:
            for indexes in pending.values():
                batch.results.update(dict.fromkeys(indexes))
            return batch

        keys = list(pending)
        for start in range(0, len(keys), self.batch_size):
            chunk_keys = keys[start:start + self.batch_size]
            chunk = [representatives[k] for k in chunk_keys]
            batch.calls += 1
            try:
                verdicts = self._classify(chunk)
            except Exception as e:
                batch.failures += 1
                logger.warning(
                    "classifier_batch_failed",
                    words=len(chunk),
                    error=describe_error(e),
                    circuit_state=self.breaker.state.value,
                )
                for k in chunk_keys:
                    batch.failed.update(pending[k])
                continue

            by_key = verdicts_by_key(verdicts)
            for k in chunk_keys:
                verdict = by_key.get(k[0])
                result = None
                if verdict is not None:
                    self._store(k[0], k[1], verdict)
                    result = self._to_result(k[0], verdict.classification, verdict.confidence, self.client.model)
                for index in pending[k]:
                    batch.results[index] = result
        return batch

    def _classify(self, chunk: list[WordContext]) -> list[ClassifierVerdict]:
        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.info("classifier_retry", attempt=attempt, delay=delay, error=describe_error(error))

        def attempt() -> list[ClassifierVerdict]:
            context = RetryContext(strategy=self.retry, on_retry=on_retry, sleep=self.sleep)
            return context.run(self.client.classify, chunk)

        return self.breaker.call(attempt)
