"""
Six-strategy resolution cascade.

Strategies run cheapest and most trusted first; the first candidate at or
above the acceptance threshold wins and later strategies are not
consulted for that occurrence.

Architecture:
    ::

        occurrence (+ prior result, if any)
          │
          ├─ curated prior ─────────────────────► keep prior
          │
          ├─ 1 cache ─ 2 regional ─ 3 propagation ─ 4 pos ─ 5 morphology
          │    (stop at first candidate >= threshold; never run a
          │     strategy ranked below a valid machine prior)
          │
          ├─ still open ──► collected for one batched strategy 6 call
          │
          └─ nothing accepted:
               valid prior exists ─────────────► keep prior
               otherwise          ─────────────► Unresolved, carrying the
                                                  best sub-threshold candidate

Example:
    >>> cascade = ResolutionCascade.from_settings(conn, settings)
    >>> cascade.resolve(WordContext("saudade", pos="NOUN"))
    ResolutionResult(key='saudade', classification=('SE',), confidence=0.95, ...)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from lexspine.core.logging import get_logger
from lexspine.execution.circuit_breaker import CircuitBreaker

from .classifier import ClassifierClient, HttpClassifierClient
from .generative import GenerativeResolver
from .models import CascadeStats, PriorResult, ResolutionResult, Strategy, Unresolved, WordContext
from .strategies import Resolver, build_resolvers

logger = get_logger(__name__)

Outcome = ResolutionResult | Unresolved


@dataclass
class _Pending:
    ctx: WordContext
    prior: ResolutionResult | None
    best: ResolutionResult | None


def _better(current: ResolutionResult | None, candidate: ResolutionResult | None) -> ResolutionResult | None:
    if candidate is None:
        return current
    if current is None or candidate.confidence > current.confidence:
        return candidate
    return current


class ResolutionCascade:
    """Runs strategies 1-5 per occurrence and strategy 6 per batch.

    Args:
        resolvers: Strategies 1-5 in cascade order
        generative: Batched strategy 6, or None to stop after strategy 5
        threshold: Minimum confidence for a candidate to be accepted
    """

    def __init__(
        self,
        resolvers: Sequence[Resolver],
        generative: GenerativeResolver | None = None,
        *,
        threshold: float = 0.70,
    ):
        self.resolvers = sorted(resolvers, key=lambda r: r.strategy.rank)
        self.generative = generative
        self.threshold = threshold
        self.stats = CascadeStats()

    @classmethod
    def from_settings(
        cls,
        conn,
        settings,
        client: ClassifierClient | None = None,
        *,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ResolutionCascade:
        """Build the full cascade; the HTTP classifier is used when configured."""
        if client is None and settings.classifier_configured:
            client = HttpClassifierClient.from_settings(settings)
        generative = GenerativeResolver(
            conn,
            client,
            breaker=breaker,
            batch_size=settings.classifier_batch_size,
            sleep=sleep,
        )
        resolvers = build_resolvers(
            conn,
            discount=settings.propagation_discount,
            max_hops=settings.propagation_max_hops,
            threshold=settings.acceptance_threshold,
        )
        return cls(resolvers, generative, threshold=settings.acceptance_threshold)

    def accepts(self, result: ResolutionResult | None) -> bool:
        return result is not None and result.confidence >= self.threshold

    def take_stats(self) -> CascadeStats:
        """Return the stats gathered so far and start a fresh set."""
        stats, self.stats = self.stats, CascadeStats()
        return stats

    def resolve(self, ctx: WordContext, prior: PriorResult | None = None) -> Outcome:
        return self.resolve_many([(ctx, prior)])[0]

    def resolve_many(self, items: Sequence[tuple[WordContext, PriorResult | None]]) -> list[Outcome]:
        """Resolve a batch of occurrences, calling the classifier at most
        once per ``batch_size`` unresolved occurrences."""
        outcomes: list[Outcome | None] = [None] * len(items)
        pending: dict[int, _Pending] = {}

        for index, (ctx, prior) in enumerate(items):
            if prior is not None and prior.is_curated:
                self.stats.kept_prior += 1
                outcomes[index] = prior.result
                continue

            valid_prior = prior.result if prior is not None and not prior.invalidated else None
            max_rank = valid_prior.strategy.rank if valid_prior else Strategy.GENERATIVE.rank

            accepted, best = self._run_local(ctx, max_rank)
            if accepted is not None:
                self.stats.record_hit(accepted.strategy)
                outcomes[index] = accepted
            elif self.generative is not None and max_rank >= Strategy.GENERATIVE.rank:
                pending[index] = _Pending(ctx, valid_prior, best)
            else:
                outcomes[index] = self._settle(ctx, valid_prior, best)

        if pending:
            self._run_generative(pending, outcomes)
        logger.debug("cascade_batch_resolved", occurrences=len(items), sent_to_classifier=len(pending))

        return [outcome for outcome in outcomes if outcome is not None]

    def _run_local(self, ctx: WordContext, max_rank: int) -> tuple[ResolutionResult | None, ResolutionResult | None]:
        best = None
        for resolver in self.resolvers:
            if resolver.strategy.rank > max_rank:
                break
            candidate = resolver.resolve(ctx)
            if self.accepts(candidate):
                return candidate, best
            best = _better(best, candidate)
        return None, best

    def _run_generative(self, pending: dict[int, _Pending], outcomes: list[Outcome | None]) -> None:
        indexes = list(pending)
        batch = self.generative.resolve_batch([pending[i].ctx for i in indexes])
        self.stats.classifier_calls += batch.calls
        self.stats.classifier_cache_hits += batch.cache_hits
        self.stats.classifier_failures += batch.failures

        for position, index in enumerate(indexes):
            item = pending[index]
            if position in batch.failed:
                outcomes[index] = self._fallback(item)
                continue
            result = batch.results.get(position)
            if self.accepts(result):
                self.stats.record_hit(result.strategy)
                outcomes[index] = result
            else:
                outcomes[index] = self._settle(item.ctx, item.prior, _better(item.best, result))

    def _fallback(self, item: _Pending) -> Outcome:
        if item.prior is not None:
            self.stats.kept_prior += 1
            return item.prior
        self.stats.fallbacks += 1
        self.stats.unresolved += 1
        return Unresolved(item.ctx.key, best_candidate=item.best, reason="classifier_unavailable")

    def _settle(self, ctx: WordContext, prior: ResolutionResult | None, best: ResolutionResult | None) -> Outcome:
        if prior is not None:
            self.stats.kept_prior += 1
            return prior
        self.stats.unresolved += 1
        return Unresolved(ctx.key, best_candidate=best)
