"""Resolution cascade data model.

A word occurrence (:class:`WordContext`) goes into the cascade and comes
out either as a :class:`ResolutionResult` (a classification with a
confidence and the strategy that produced it) or as :class:`Unresolved`.
Unresolved is a normal outcome, counted separately from errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from lexspine.core.hashing import context_hash
from lexspine.core.text import normalize_key


class Strategy(str, Enum):
    """Resolution strategies in cascade order (cheapest, most trusted first)."""

    CURATED = "curated"
    CACHE = "cache"
    REGIONAL_LEXICON = "regional_lexicon"
    PROPAGATION = "propagation"
    POS_LEXICON = "pos_lexicon"
    MORPHOLOGY = "morphology"
    GENERATIVE = "generative"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {
    Strategy.CURATED: 0,
    Strategy.CACHE: 1,
    Strategy.REGIONAL_LEXICON: 2,
    Strategy.PROPAGATION: 3,
    Strategy.POS_LEXICON: 4,
    Strategy.MORPHOLOGY: 5,
    Strategy.GENERATIVE: 6,
}


@dataclass(frozen=True)
class WordContext:
    """One word occurrence to classify.

    Attributes:
        word: Surface form
        pos: Universal POS tag (NOUN, ADJ, ADV, VERB...) if known
        lemma: Dictionary form, when a tagger supplied one
        sentence: Context window around the occurrence
    """

    word: str
    pos: str | None = None
    lemma: str | None = None
    sentence: str | None = None

    @property
    def key(self) -> str:
        return normalize_key(self.word)

    @property
    def context_hash(self) -> str:
        return context_hash(self.sentence)


@dataclass(frozen=True)
class ResolutionResult:
    """A classification produced by one strategy.

    ``classification`` holds the primary domain code first, followed by
    alternates for polysemous words.
    """

    key: str
    classification: tuple[str, ...]
    confidence: float
    strategy: Strategy
    is_propagated: bool = False
    hops: int = 0
    source_detail: str | None = None

    @property
    def primary(self) -> str:
        return self.classification[0]

    def to_record(self) -> dict[str, Any]:
        """Stable output schema shared by every strategy."""
        return {
            "key": self.key,
            "classification": list(self.classification),
            "confidence": round(self.confidence, 4),
            "strategy": self.strategy.value,
            "isPropagated": self.is_propagated,
        }


@dataclass(frozen=True)
class Unresolved:
    """No strategy produced an accepted result.

    ``best_candidate`` is the highest-confidence sub-threshold result seen,
    kept for diagnostics.
    """

    key: str
    best_candidate: ResolutionResult | None = None
    reason: str = "no_strategy_accepted"

    def to_record(self) -> dict[str, Any]:
        return {"key": self.key, "unresolved": True, "reason": self.reason}


@dataclass(frozen=True)
class PriorResult:
    """A previously stored result for the same occurrence.

    Curated results are never replaced. Invalidated results are ignored.
    """

    result: ResolutionResult
    is_curated: bool = False
    invalidated: bool = False


@dataclass
class CascadeStats:
    """Per-strategy breakdown for one or more cascade runs."""

    hits: dict[str, int] = field(default_factory=dict)
    unresolved: int = 0
    kept_prior: int = 0
    classifier_calls: int = 0
    classifier_cache_hits: int = 0
    classifier_failures: int = 0
    fallbacks: int = 0

    def record_hit(self, strategy: Strategy) -> None:
        self.hits[strategy.value] = self.hits.get(strategy.value, 0) + 1

    def merge(self, other: CascadeStats) -> None:
        for name, count in other.hits.items():
            self.hits[name] = self.hits.get(name, 0) + count
        self.unresolved += other.unresolved
        self.kept_prior += other.kept_prior
        self.classifier_calls += other.classifier_calls
        self.classifier_cache_hits += other.classifier_cache_hits
        self.classifier_failures += other.classifier_failures
        self.fallbacks += other.fallbacks

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": dict(self.hits),
            "unresolved": self.unresolved,
            "kept_prior": self.kept_prior,
            "classifier_calls": self.classifier_calls,
            "classifier_cache_hits": self.classifier_cache_hits,
            "classifier_failures": self.classifier_failures,
            "fallbacks": self.fallbacks,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CascadeStats:
        data = data or {}
        return cls(
            hits=dict(data.get("hits", {})),
            unresolved=data.get("unresolved", 0),
            kept_prior=data.get("kept_prior", 0),
            classifier_calls=data.get("classifier_calls", 0),
            classifier_cache_hits=data.get("classifier_cache_hits", 0),
            classifier_failures=data.get("classifier_failures", 0),
            fallbacks=data.get("fallbacks", 0),
        )
