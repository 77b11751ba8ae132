"""Resolution strategies 1-5.

Each strategy looks at one :class:`WordContext` and returns its best
candidate (possibly below the acceptance threshold) or ``None``. Deciding
whether a candidate is accepted is the cascade's job, not the strategy's.

    1. cache             lex_semantic_cache
    2. regional_lexicon  lex_regional_lexicon
    3. propagation       lex_synonyms, seeded only by 1-2
    4. pos_lexicon       lex_pos_lexicon (POS-specific row first)
    5. morphology        affix rules, base words looked up through 1, 2, 4

The generative classifier (strategy 6) is batched and lives in
:mod:`lexspine.resolution.generative`.
"""

from __future__ import annotations

import json
from collections import deque
from collections.abc import Sequence
from typing import Protocol

from lexspine.core.text import normalize_key

from . import morphology
from .models import ResolutionResult, Strategy, WordContext


def decode_classification(raw: str | None) -> tuple[str, ...]:
    """Stored classifications are JSON lists; a bare code is accepted too."""
    if not raw:
        return ()
    try:
        value = json.loads(raw)
    except ValueError:
        return (raw,)
    if isinstance(value, str):
        return (value,)
    return tuple(str(code) for code in value if code)


def encode_classification(codes: Sequence[str]) -> str:
    return json.dumps(list(codes))


class Resolver(Protocol):
    strategy: Strategy

    def resolve(self, ctx: WordContext) -> ResolutionResult | None: ...


class _KeyedTableResolver:
    """Exact key lookup in a ``(key, classification, confidence)`` table."""

    strategy: Strategy
    table: str

    def __init__(self, conn):
        self.conn = conn

    def lookup(self, key: str) -> ResolutionResult | None:
        row = self.conn.execute(
            f"SELECT classification, confidence FROM {self.table} WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        codes = decode_classification(row[0])
        if not codes:
            return None
        return ResolutionResult(key=key, classification=codes, confidence=float(row[1]), strategy=self.strategy)

    def resolve(self, ctx: WordContext) -> ResolutionResult | None:
        return self.lookup(ctx.key)


class CacheResolver(_KeyedTableResolver):
    strategy = Strategy.CACHE
    table = "lex_semantic_cache"


class RegionalLexiconResolver(_KeyedTableResolver):
    strategy = Strategy.REGIONAL_LEXICON
    table = "lex_regional_lexicon"


class PosLexiconResolver:
    """Part-of-speech keyed lexicon; a row with empty POS matches any POS."""

    strategy = Strategy.POS_LEXICON

    def __init__(self, conn):
        self.conn = conn

    def lookup(self, key: str, pos: str | None = None) -> ResolutionResult | None:
        rows = self.conn.execute(
            "SELECT pos, classification, confidence FROM lex_pos_lexicon WHERE key = ? AND pos IN (?, '')",
            (key, (pos or "").upper()),
        ).fetchall()
        if not rows:
            return None
        # POS-specific row sorts before the '' row
        row = sorted(rows, key=lambda r: r[0] == "")[0]
        codes = decode_classification(row[1])
        if not codes:
            return None
        return ResolutionResult(key=key, classification=codes, confidence=float(row[2]), strategy=self.strategy)

    def resolve(self, ctx: WordContext) -> ResolutionResult | None:
        found = self.lookup(ctx.key, ctx.pos)
        if found is None and ctx.lemma:
            lemma_key = normalize_key(ctx.lemma)
            if lemma_key and lemma_key != ctx.key:
                found = self.lookup(lemma_key, ctx.pos)
        return found


class SynonymPropagationResolver:
    """Borrow a classification from the nearest classified synonym.

    Walks the synonym graph breadth-first from the word. Only words
    classified by the cache or the regional lexicon seed propagation, so a
    propagated result never feeds further propagation. Confidence decays by
    ``discount`` per hop. Within one hop level the highest seed confidence
    wins; the nearest level whose best reaches ``threshold`` is returned.
    When no level reaches it, the strongest sub-threshold candidate seen is
    returned so the cascade can keep it as a fallback.
    """

    strategy = Strategy.PROPAGATION

    def __init__(
        self,
        conn,
        seeds: Sequence[_KeyedTableResolver],
        *,
        discount: float = 0.85,
        max_hops: int = 3,
        threshold: float = 0.0,
    ):
        self.conn = conn
        self.seeds = tuple(seeds)
        self.discount = discount
        self.max_hops = max_hops
        self.threshold = threshold

    def neighbours(self, key: str) -> list[str]:
        rows = self.conn.execute(
            """
            SELECT key_b FROM lex_synonyms WHERE key_a = ?
            UNION
            SELECT key_a FROM lex_synonyms WHERE key_b = ?
            """,
            (key, key),
        ).fetchall()
        return sorted(row[0] for row in rows)

    def _seed(self, key: str) -> ResolutionResult | None:
        for seed in self.seeds:
            found = seed.lookup(key)
            if found is not None:
                return found
        return None

    def resolve(self, ctx: WordContext) -> ResolutionResult | None:
        origin = ctx.key
        visited = {origin}
        frontier = deque([origin])
        fallback: ResolutionResult | None = None

        for hops in range(1, self.max_hops + 1):
            next_frontier: deque[str] = deque()
            best: ResolutionResult | None = None
            while frontier:
                for neighbour in self.neighbours(frontier.popleft()):
                    if neighbour in visited:
                        continue
                    visited.add(neighbour)
                    next_frontier.append(neighbour)
                    seed = self._seed(neighbour)
                    if seed is not None and (best is None or seed.confidence > best.confidence):
                        best = seed
            if best is not None:
                candidate = ResolutionResult(
                    key=origin,
                    classification=best.classification,
                    confidence=best.confidence * self.discount**hops,
                    strategy=self.strategy,
                    is_propagated=True,
                    hops=hops,
                    source_detail=best.key,
                )
                if candidate.confidence >= self.threshold:
                    return candidate
                if fallback is None or candidate.confidence > fallback.confidence:
                    fallback = candidate
            if not next_frontier:
                break
            frontier = next_frontier
        return fallback


class MorphologyResolver:
    """Classify by productive affixes.

    Suffixes with a fixed domain code resolve directly. Inheriting rules
    (diminutives, augmentatives, prefixes) look the stripped base word up
    through the non-generative lexicons; a rule whose base is unknown is
    skipped and the next rule is tried.
    """

    strategy = Strategy.MORPHOLOGY

    def __init__(self, base_lookups: Sequence[_KeyedTableResolver | PosLexiconResolver]):
        self.base_lookups = tuple(base_lookups)

    def _base(self, base: str) -> ResolutionResult | None:
        for form in morphology.base_forms(base):
            key = normalize_key(form)
            if not key:
                continue
            for lookup in self.base_lookups:
                found = lookup.lookup(key)
                if found is not None:
                    return found
        return None

    def resolve(self, ctx: WordContext) -> ResolutionResult | None:
        word = ctx.word.strip()
        for rule, base in morphology.suffix_candidates(word, ctx.pos):
            if not rule.inherits:
                return ResolutionResult(
                    key=ctx.key,
                    classification=(rule.code,),
                    confidence=rule.confidence,
                    strategy=self.strategy,
                    source_detail=f"-{rule.affix}",
                )
            inherited = self._base(base)
            if inherited is not None:
                return self._inherit(ctx, rule, inherited, f"-{rule.affix}")

        for rule, base in morphology.prefix_candidates(word):
            inherited = self._base(base)
            if inherited is not None:
                return self._inherit(ctx, rule, inherited, f"{rule.affix}-")
        return None

    def _inherit(self, ctx, rule, inherited: ResolutionResult, affix: str) -> ResolutionResult:
        return ResolutionResult(
            key=ctx.key,
            classification=inherited.classification,
            confidence=rule.confidence,
            strategy=self.strategy,
            source_detail=f"{affix} {inherited.key}",
        )


def build_resolvers(
    conn, *, discount: float = 0.85, max_hops: int = 3, threshold: float = 0.0
) -> list[Resolver]:
    """Strategies 1-5 in cascade order, sharing one connection."""
    cache = CacheResolver(conn)
    regional = RegionalLexiconResolver(conn)
    pos = PosLexiconResolver(conn)
    return [
        cache,
        regional,
        SynonymPropagationResolver(
            conn, (cache, regional), discount=discount, max_hops=max_hops, threshold=threshold
        ),
        pos,
        MorphologyResolver((cache, regional, pos)),
    ]
