"""Storage of per-occurrence annotations.

Rows are keyed by ``(corpus, song_id, position)`` so re-processing a chunk
rewrites the same rows. Curated rows are never overwritten by machine
results; invalidated rows are ignored as priors and replaced on the next
run.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from .models import PriorResult, ResolutionResult, Strategy, Unresolved
from .strategies import decode_classification, encode_classification


def utcnow() -> datetime:
    return datetime.now(UTC)


OccurrenceKey = tuple[str, str, int]


class AnnotationStore:
    def __init__(self, conn):
        self.conn = conn

    def get_priors(self, corpus: str, occurrences: Iterable[tuple[str, int]]) -> dict[OccurrenceKey, PriorResult]:
        """Stored results for the given ``(song_id, position)`` pairs."""
        priors: dict[OccurrenceKey, PriorResult] = {}
        for song_id, position in occurrences:
            prior = self.get_prior(corpus, song_id, position)
            if prior is not None:
                priors[(corpus, song_id, position)] = prior
        return priors

    def get_prior(self, corpus: str, song_id: str, position: int) -> PriorResult | None:
        row = self.conn.execute(
            """
            SELECT key, classification, confidence, strategy, is_propagated, is_curated, invalidated
            FROM lex_annotations WHERE corpus = ? AND song_id = ? AND position = ?
            """,
            (corpus, song_id, position),
        ).fetchone()
        if row is None or not row["classification"] or not row["strategy"]:
            return None
        return PriorResult(
            result=ResolutionResult(
                key=row["key"],
                classification=decode_classification(row["classification"]),
                confidence=float(row["confidence"] or 0.0),
                strategy=Strategy(row["strategy"]),
                is_propagated=bool(row["is_propagated"]),
            ),
            is_curated=bool(row["is_curated"]),
            invalidated=bool(row["invalidated"]),
        )

    def upsert(
        self,
        corpus: str,
        song_id: str,
        position: int,
        word: str,
        outcome: ResolutionResult | Unresolved,
        *,
        pos: str | None = None,
        lemma: str | None = None,
        sentence: str | None = None,
        context_hash: str | None = None,
        job_id: str | None = None,
    ) -> bool:
        """Write one occurrence; returns False when a curated row blocked it.

        ``lemma`` and ``sentence`` are kept so the occurrence can be
        resolved again later without the source corpus.
        """
        if isinstance(outcome, ResolutionResult):
            values: tuple[Any, ...] = (
                outcome.key,
                encode_classification(outcome.classification),
                outcome.confidence,
                outcome.strategy.value,
                int(outcome.is_propagated),
            )
        else:
            values = (outcome.key, None, None, None, 0)

        cursor = self.conn.execute(
            """
            INSERT INTO lex_annotations (
                corpus, song_id, position, word, key, classification, confidence,
                strategy, is_propagated, pos, lemma, sentence, context_hash, job_id, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (corpus, song_id, position) DO UPDATE SET
                word = excluded.word,
                key = excluded.key,
                classification = excluded.classification,
                confidence = excluded.confidence,
                strategy = excluded.strategy,
                is_propagated = excluded.is_propagated,
                pos = excluded.pos,
                lemma = excluded.lemma,
                sentence = excluded.sentence,
                context_hash = excluded.context_hash,
                job_id = excluded.job_id,
                updated_at = excluded.updated_at,
                invalidated = 0
            WHERE lex_annotations.is_curated = 0
            """,
            (corpus, song_id, position, word, *values, pos, lemma, sentence, context_hash, job_id, utcnow().isoformat()),
        )
        return cursor.rowcount > 0

    def invalidate(self, key: str, *, corpus: str | None = None) -> int:
        """Mark machine results for ``key`` as stale so the next run replaces them."""
        query = "UPDATE lex_annotations SET invalidated = 1 WHERE key = ? AND is_curated = 0"
        params: list[Any] = [key]
        if corpus:
            query += " AND corpus = ?"
            params.append(corpus)
        cursor = self.conn.execute(query, params)
        self.conn.commit()
        return cursor.rowcount

    def mark_curated(self, corpus: str, song_id: str, position: int, classification: list[str]) -> bool:
        """Record a human classification; it is never replaced afterwards."""
        cursor = self.conn.execute(
            """
            UPDATE lex_annotations
            SET classification = ?, confidence = 1.0, strategy = ?, is_curated = 1,
                invalidated = 0, is_propagated = 0, updated_at = ?
            WHERE corpus = ? AND song_id = ? AND position = ?
            """,
            (
                encode_classification(classification),
                Strategy.CURATED.value,
                utcnow().isoformat(),
                corpus,
                song_id,
                position,
            ),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def list_for_song(self, corpus: str, song_id: str) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT position, word, key, classification, confidence, strategy, is_propagated, is_curated
            FROM lex_annotations WHERE corpus = ? AND song_id = ? ORDER BY position
            """,
            (corpus, song_id),
        ).fetchall()
        return [
            {
                "position": row["position"],
                "word": row["word"],
                "key": row["key"],
                "classification": list(decode_classification(row["classification"])),
                "confidence": row["confidence"],
                "strategy": row["strategy"],
                "isPropagated": bool(row["is_propagated"]),
                "isCurated": bool(row["is_curated"]),
            }
            for row in rows
        ]

    def count(self, corpus: str | None = None) -> int:
        if corpus:
            row = self.conn.execute("SELECT COUNT(*) FROM lex_annotations WHERE corpus = ?", (corpus,)).fetchone()
        else:
            row = self.conn.execute("SELECT COUNT(*) FROM lex_annotations").fetchone()
        return row[0]

    def list_unresolved(
        self,
        corpus: str | None = None,
        *,
        below_confidence: float | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Machine rows without a classification, as corpus-annotate units.

        With ``below_confidence`` rows classified under that confidence are
        included too. Curated rows are never returned.
        """
        query, params = self._unresolved_filter(corpus, below_confidence)
        query = (
            "SELECT corpus, song_id, position, word, pos, lemma, sentence, context_hash FROM lex_annotations"
            f"{query} ORDER BY corpus, song_id, position"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [
            {
                "corpus": row["corpus"],
                "song_id": row["song_id"],
                "position": row["position"],
                "word": row["word"],
                "pos": row["pos"],
                "lemma": row["lemma"],
                "sentence": row["sentence"],
                "context_hash": row["context_hash"],
            }
            for row in self.conn.execute(query, params).fetchall()
        ]

    def count_unresolved(self, corpus: str | None = None, *, below_confidence: float | None = None) -> int:
        query, params = self._unresolved_filter(corpus, below_confidence)
        return self.conn.execute(f"SELECT COUNT(*) FROM lex_annotations{query}", params).fetchone()[0]

    def _unresolved_filter(self, corpus: str | None, below_confidence: float | None) -> tuple[str, list[Any]]:
        where = "classification IS NULL"
        params: list[Any] = []
        if below_confidence is not None:
            where = "(classification IS NULL OR confidence < ?)"
            params.append(below_confidence)
        query = f" WHERE is_curated = 0 AND {where}"
        if corpus:
            query += " AND corpus = ?"
            params.append(corpus)
        return query, params
