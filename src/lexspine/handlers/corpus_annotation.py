"""Corpus annotation jobs.

Payload::

    {
        "corpus_name": "sertanejo",
        "corpus": [                        # or "corpus_path": JSON file with this list
            {"song_id": "s1", "text": "A saudade aperta..."},
            {"song_id": "s2", "tokens": [{"word": "viola", "pos": "NOUN", "lemma": "viola"}]}
        ]
    }

A third form, ``occurrences``, carries ready-made units (``corpus``,
``song_id``, ``position``, ``word`` and optionally ``pos``, ``lemma``,
``sentence``). :meth:`CorpusAnnotationHandler.unresolved_occurrences`
builds it from stored rows that are still unresolved; with
``"reprocess": true`` each chunk forgets the classifier's cached answers
for its occurrences before resolving them, so they are asked again.

Songs given as plain ``text`` are tokenized here; songs given as
``tokens`` keep the tagger's POS and lemma. Every word occurrence becomes
one unit. Processing a chunk resolves the occurrences through the
cascade in one batch and upserts ``lex_annotations`` rows keyed by
``(corpus, song_id, position)``.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from lexspine.core.errors import SourceError, ValidationError
from lexspine.core.logging import get_logger
from lexspine.core.text import context_window, tokenize
from lexspine.execution.models import Job, JobKind
from lexspine.resolution import (
    AnnotationStore,
    CascadeStats,
    HttpClassifierClient,
    ResolutionCascade,
    ResolutionResult,
    WordContext,
    forget_cached,
)

from .base import ChunkResult, Materialized, require_str

logger = get_logger(__name__)

TOKEN_WINDOW = 5
_OCCURRENCE_KEYS = ("corpus", "song_id", "position", "word")


class CorpusAnnotationHandler:
    kind = JobKind.CORPUS_ANNOTATE

    def __init__(self, settings, client=None, *, breaker=None, sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self.chunk_size = settings.annotation_chunk_size
        if client is None and settings.classifier_configured:
            client = HttpClassifierClient.from_settings(settings)
        self.client = client
        self.breaker = breaker
        self.sleep = sleep

    def validate(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValidationError("source payload must be an object", field="source")

        sources = [key for key in ("corpus", "corpus_path", "occurrences") if payload.get(key) is not None]
        if len(sources) != 1:
            raise ValidationError("provide exactly one of 'corpus', 'corpus_path' or 'occurrences'", field="source")
        if sources[0] == "occurrences":
            return self._validate_occurrences(payload)

        if sources[0] == "corpus_path":
            path = Path(require_str(payload, "corpus_path"))
            if not path.is_file():
                raise ValidationError(f"corpus file not found: {path}", field="corpus_path", value=str(path))
            if path.stat().st_size > self.settings.max_payload_bytes:
                raise ValidationError("corpus file exceeds the payload size limit", field="corpus_path")
            songs = self._load(path)
            default_name = path.stem
        else:
            songs = payload["corpus"]
            default_name = "default"
            if len(json.dumps(songs, ensure_ascii=False).encode("utf-8")) > self.settings.max_payload_bytes:
                raise ValidationError("corpus exceeds the payload size limit", field="corpus")

        return {
            "corpus_name": require_str(payload, "corpus_name", default=default_name),
            "songs": [self._check_song(i, song) for i, song in enumerate(_as_list(songs))],
        }

    def _validate_occurrences(self, payload: dict[str, Any]) -> dict[str, Any]:
        occurrences = payload["occurrences"]
        if not isinstance(occurrences, list):
            raise ValidationError("occurrences must be a list", field="occurrences")
        if len(occurrences) > self.settings.max_units_per_job:
            raise ValidationError(
                f"more than {self.settings.max_units_per_job} occurrences", field="occurrences"
            )
        for index, unit in enumerate(occurrences):
            if not isinstance(unit, dict) or not all(unit.get(k) not in (None, "") for k in _OCCURRENCE_KEYS):
                raise ValidationError(
                    f"occurrence #{index} needs {', '.join(_OCCURRENCE_KEYS)}", field=f"occurrences[{index}]"
                )
        return {
            "corpus_name": require_str(payload, "corpus_name", default="*"),
            "occurrences": occurrences,
            "reprocess": bool(payload.get("reprocess", False)),
        }

    def _load(self, path: Path) -> Any:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise SourceError(f"cannot read corpus {path}: {e}", cause=e) from e

    def _check_song(self, index: int, song: Any) -> dict[str, Any]:
        if not isinstance(song, dict) or song.get("song_id") in (None, ""):
            raise ValidationError(f"song #{index} needs a 'song_id'", field=f"corpus[{index}].song_id")
        text, tokens = song.get("text"), song.get("tokens")
        if isinstance(tokens, list):
            if not all(isinstance(t, dict) and isinstance(t.get("word"), str) for t in tokens):
                raise ValidationError(f"song #{index} has malformed tokens", field=f"corpus[{index}].tokens")
            return {"song_id": str(song["song_id"]), "tokens": tokens}
        if not isinstance(text, str):
            raise ValidationError(f"song #{index} needs 'text' or 'tokens'", field=f"corpus[{index}].text")
        return {"song_id": str(song["song_id"]), "text": text}

    def materialize(self, payload: dict[str, Any]) -> Materialized:
        corpus = payload["corpus_name"]
        if "occurrences" in payload:
            units = [_unit_from_occurrence(unit) for unit in payload["occurrences"]]
            logger.info("occurrences_queued", corpus=corpus, occurrences=len(units), reprocess=payload["reprocess"])
            return Materialized(
                units=units,
                metadata={"corpus": corpus, "reprocess": payload["reprocess"]},
                source=corpus,
            )

        units: list[dict[str, Any]] = []
        for song in payload["songs"]:
            if "tokens" in song:
                units.extend(_units_from_tokens(corpus, song["song_id"], song["tokens"]))
            else:
                units.extend(_units_from_text(corpus, song["song_id"], song["text"]))
            if len(units) > self.settings.max_units_per_job:
                raise ValidationError(
                    f"corpus yields more than {self.settings.max_units_per_job} occurrences",
                    field="source",
                )

        logger.info("corpus_tokenized", corpus=corpus, songs=len(payload["songs"]), occurrences=len(units))
        return Materialized(
            units=units,
            metadata={"corpus": corpus, "songs": len(payload["songs"])},
            source=corpus,
        )

    def process(self, conn, job: Job, units: list[dict[str, Any]]) -> ChunkResult:
        cascade = ResolutionCascade.from_settings(
            conn, self.settings, self.client, breaker=self.breaker, sleep=self.sleep
        )
        store = AnnotationStore(conn)
        result = ChunkResult()

        items = []
        for unit in units:
            ctx = WordContext(
                word=unit["word"],
                pos=unit.get("pos"),
                lemma=unit.get("lemma"),
                sentence=unit.get("sentence"),
            )
            items.append((ctx, store.get_prior(unit["corpus"], unit["song_id"], unit["position"])))

        if job.metadata.get("reprocess"):
            forgotten = forget_cached(conn, [ctx for ctx, _prior in items])
            logger.debug("classifier_cache_forgotten", rows=forgotten)

        outcomes = cascade.resolve_many(items)
        for unit, (ctx, _prior), outcome in zip(units, items, outcomes):
            written = store.upsert(
                unit["corpus"],
                unit["song_id"],
                unit["position"],
                unit["word"],
                outcome,
                pos=ctx.pos,
                lemma=ctx.lemma,
                sentence=ctx.sentence,
                context_hash=ctx.context_hash,
                job_id=job.id,
            )
            if not isinstance(outcome, ResolutionResult):
                result.unresolved += 1
            elif written:
                result.inserted += 1

        breakdown = CascadeStats.from_dict(job.metadata.get("strategy_breakdown"))
        breakdown.merge(cascade.take_stats())
        result.metadata["strategy_breakdown"] = breakdown.to_dict()
        return result

    def unresolved_occurrences(
        self, conn, corpus: str | None = None, *, below_confidence: float | None = None
    ) -> list[dict[str, Any]]:
        """Stored occurrences still without a classification, ready to re-run."""
        rows = AnnotationStore(conn).list_unresolved(
            corpus, below_confidence=below_confidence, limit=self.settings.max_units_per_job
        )
        return [_unit_from_occurrence(row) for row in rows]


def _unit_from_occurrence(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "corpus": row["corpus"],
        "song_id": str(row["song_id"]),
        "position": int(row["position"]),
        "word": row["word"],
        "pos": row.get("pos"),
        "lemma": row.get("lemma"),
        "sentence": row.get("sentence"),
    }


def _as_list(value: Any) -> list[Any]:
    if not isinstance(value, list):
        raise ValidationError("corpus must be a list of songs", field="corpus")
    return value


def _units_from_text(corpus: str, song_id: str, text: str) -> list[dict[str, Any]]:
    return [
        {
            "corpus": corpus,
            "song_id": song_id,
            "position": position,
            "word": word,
            "sentence": context_window(text, offset, offset + len(word)),
        }
        for position, (offset, word) in enumerate(tokenize(text))
    ]


def _units_from_tokens(corpus: str, song_id: str, tokens: list[dict[str, Any]]) -> list[dict[str, Any]]:
    words = [t["word"] for t in tokens]
    units = []
    for position, token in enumerate(tokens):
        window = words[max(0, position - TOKEN_WINDOW):position + TOKEN_WINDOW + 1]
        units.append(
            {
                "corpus": corpus,
                "song_id": song_id,
                "position": position,
                "word": token["word"],
                "pos": token.get("pos"),
                "lemma": token.get("lemma"),
                "sentence": " ".join(window),
            }
        )
    return units
