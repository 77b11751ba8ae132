"""Tests for the corpus annotation handler."""

from __future__ import annotations

import json

import pytest

from lexspine.core.errors import KillSwitchActiveError, ValidationError
from lexspine.execution.circuit_breaker import CircuitBreaker
from lexspine.execution.engine import ChunkedJobEngine
from lexspine.execution.models import Job, JobKind, JobStatus
from lexspine.handlers import CorpusAnnotationHandler, HandlerRegistry
from lexspine.resolution import AnnotationStore


@pytest.fixture()
def handler(settings) -> CorpusAnnotationHandler:
    return CorpusAnnotationHandler(settings)


@pytest.fixture()
def seeded(seed_lexicons):
    seed_lexicons(cache={"saudade": ("SE", 0.9)}, regional={"sertao": ("GE", 0.85)})


def annotated_handler(settings, client) -> CorpusAnnotationHandler:
    return CorpusAnnotationHandler(
        settings,
        client,
        breaker=CircuitBreaker("classifier-test", failure_threshold=5),
        sleep=lambda _: None,
    )


# ── Validation ───────────────────────────────────────────────────────────


class TestValidate:
    def test_inline_corpus(self, handler, sample_corpus):
        normalized = handler.validate({"corpus_name": "sertanejo", "corpus": sample_corpus})
        assert normalized["corpus_name"] == "sertanejo"
        assert normalized["songs"][0] == {"song_id": "s1", "text": "A saudade aperta no sertão"}
        assert "tokens" in normalized["songs"][1]

    def test_corpus_file(self, handler, sample_corpus, tmp_path):
        path = tmp_path / "forro.json"
        path.write_text(json.dumps(sample_corpus), encoding="utf-8")
        normalized = handler.validate({"corpus_path": str(path)})
        assert normalized["corpus_name"] == "forro"
        assert len(normalized["songs"]) == 2

    def test_song_ids_are_strings(self, handler):
        normalized = handler.validate({"corpus": [{"song_id": 7, "text": "viola"}]})
        assert normalized["songs"][0]["song_id"] == "7"

    def test_stored_occurrences(self, handler):
        occurrence = {"corpus": "mpb", "song_id": "s1", "position": 0, "word": "A"}
        normalized = handler.validate({"occurrences": [occurrence], "reprocess": True})
        assert normalized == {"corpus_name": "*", "occurrences": [occurrence], "reprocess": True}

    @pytest.mark.parametrize(
        "payload, field",
        [
            ({}, "source"),
            ({"corpus": [], "corpus_path": "x.json"}, "source"),
            ({"corpus": {"song_id": "s1"}}, "corpus"),
            ({"corpus": [{"text": "sem id"}]}, "corpus[0].song_id"),
            ({"corpus": [{"song_id": "s1"}]}, "corpus[0].text"),
            ({"corpus": [{"song_id": "s1", "tokens": [{"pos": "NOUN"}]}]}, "corpus[0].tokens"),
            ({"corpus_path": "/definitely/not/here.json"}, "corpus_path"),
            ({"corpus": [], "occurrences": []}, "source"),
            ({"occurrences": {"word": "no"}}, "occurrences"),
            ({"occurrences": [{"corpus": "mpb", "song_id": "s1", "word": "no"}]}, "occurrences[0]"),
        ],
    )
    def test_rejects_bad_payloads(self, handler, payload, field):
        with pytest.raises(ValidationError) as exc_info:
            handler.validate(payload)
        assert exc_info.value.field == field


# ── Materialize ──────────────────────────────────────────────────────────


class TestMaterialize:
    def test_text_songs_are_tokenized(self, handler, sample_corpus):
        materialized = handler.materialize(handler.validate({"corpus_name": "mpb", "corpus": sample_corpus}))

        words = [(u["song_id"], u["position"], u["word"]) for u in materialized.units]
        assert words == [
            ("s1", 0, "A"),
            ("s1", 1, "saudade"),
            ("s1", 2, "aperta"),
            ("s1", 3, "no"),
            ("s1", 4, "sertão"),
            ("s2", 0, "Tristemente"),
            ("s2", 1, "viola"),
        ]
        assert materialized.units[1]["sentence"] == "A saudade aperta no sertão"
        assert materialized.metadata == {"corpus": "mpb", "songs": 2}

    def test_tokens_keep_tagger_output(self, handler, sample_corpus):
        materialized = handler.materialize(handler.validate({"corpus": sample_corpus}))
        tagged = materialized.units[5]
        assert tagged["pos"] == "ADV"
        assert tagged["lemma"] == "tristemente"
        assert tagged["sentence"] == "Tristemente viola"
        assert tagged["corpus"] == "default"

    def test_unit_limit(self, settings, sample_corpus):
        handler = CorpusAnnotationHandler(settings.model_copy(update={"max_units_per_job": 3}))
        with pytest.raises(ValidationError):
            handler.materialize(handler.validate({"corpus": sample_corpus}))


# ── Process ──────────────────────────────────────────────────────────────


class TestProcess:
    def test_occurrences_annotated(self, conn, settings, sample_corpus, seeded, make_classifier):
        client = make_classifier({"aperta": (("AP",), 0.8)})
        handler = annotated_handler(settings, client)
        materialized = handler.materialize(handler.validate({"corpus_name": "mpb", "corpus": sample_corpus}))
        job = Job.create(JobKind.CORPUS_ANNOTATE, metadata=materialized.metadata)

        result = handler.process(conn, job, materialized.units)

        assert result.inserted == 4
        assert result.unresolved == 3
        assert client.calls == [["A", "aperta", "no", "viola"]]

        rows = {row["word"]: row for row in AnnotationStore(conn).list_for_song("mpb", "s1")}
        assert rows["saudade"]["strategy"] == "cache"
        assert rows["sertão"]["strategy"] == "regional_lexicon"
        assert rows["aperta"]["strategy"] == "generative"
        assert rows["no"]["classification"] == []
        tagged = AnnotationStore(conn).list_for_song("mpb", "s2")
        assert tagged[0]["strategy"] == "morphology"

        breakdown = result.metadata["strategy_breakdown"]
        assert breakdown["hits"] == {"cache": 1, "regional_lexicon": 1, "generative": 1, "morphology": 1}
        assert breakdown["unresolved"] == 3
        assert breakdown["classifier_calls"] == 1

    def test_breakdown_accumulates_across_chunks(self, conn, settings, sample_corpus, seeded):
        handler = CorpusAnnotationHandler(settings)
        materialized = handler.materialize(handler.validate({"corpus": sample_corpus}))
        job = Job.create(JobKind.CORPUS_ANNOTATE, metadata={"strategy_breakdown": {"hits": {"cache": 5}, "unresolved": 2}})

        result = handler.process(conn, job, materialized.units[:2])

        breakdown = result.metadata["strategy_breakdown"]
        assert breakdown["hits"] == {"cache": 6}
        assert breakdown["unresolved"] == 3

    def test_curated_rows_survive(self, conn, settings, sample_corpus, seeded):
        handler = CorpusAnnotationHandler(settings)
        materialized = handler.materialize(handler.validate({"corpus": sample_corpus}))
        job = Job.create(JobKind.CORPUS_ANNOTATE)
        handler.process(conn, job, materialized.units)
        AnnotationStore(conn).mark_curated("default", "s1", 1, ["HU"])

        result = handler.process(conn, job, materialized.units)

        assert AnnotationStore(conn).get_prior("default", "s1", 1).result.classification == ("HU",)
        assert result.metadata["strategy_breakdown"]["kept_prior"] == 1

    def test_classifier_outage_does_not_fail_chunk(self, conn, settings, sample_corpus, seeded, make_classifier):
        handler = annotated_handler(settings, make_classifier(fail=True))
        materialized = handler.materialize(handler.validate({"corpus": sample_corpus}))

        result = handler.process(conn, Job.create(JobKind.CORPUS_ANNOTATE), materialized.units)

        assert result.errors == 0
        assert result.unresolved == 4
        assert result.metadata["strategy_breakdown"]["fallbacks"] == 4


# ── Through the engine ───────────────────────────────────────────────────


class TestEndToEnd:
    def test_annotation_job_completes(self, conn, settings, sample_corpus, seeded, make_classifier):
        tuned = settings.model_copy(update={"annotation_chunk_size": 3})
        handler = annotated_handler(tuned, make_classifier({"aperta": (("AP",), 0.8)}))
        engine = ChunkedJobEngine(conn, HandlerRegistry([handler]), settings=tuned, worker_id="test")

        ticket = engine.start_job("corpus-annotate", {"corpus_name": "mpb", "corpus": sample_corpus})

        job = engine.get_job(ticket.job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.processed_count == 7
        assert job.inserted_count == 4
        assert job.unresolved_count == 3
        assert job.metadata["strategy_breakdown"]["hits"]["cache"] == 1
        assert AnnotationStore(conn).count("mpb") == 7


# ── Reprocessing unresolved occurrences ──────────────────────────────────


class TestReprocess:
    @pytest.fixture()
    def first_pass(self, conn, settings, sample_corpus, seeded, make_classifier):
        """Annotate the sample corpus once; the classifier says NC for "no"."""
        handler = annotated_handler(settings, make_classifier({"aperta": (("AP",), 0.8), "no": (("NC",), 0.0)}))
        engine = ChunkedJobEngine(conn, HandlerRegistry([handler]), settings=settings, worker_id="test")
        engine.start_job("corpus-annotate", {"corpus_name": "mpb", "corpus": sample_corpus})
        return engine, handler

    def test_occurrences_keep_their_context(self, conn, first_pass):
        rows = AnnotationStore(conn).list_unresolved("mpb")

        assert [(row["song_id"], row["position"], row["word"]) for row in rows] == [
            ("s1", 0, "A"),
            ("s1", 3, "no"),
            ("s2", 1, "viola"),
        ]
        assert rows[0]["sentence"] == "A saudade aperta no sertão"
        assert rows[2]["lemma"] == "viola"

    def test_unresolved_words_asked_again(self, conn, first_pass, make_classifier):
        engine, handler = first_pass
        handler.client = make_classifier({"no": (("FN",), 0.9), "viola": (("MU",), 0.85)})

        plan = engine.reprocess_unclassified("mpb")

        assert plan.candidates == 3
        job = engine.get_job(plan.job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.metadata["reprocess"] is True
        assert job.inserted_count == 2
        assert job.unresolved_count == 1
        assert handler.client.calls == [["A", "no", "viola"]]

        store = AnnotationStore(conn)
        assert store.count_unresolved("mpb") == 1
        rows = {row["word"]: row for row in store.list_for_song("mpb", "s1")}
        assert rows["no"]["classification"] == ["FN"]
        assert rows["no"]["strategy"] == "generative"
        assert rows["saudade"]["strategy"] == "cache"

    def test_not_classified_answer_forgotten(self, conn, first_pass, make_classifier):
        engine, handler = first_pass
        cached = "SELECT COUNT(*) FROM lex_classifier_cache WHERE key = 'no' AND classification = '[\"NC\"]'"
        assert conn.execute(cached).fetchone()[0] == 1
        handler.client = make_classifier()

        engine.reprocess_unclassified("mpb")

        assert "no" in handler.client.calls[0]
        assert conn.execute(cached).fetchone()[0] == 0

    def test_dry_run_only_counts(self, first_pass):
        engine, handler = first_pass
        before = len(engine.list_jobs())

        plan = engine.reprocess_unclassified("mpb", dry_run=True)

        assert plan.candidates == 3
        assert plan.job_id is None
        assert len(engine.list_jobs()) == before

    def test_low_confidence_rows_included(self, first_pass):
        engine, _handler = first_pass
        plan = engine.reprocess_unclassified("mpb", below_confidence=0.85, dry_run=True)
        # aperta (0.8) joins the three unresolved occurrences
        assert plan.candidates == 4

    def test_nothing_to_do(self, first_pass):
        engine, _handler = first_pass
        plan = engine.reprocess_unclassified("forro")
        assert plan.to_dict() == {"corpus": "forro", "candidates": 0, "jobId": None, "totalUnits": 0}

    def test_refused_during_emergency_stop(self, first_pass):
        engine, _handler = first_pass
        engine.kill_all("classifier quota exhausted")

        with pytest.raises(KillSwitchActiveError):
            engine.reprocess_unclassified("mpb")
        assert engine.reprocess_unclassified("mpb", dry_run=True).candidates == 3
