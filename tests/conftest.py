"""
Shared pytest fixtures for lexicon-spine tests.

This module provides:
- Process-state cleanup (circuit breakers, settings cache, log context)
- In-memory SQLite connections with the lex_* schema in place
- Settings tuned for tests (no classifier, no API key, no .env file)
- Small builders for dictionary sources and corpora
- A scripted classifier standing in for the HTTP one
"""

from __future__ import annotations

from collections.abc import Callable, Generator, Sequence

import pytest

from lexspine.core.database import connect
from lexspine.core.errors import NetworkError
from lexspine.core.logging import clear_context
from lexspine.core.settings import LexSpineSettings, clear_settings_cache
from lexspine.execution.circuit_breaker import clear_circuit_breakers
from lexspine.execution.job_store import JobStore
from lexspine.resolution.classifier import ClassifierVerdict
from lexspine.resolution.models import WordContext


@pytest.fixture(autouse=True)
def _isolate_process_state() -> Generator[None, None, None]:
    """Circuit breakers and cached settings are per process; reset them per test."""
    clear_circuit_breakers()
    clear_settings_cache()
    yield
    clear_circuit_breakers()
    clear_settings_cache()
    clear_context()


@pytest.fixture()
def settings() -> LexSpineSettings:
    return LexSpineSettings(
        database_path=":memory:",
        classifier_url=None,
        api_key=None,
        _env_file=None,
    )


@pytest.fixture()
def conn():
    db = connect(":memory:")
    yield db
    db.close()


@pytest.fixture()
def store(conn) -> JobStore:
    return JobStore(conn)


# ── Source builders ──────────────────────────────────────────────────────


def dictionary_text(count: int, start: int = 0) -> str:
    """``count`` asterisk-format entries, one line each."""
    return "\n".join(f"*palavra{i}*, S. m. - Definição número {i}." for i in range(start, start + count))


@pytest.fixture()
def make_dictionary() -> Callable[..., str]:
    return dictionary_text


SAMPLE_CORPUS = [
    {"song_id": "s1", "text": "A saudade aperta no sertão"},
    {
        "song_id": "s2",
        "tokens": [
            {"word": "Tristemente", "pos": "ADV", "lemma": "tristemente"},
            {"word": "viola", "pos": "NOUN", "lemma": "viola"},
        ],
    },
]


@pytest.fixture()
def sample_corpus() -> list[dict]:
    """Two songs: one as plain text (5 words), one pre-tagged (2 tokens)."""
    return [dict(song) for song in SAMPLE_CORPUS]


@pytest.fixture()
def seed_lexicons(conn) -> Callable[..., None]:
    """Insert rows into the strategy tables and commit."""

    def seed(
        *,
        cache: dict[str, tuple[str, float]] | None = None,
        regional: dict[str, tuple[str, float]] | None = None,
        pos: dict[tuple[str, str], tuple[str, float]] | None = None,
        synonyms: list[tuple[str, str]] | None = None,
    ) -> None:
        for key, (code, confidence) in (cache or {}).items():
            conn.execute(
                "INSERT INTO lex_semantic_cache (key, classification, confidence, source, updated_at) "
                "VALUES (?, ?, ?, 'test', '2026-01-01T00:00:00+00:00')",
                (key, f'["{code}"]', confidence),
            )
        for key, (code, confidence) in (regional or {}).items():
            conn.execute(
                "INSERT INTO lex_regional_lexicon (key, classification, confidence, region) VALUES (?, ?, ?, 'sul')",
                (key, f'["{code}"]', confidence),
            )
        for (key, tag), (code, confidence) in (pos or {}).items():
            conn.execute(
                "INSERT INTO lex_pos_lexicon (key, pos, classification, confidence) VALUES (?, ?, ?, ?)",
                (key, tag, f'["{code}"]', confidence),
            )
        for key_a, key_b in synonyms or []:
            conn.execute("INSERT INTO lex_synonyms (key_a, key_b) VALUES (?, ?)", (key_a, key_b))
        conn.commit()

    return seed


# ── Classifier double ────────────────────────────────────────────────────


class FakeClassifier:
    """Answers from a ``{key: (codes, confidence)}`` table.

    Words missing from the table are left out of the answer. ``fail`` makes
    every call raise a retryable NetworkError.
    """

    model = "fake-model"

    def __init__(self, answers: dict[str, tuple[tuple[str, ...], float]] | None = None, *, fail: bool = False):
        self.answers = answers or {}
        self.fail = fail
        self.calls: list[list[str]] = []

    def classify(self, items: Sequence[WordContext]) -> list[ClassifierVerdict]:
        self.calls.append([item.word for item in items])
        if self.fail:
            raise NetworkError("classifier down")
        verdicts = []
        for item in items:
            if item.key in self.answers:
                codes, confidence = self.answers[item.key]
                verdicts.append(ClassifierVerdict(item.key, tuple(codes), confidence))
        return verdicts


@pytest.fixture()
def make_classifier() -> type[FakeClassifier]:
    """Build a FakeClassifier: ``make_classifier({"saudade": (("SE",), 0.9)})``."""
    return FakeClassifier
