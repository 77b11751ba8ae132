"""
Deterministic hashing for cache keys and unit identities.

The generative classifier cache is keyed by ``(word, context_hash)``; the
context hash must be stable across runs and processes so that a rerun never
calls the classifier twice for the same occurrence.

Examples:
    >>> compute_hash("a", "b") != compute_hash("b", "a")
    True
    >>> context_hash("O  Sertão") == context_hash("o sertao")
    True
"""

from __future__ import annotations

import hashlib
from typing import Any

from lexspine.core.text import normalize_key


def compute_hash(*values: Any, length: int = 32) -> str:
    """SHA-256 of the ``|``-joined string forms of ``values``, truncated to ``length``."""
    content = "|".join("" if v is None else str(v) for v in values)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:length]


def context_hash(sentence: str | None, length: int = 16) -> str:
    """Stable hash of a normalized context sentence (empty context hashes too)."""
    return compute_hash(normalize_key(sentence or ""), length=length)
