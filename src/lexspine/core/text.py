"""
Text normalization shared by the parser, the cascade and the handlers.

Every lookup key in lexicon-spine (dictionary headwords, lexicon rows,
cache rows, synonym graph nodes) goes through :func:`normalize_key`, so
``Ação``, ``ação`` and ``ACAO`` all land on the same row.

Examples:
    >>> normalize_key("  Ação! ")
    'acao'
    >>> normalize_key("Pé-de-moleque")
    'pe-de-moleque'
"""

from __future__ import annotations

import re
import unicodedata

_NON_WORD = re.compile(r"[^\w\s-]", re.UNICODE)
_SPACES = re.compile(r"\s+")
_TOKEN = re.compile(r"[^\W\d_]+(?:-[^\W\d_]+)*", re.UNICODE)


def strip_diacritics(text: str) -> str:
    """Remove combining marks after NFD decomposition."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_key(text: str) -> str:
    """Case-fold, strip diacritics and punctuation, collapse whitespace."""
    folded = strip_diacritics(text.casefold())
    cleaned = _NON_WORD.sub("", folded)
    return _SPACES.sub(" ", cleaned).strip()


def tokenize(text: str) -> list[tuple[int, str]]:
    """Split text into ``(char_offset, word)`` pairs.

    Digits and underscores never start a token; hyphenated compounds stay
    whole.
    """
    return [(m.start(), m.group(0)) for m in _TOKEN.finditer(text)]


def context_window(text: str, start: int, end: int, width: int = 40) -> str:
    """Return the KWIC window of ``width`` characters around ``text[start:end]``."""
    left = max(0, start - width)
    right = min(len(text), end + width)
    return _SPACES.sub(" ", text[left:right]).strip()
