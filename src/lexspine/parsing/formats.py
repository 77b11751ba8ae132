"""Format-specific entry openers and best-effort field extractors.

An *opener* decides whether a line starts a new dictionary entry and, if
so, returns its headword plus any body text on the same line. The block
parser is format-agnostic; everything that knows what a headword looks
like lives here.

Extractors pull secondary fields (grammatical category, gender,
cross-references, usage markers, etymology) out of an entry body. They
are best effort: when a pattern does not match, the field is simply
absent.

Example:
    >>> asterisk_headword("*casa*, S. f. - Habitação.")
    HeadwordMatch(headword='casa', remainder='S. f. - Habitação.')
    >>> extract_category("S. f. - Habitação.")
    {'category': 'S. f.', 'definition': 'Habitação.', 'gender': 'f'}
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any, NamedTuple


class HeadwordMatch(NamedTuple):
    headword: str
    remainder: str = ""


EntryOpener = Callable[[str], "HeadwordMatch | None"]
Extractor = Callable[[str], dict[str, Any]]


# ── Openers ──────────────────────────────────────────────────────────

_ASTERISK = re.compile(r"^\*(?P<headword>[^*]+)\*\s*,?\s*(?P<remainder>.*)$")
_COLON = re.compile(r"^(?P<headword>[A-ZÀ-ÖØ-Þ][A-ZÀ-ÖØ-Þ' -]*[A-ZÀ-ÖØ-Þ]):\s*(?P<remainder>.*)$")


def asterisk_headword(line: str) -> HeadwordMatch | None:
    """Entries opened by ``*headword*,`` (Gutenberg-style dictionaries)."""
    match = _ASTERISK.match(line.strip())
    if match is None:
        return None
    headword = match.group("headword").strip()
    if not headword:
        return None
    return HeadwordMatch(headword, match.group("remainder").strip())


def colon_headword(line: str) -> HeadwordMatch | None:
    """Entries opened by an upper-case headword and a colon (``CASA: ...``)."""
    match = _COLON.match(line.strip())
    if match is None:
        return None
    return HeadwordMatch(match.group("headword").strip().lower(), match.group("remainder").strip())


def make_regex_opener(pattern: str | re.Pattern[str]) -> EntryOpener:
    """Build an opener from a regex.

    The headword is the ``headword`` group (or group 1); the remainder is
    the ``remainder`` group (or group 2) when present.
    """
    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern

    def opener(line: str) -> HeadwordMatch | None:
        match = compiled.match(line.strip())
        if match is None:
            return None
        groups = match.groupdict()
        headword = groups.get("headword") or (match.group(1) if compiled.groups >= 1 else None)
        if not headword or not headword.strip():
            return None
        remainder = groups.get("remainder")
        if remainder is None and compiled.groups >= 2 and "headword" not in groups:
            remainder = match.group(2)
        return HeadwordMatch(headword.strip(), (remainder or "").strip())

    return opener


OPENERS: dict[str, EntryOpener] = {
    "asterisk": asterisk_headword,
    "colon": colon_headword,
}


def get_opener(format_name: str) -> EntryOpener:
    try:
        return OPENERS[format_name]
    except KeyError:
        raise ValueError(f"Unknown dictionary format: {format_name!r} (known: {sorted(OPENERS)})") from None


# ── Extractors ───────────────────────────────────────────────────────

_CATEGORY = re.compile(r"^([A-Z][a-z]{0,3}\.(?:\s?[a-z]{1,3}\.)?)\s*[-–—]\s*(.+)", re.DOTALL)
_GENDER = re.compile(r"\b([mf])\.")
_CROSS_REF = re.compile(r"(?<!\w)(?:V\.|Cf\.)\s+([^\W\d_][\w-]+)")
_SYNONYMS = re.compile(r"Syn\.?:\s*([^.;]+)")
_ETYMOLOGY = re.compile(r"\((?:Do\s+)?(lat|gr|fr|ár|ar|it|cast|ing|tupi)\b\.?\s*([^)]*)\)", re.IGNORECASE)

USAGE_MARKERS = {
    "Ant.": "archaic",
    "Prov.": "regional",
    "Bras.": "brazilian",
    "Fig.": "figurative",
    "Pop.": "popular",
}
_USAGE = re.compile(r"(?<!\w)(" + "|".join(re.escape(m) for m in USAGE_MARKERS) + r")")

ORIGIN_LANGUAGES = {
    "lat": "latin",
    "gr": "greek",
    "fr": "french",
    "ár": "arabic",
    "ar": "arabic",
    "it": "italian",
    "cast": "spanish",
    "ing": "english",
    "tupi": "tupi",
}


def extract_category(body: str) -> dict[str, Any]:
    """Leading category abbreviation followed by a dash, e.g. ``S. m. - ...``."""
    match = _CATEGORY.match(body)
    if match is None:
        return {}
    category = match.group(1).strip()
    fields: dict[str, Any] = {"category": category, "definition": match.group(2).strip()}
    gender = _GENDER.search(category)
    if gender:
        fields["gender"] = gender.group(1)
    return fields


def extract_cross_references(body: str) -> dict[str, Any]:
    refs: list[str] = []
    for match in _CROSS_REF.finditer(body):
        refs.append(match.group(1))
    for match in _SYNONYMS.finditer(body):
        refs.extend(part.strip() for part in match.group(1).split(",") if part.strip())
    if not refs:
        return {}
    return {"cross_references": list(dict.fromkeys(refs))}


def extract_usage_markers(body: str) -> dict[str, Any]:
    markers = [USAGE_MARKERS[m.group(1)] for m in _USAGE.finditer(body)]
    if not markers:
        return {}
    return {"usage_markers": list(dict.fromkeys(markers))}


def extract_etymology(body: str) -> dict[str, Any]:
    match = _ETYMOLOGY.search(body)
    if match is None:
        return {}
    language = match.group(1).lower()
    return {
        "etymology": match.group(0).strip("() "),
        "origin_language": ORIGIN_LANGUAGES.get(language, language),
    }


DEFAULT_EXTRACTORS: tuple[Extractor, ...] = (
    extract_category,
    extract_cross_references,
    extract_usage_markers,
    extract_etymology,
)


def extraction_confidence(fields: dict[str, Any]) -> float:
    """0.95 when a category was recognised, 0.85 otherwise."""
    return 0.95 if fields.get("category") else 0.85
