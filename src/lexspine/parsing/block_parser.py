"""
Block parser for line-oriented dictionary sources.

Turns a raw text stream into a lazy sequence of dictionary entries in a
single forward pass. At most one entry is under construction at a time,
so memory stays flat on multi-megabyte sources.

Manifesto:
    - **Format-agnostic:** Whether a line opens an entry is decided by an
      injected opener (see :mod:`lexspine.parsing.formats`)
    - **Never raises:** Malformed input is counted, not thrown
    - **No empty entries:** An entry with zero body fragments is discarded
      and counted as rejected
    - **O(n):** Each line is looked at once

Architecture:
    ::

        for each line:
          blank ───────────────────────────────► skip
          opener(line) matches ──► emit current (if it has fragments,
                                   else count rejected); start new entry
          current entry exists ──► len(text) >= min_fragment_length ?
                                     append fragment : count noise
          no current entry ──────► count orphan
        end of stream ─────────► emit current (same rule)

Examples:
    >>> parser = BlockParser(asterisk_headword)
    >>> text = "*alpha*,\\nDefinition one.\\n\\n*beta*,\\nDef two.\\n"
    >>> [e.headword for e in parser.parse_text(text)]
    ['alpha', 'beta']
    >>> parser.stats.entries_emitted
    2

Tags:
    parsing, state-machine, streaming, dictionary
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from lexspine.core.logging import get_logger
from lexspine.core.text import normalize_key
from lexspine.parsing.formats import EntryOpener, Extractor

logger = get_logger(__name__)

MAX_REJECTED_SAMPLES = 5


@dataclass(frozen=True)
class ParsedEntry:
    """A dictionary entry with at least one body fragment.

    Attributes:
        headword: Headword as written in the source
        key: Case-folded, diacritic-free lookup key
        fragments: Body fragments in source order
        line_number: 1-based line the entry was opened on
        fields: Output of secondary extractors (may be empty)
    """

    headword: str
    key: str
    fragments: tuple[str, ...]
    line_number: int
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def body(self) -> str:
        return " ".join(self.fragments)

    @property
    def entry_type(self) -> str:
        """``mwe`` for multi-word headwords, ``word`` otherwise."""
        return "mwe" if len(self.headword.split()) > 1 else "word"

    def to_unit(self) -> dict[str, Any]:
        """Serializable form stored as a job unit."""
        return {
            "headword": self.headword,
            "key": self.key,
            "fragments": list(self.fragments),
            "line_number": self.line_number,
            "fields": self.fields,
        }

    @classmethod
    def from_unit(cls, unit: dict[str, Any]) -> ParsedEntry:
        return cls(
            headword=unit["headword"],
            key=unit["key"],
            fragments=tuple(unit["fragments"]),
            line_number=unit.get("line_number", 0),
            fields=unit.get("fields") or {},
        )


@dataclass
class ParseStats:
    """Counters for one parse run."""

    lines_read: int = 0
    entries_emitted: int = 0
    entries_rejected: int = 0
    noise_lines: int = 0
    orphan_lines: int = 0
    extractor_failures: int = 0
    rejected: list[dict[str, Any]] = field(default_factory=list)

    @property
    def rejected_samples(self) -> list[dict[str, Any]]:
        return self.rejected[:MAX_REJECTED_SAMPLES]

    def to_dict(self) -> dict[str, Any]:
        return {
            "lines_read": self.lines_read,
            "entries_emitted": self.entries_emitted,
            "entries_rejected": self.entries_rejected,
            "noise_lines": self.noise_lines,
            "orphan_lines": self.orphan_lines,
            "extractor_failures": self.extractor_failures,
            "rejected_samples": self.rejected_samples,
        }


@dataclass
class _OpenEntry:
    headword: str
    line_number: int
    fragments: list[str] = field(default_factory=list)


class BlockParser:
    """Streaming state machine over dictionary lines.

    Args:
        opener: Decides whether a line opens an entry
        min_fragment_length: Shorter body lines are dropped as noise
        extractors: Optional best-effort field extractors run on each
            emitted entry's body
    """

    def __init__(
        self,
        opener: EntryOpener,
        *,
        min_fragment_length: int = 3,
        extractors: Sequence[Extractor] = (),
    ):
        self.opener = opener
        self.min_fragment_length = min_fragment_length
        self.extractors = tuple(extractors)
        self.stats = ParseStats()

    def parse_text(self, text: str) -> Iterator[ParsedEntry]:
        return self.parse(text.splitlines())

    def parse(self, lines: Iterable[str]) -> Iterator[ParsedEntry]:
        """Yield entries lazily; ``self.stats`` is reset and filled as it goes."""
        self.stats = ParseStats()
        current: _OpenEntry | None = None

        for line_number, raw in enumerate(lines, start=1):
            self.stats.lines_read += 1
            line = raw.strip()
            if not line:
                continue

            match = self._open(line)
            if match is not None:
                if current is not None:
                    entry = self._close(current)
                    if entry is not None:
                        yield entry
                current = _OpenEntry(match.headword, line_number)
                if match.remainder:
                    self._append(current, match.remainder)
                continue

            if current is None:
                self.stats.orphan_lines += 1
                continue
            self._append(current, line)

        if current is not None:
            entry = self._close(current)
            if entry is not None:
                yield entry

        logger.debug("parse_finished", **{k: v for k, v in self.stats.to_dict().items() if k != "rejected_samples"})

    def _open(self, line: str):
        try:
            return self.opener(line)
        except Exception:
            logger.debug("opener_failed", line=line[:80], exc_info=True)
            return None

    def _append(self, current: _OpenEntry, text: str) -> None:
        if len(text) >= self.min_fragment_length:
            current.fragments.append(text)
        else:
            self.stats.noise_lines += 1

    def _reject(self, current: _OpenEntry, reason: str) -> None:
        self.stats.entries_rejected += 1
        self.stats.rejected.append(
            {
                "line_number": current.line_number,
                "reason": reason,
                "raw_text": current.headword,
            }
        )

    def _close(self, current: _OpenEntry) -> ParsedEntry | None:
        if not current.fragments:
            self._reject(current, "no_body_fragments")
            return None
        key = normalize_key(current.headword)
        if not key:
            self._reject(current, "empty_key")
            return None

        self.stats.entries_emitted += 1
        entry = ParsedEntry(
            headword=current.headword,
            key=key,
            fragments=tuple(current.fragments),
            line_number=current.line_number,
        )
        if self.extractors:
            entry.fields.update(self.extract(entry.body))
        return entry

    def extract(self, body: str) -> dict[str, Any]:
        """Run every extractor; a failing extractor leaves its fields absent."""
        fields: dict[str, Any] = {}
        for extractor in self.extractors:
            try:
                fields.update(extractor(body))
            except Exception:
                self.stats.extractor_failures += 1
                logger.debug("extractor_failed", extractor=getattr(extractor, "__name__", repr(extractor)), exc_info=True)
        return fields
