"""Dictionary import jobs.

Payload::

    {
        "source_text": "*casa*, S. f. - Habitação...",   # or "source_path"
        "format": "asterisk",                           # see parsing.formats.OPENERS
        "source_name": "aulete"                         # defaults to the file stem
    }

Materialization runs the block parser over the whole source once; each
emitted entry becomes one unit. Processing a chunk runs the field
extractors on each entry and upserts it into ``lex_dictionary_entries``
keyed by ``(source, key)``, so a re-run chunk rewrites the same rows.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from lexspine.core.errors import SourceError, ValidationError
from lexspine.core.logging import get_logger
from lexspine.execution.models import Job, JobKind
from lexspine.parsing import DEFAULT_EXTRACTORS, BlockParser, ParsedEntry, get_opener
from lexspine.parsing.formats import OPENERS, extraction_confidence

from .base import ChunkResult, Materialized, require_str

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


class DictionaryImportHandler:
    kind = JobKind.DICTIONARY_IMPORT

    def __init__(self, settings):
        self.settings = settings
        self.chunk_size = settings.chunk_size

    def validate(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValidationError("source payload must be an object", field="source")

        has_text = payload.get("source_text") is not None
        has_path = payload.get("source_path") is not None
        if has_text == has_path:
            raise ValidationError("provide exactly one of 'source_text' or 'source_path'", field="source")

        fmt = payload.get("format", "asterisk")
        if fmt not in OPENERS:
            raise ValidationError(f"unknown dictionary format {fmt!r}", field="format", value=fmt)

        normalized: dict[str, Any] = {"format": fmt}
        if has_text:
            text = payload["source_text"]
            if not isinstance(text, str):
                raise ValidationError("'source_text' must be a string", field="source_text")
            size = len(text.encode("utf-8"))
            normalized["source_text"] = text
            normalized["source_name"] = require_str(payload, "source_name", default="inline")
        else:
            path = Path(require_str(payload, "source_path"))
            if not path.is_file():
                raise ValidationError(f"source file not found: {path}", field="source_path", value=str(path))
            size = path.stat().st_size
            normalized["source_path"] = str(path)
            normalized["source_name"] = require_str(payload, "source_name", default=path.stem)

        if size > self.settings.max_payload_bytes:
            raise ValidationError(
                f"source is {size} bytes, limit is {self.settings.max_payload_bytes}",
                field="source",
                value=size,
            )
        return normalized

    def _read(self, payload: dict[str, Any]) -> str:
        if "source_text" in payload:
            return payload["source_text"]
        try:
            return Path(payload["source_path"]).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceError(f"cannot read {payload['source_path']}: {e}", cause=e) from e

    def materialize(self, payload: dict[str, Any]) -> Materialized:
        parser = BlockParser(
            get_opener(payload["format"]),
            min_fragment_length=self.settings.min_fragment_length,
        )
        units = [entry.to_unit() for entry in parser.parse_text(self._read(payload))]
        if len(units) > self.settings.max_units_per_job:
            raise ValidationError(
                f"source yields {len(units)} entries, limit is {self.settings.max_units_per_job}",
                field="source",
            )

        logger.info(
            "dictionary_parsed",
            source=payload["source_name"],
            entries=len(units),
            rejected=parser.stats.entries_rejected,
            noise_lines=parser.stats.noise_lines,
        )
        return Materialized(
            units=units,
            metadata={
                "source": payload["source_name"],
                "format": payload["format"],
                "parse_stats": parser.stats.to_dict(),
            },
            rejects=list(parser.stats.rejected),
            source=payload["source_name"],
        )

    def process(self, conn, job: Job, units: list[dict[str, Any]]) -> ChunkResult:
        source = job.metadata.get("source", "inline")
        extractor = BlockParser(get_opener(job.metadata.get("format", "asterisk")), extractors=DEFAULT_EXTRACTORS)
        now = utcnow().isoformat()
        result = ChunkResult()

        for unit in units:
            try:
                entry = ParsedEntry.from_unit(unit)
            except (KeyError, TypeError):
                result.errors += 1
                logger.warning("dictionary_unit_malformed", unit=str(unit)[:120])
                continue

            fields = extractor.extract(entry.body)
            conn.execute(
                """
                INSERT INTO lex_dictionary_entries (
                    source, key, headword, entry_type, body, category, gender,
                    etymology, origin_language, cross_references, usage_markers,
                    confidence, line_number, job_id, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (source, key) DO UPDATE SET
                    headword = excluded.headword,
                    entry_type = excluded.entry_type,
                    body = excluded.body,
                    category = excluded.category,
                    gender = excluded.gender,
                    etymology = excluded.etymology,
                    origin_language = excluded.origin_language,
                    cross_references = excluded.cross_references,
                    usage_markers = excluded.usage_markers,
                    confidence = excluded.confidence,
                    line_number = excluded.line_number,
                    job_id = excluded.job_id,
                    updated_at = excluded.updated_at
                """,
                (
                    source,
                    entry.key,
                    entry.headword,
                    entry.entry_type,
                    entry.body,
                    fields.get("category"),
                    fields.get("gender"),
                    fields.get("etymology"),
                    fields.get("origin_language"),
                    _join(fields.get("cross_references")),
                    _join(fields.get("usage_markers")),
                    extraction_confidence(fields),
                    entry.line_number,
                    job.id,
                    now,
                ),
            )
            result.inserted += 1

        failures = job.metadata.get("extractor_failures", 0) + extractor.stats.extractor_failures
        result.metadata["extractor_failures"] = failures
        return result


def _join(values: list[str] | None) -> str | None:
    return ", ".join(values) if values else None
