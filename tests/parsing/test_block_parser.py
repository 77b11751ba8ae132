"""Tests for the streaming block parser."""

from __future__ import annotations

from itertools import islice

import pytest

from lexspine.parsing.block_parser import BlockParser, ParsedEntry
from lexspine.parsing.formats import DEFAULT_EXTRACTORS, asterisk_headword, colon_headword


@pytest.fixture()
def parser() -> BlockParser:
    return BlockParser(asterisk_headword)


# ── Entry boundaries ─────────────────────────────────────────────────────


class TestEntries:
    def test_headword_without_body_is_rejected(self, parser):
        text = "*alpha*, First sense.\n*beta*,\n*gamma*,\nThird sense.\n"

        entries = list(parser.parse_text(text))

        assert [e.headword for e in entries] == ["alpha", "gamma"]
        assert entries[1].fragments == ("Third sense.",)
        assert parser.stats.entries_emitted == 2
        assert parser.stats.entries_rejected == 1
        assert parser.stats.rejected == [{"line_number": 2, "reason": "no_body_fragments", "raw_text": "beta"}]

    def test_multi_line_body(self, parser):
        text = "*casa*, S. f. - Habitação.\nEdifício onde se mora.\n\nLar.\n"
        (entry,) = parser.parse_text(text)
        assert entry.fragments == ("S. f. - Habitação.", "Edifício onde se mora.", "Lar.")
        assert entry.body == "S. f. - Habitação. Edifício onde se mora. Lar."
        assert entry.line_number == 1

    def test_blank_separated_stream(self, parser):
        text = "*alpha*,\nDefinition one.\n\n*beta*,\nDef two.\nMore text.\n\n*gamma*,\n"

        entries = list(parser.parse_text(text))

        assert len(entries) == 2
        assert [e.headword for e in entries] == ["alpha", "beta"]
        assert [e.body for e in entries] == ["Definition one.", "Def two. More text."]
        assert entries[1].line_number == 4
        assert parser.stats.rejected == [{"line_number": 8, "reason": "no_body_fragments", "raw_text": "gamma"}]

    def test_last_entry_without_body_is_rejected(self, parser):
        entries = list(parser.parse_text("*alpha*, Sense.\n*omega*,\n"))
        assert [e.headword for e in entries] == ["alpha"]
        assert parser.stats.rejected[0]["raw_text"] == "omega"

    def test_key_is_normalized(self, parser):
        (entry,) = parser.parse_text("*Ação*, S. f. - Ato de agir.\n")
        assert entry.headword == "Ação"
        assert entry.key == "acao"

    def test_punctuation_headword_rejected(self, parser):
        assert list(parser.parse_text("*?!*, Nothing here.\n")) == []
        assert parser.stats.rejected[0]["reason"] == "empty_key"

    def test_multi_word_headword(self, parser):
        (entry,) = parser.parse_text("*pé de moleque*, S. m. - Doce de amendoim.\n")
        assert entry.entry_type == "mwe"


# ── Noise ────────────────────────────────────────────────────────────────


class TestNoise:
    def test_short_lines_are_noise(self, parser):
        (entry,) = parser.parse_text("*alpha*,\nab\nReal sense.\n")
        assert entry.fragments == ("Real sense.",)
        assert parser.stats.noise_lines == 1

    def test_min_fragment_length_configurable(self):
        parser = BlockParser(asterisk_headword, min_fragment_length=1)
        (entry,) = parser.parse_text("*alpha*,\nab\n")
        assert entry.fragments == ("ab",)

    def test_lines_before_first_entry_are_orphans(self, parser):
        entries = list(parser.parse_text("PREFACE\nCopyright notice.\n*alpha*, Sense.\n"))
        assert len(entries) == 1
        assert parser.stats.orphan_lines == 2

    def test_blank_lines_counted_as_read(self, parser):
        list(parser.parse_text("\n\n*alpha*, Sense.\n\n"))
        assert parser.stats.lines_read == 4
        assert parser.stats.noise_lines == 0

    def test_empty_input(self, parser):
        assert list(parser.parse_text("")) == []
        assert parser.stats.entries_emitted == 0


# ── Streaming ────────────────────────────────────────────────────────────


class TestStreaming:
    def test_parse_is_lazy(self, parser):
        consumed: list[str] = []

        def lines():
            for i in range(1000):
                line = f"*word{i}*, Sense {i}."
                consumed.append(line)
                yield line

        first = list(islice(parser.parse(lines()), 2))

        assert [e.headword for e in first] == ["word0", "word1"]
        assert len(consumed) < 10

    def test_stats_reset_between_runs(self, parser):
        list(parser.parse_text("*alpha*,\n"))
        list(parser.parse_text("*beta*, Sense.\n"))
        assert parser.stats.entries_rejected == 0
        assert parser.stats.entries_emitted == 1

    def test_rejected_samples_capped(self, parser):
        list(parser.parse_text("\n".join(f"*w{i}*," for i in range(8))))
        data = parser.stats.to_dict()
        assert data["entries_rejected"] == 8
        assert len(data["rejected_samples"]) == 5


# ── Formats and extractors ───────────────────────────────────────────────


class TestFormats:
    def test_colon_format(self):
        parser = BlockParser(colon_headword)
        entries = list(parser.parse_text("CASA: S. f. - Habitação.\nPÃO DE LÓ:\nBolo leve.\n"))
        assert [e.headword for e in entries] == ["casa", "pão de ló"]
        assert entries[1].key == "pao de lo"

    def test_failing_opener_treated_as_body(self):
        def opener(line):
            if line.startswith("!"):
                raise RuntimeError("bad line")
            return asterisk_headword(line)

        parser = BlockParser(opener)
        (entry,) = parser.parse_text("*alpha*,\n!weird line\n")
        assert entry.fragments == ("!weird line",)

    def test_extractors_fill_fields(self):
        parser = BlockParser(asterisk_headword, extractors=DEFAULT_EXTRACTORS)
        (entry,) = parser.parse_text("*casa*, S. f. - Habitação. (Do lat. casa) V. lar\n")
        assert entry.fields["category"] == "S. f."
        assert entry.fields["gender"] == "f"
        assert entry.fields["origin_language"] == "latin"
        assert entry.fields["cross_references"] == ["lar"]

    def test_failing_extractor_counted(self):
        def broken(body):
            raise ValueError("regex exploded")

        parser = BlockParser(asterisk_headword, extractors=[broken, lambda body: {"length": len(body)}])
        (entry,) = parser.parse_text("*alpha*, Sense.\n")
        assert entry.fields == {"length": 6}
        assert parser.stats.extractor_failures == 1


class TestParsedEntry:
    def test_unit_round_trip(self):
        entry = ParsedEntry("casa", "casa", ("S. f. - Habitação.",), 3, {"gender": "f"})
        assert ParsedEntry.from_unit(entry.to_unit()) == entry
