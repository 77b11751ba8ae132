"""Tests for entry openers and field extractors."""

from __future__ import annotations

import pytest

from lexspine.parsing.formats import (
    HeadwordMatch,
    asterisk_headword,
    colon_headword,
    extract_category,
    extract_cross_references,
    extract_etymology,
    extract_usage_markers,
    extraction_confidence,
    get_opener,
    make_regex_opener,
)


class TestOpeners:
    def test_asterisk(self):
        assert asterisk_headword("*casa*, S. f. - Habitação.") == HeadwordMatch("casa", "S. f. - Habitação.")
        assert asterisk_headword("*casa*,") == HeadwordMatch("casa", "")

    @pytest.mark.parametrize("line", ["casa, S. f.", "**, empty", "Body text with *emphasis*."])
    def test_asterisk_ignores_body_lines(self, line):
        assert asterisk_headword(line) is None

    def test_colon_lowercases_headword(self):
        assert colon_headword("CASA: S. f. - Habitação.") == HeadwordMatch("casa", "S. f. - Habitação.")

    def test_colon_needs_upper_case(self):
        assert colon_headword("Nota: ver abaixo.") is None

    def test_regex_opener_named_groups(self):
        opener = make_regex_opener(r"^@(?P<headword>[^@]+)@\s*(?P<remainder>.*)$")
        assert opener("@saudade@ S. f. - Nostalgia.") == HeadwordMatch("saudade", "S. f. - Nostalgia.")
        assert opener("plain line") is None

    def test_regex_opener_positional_groups(self):
        opener = make_regex_opener(r"^(\w+)\s+=\s+(.*)$")
        assert opener("casa = habitação") == HeadwordMatch("casa", "habitação")

    def test_regex_opener_headword_only(self):
        opener = make_regex_opener(r"^\[(\w+)\]$")
        assert opener("[casa]") == HeadwordMatch("casa", "")

    def test_get_opener(self):
        assert get_opener("asterisk") is asterisk_headword
        with pytest.raises(ValueError, match="Unknown dictionary format"):
            get_opener("xml")


class TestExtractors:
    def test_category_and_gender(self):
        assert extract_category("S. f. - Habitação.") == {
            "category": "S. f.",
            "definition": "Habitação.",
            "gender": "f",
        }

    def test_category_without_gender(self):
        fields = extract_category("Adv. - De modo triste.")
        assert fields["category"] == "Adv."
        assert "gender" not in fields

    def test_no_category(self):
        assert extract_category("Habitação de família.") == {}

    def test_cross_references_deduplicated(self):
        fields = extract_cross_references("V. lar. Cf. moradia. Syn.: lar, morada.")
        assert fields == {"cross_references": ["lar", "moradia", "morada"]}

    def test_usage_markers(self):
        assert extract_usage_markers("Fig. e Pop. Coisa velha. Fig.") == {"usage_markers": ["figurative", "popular"]}
        assert extract_usage_markers("Nothing marked.") == {}

    def test_etymology(self):
        assert extract_etymology("Habitação. (Do lat. casa)") == {
            "etymology": "Do lat. casa",
            "origin_language": "latin",
        }
        assert extract_etymology("No origin given.") == {}

    def test_confidence(self):
        assert extraction_confidence({"category": "S. f."}) == 0.95
        assert extraction_confidence({}) == 0.85
