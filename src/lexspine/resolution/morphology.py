"""Productive affix rules for Portuguese.

Suffix rules either assign a domain code directly (``-ção`` → AP) or
inherit the code of the base word (diminutives, augmentatives). Prefix
rules always inherit from the base word. Rules are tried in table order;
the first applicable rule wins.

Rules match the case-folded surface form, accents included, so ``-ção``
and ``-cao`` are not confused.
"""

from __future__ import annotations

from dataclasses import dataclass

INHERIT = "INHERIT"


@dataclass(frozen=True)
class AffixRule:
    affix: str
    code: str
    confidence: float
    description: str
    requires_pos: str | None = None

    @property
    def inherits(self) -> bool:
        return self.code == INHERIT


SUFFIX_RULES: tuple[AffixRule, ...] = (
    # Activities and practices
    AffixRule("ção", "AP", 0.88, "action/process", "NOUN"),
    AffixRule("mento", "AP", 0.85, "action/result", "NOUN"),
    AffixRule("agem", "AP", 0.82, "action/collection", "NOUN"),
    # Human agents
    AffixRule("dor", "SH", 0.90, "professional agent", "NOUN"),
    AffixRule("eiro", "SH", 0.85, "occupation", "NOUN"),
    AffixRule("ista", "SH", 0.87, "professional/adherent", "NOUN"),
    AffixRule("ante", "SH", 0.80, "agent", "NOUN"),
    # Qualities
    AffixRule("oso", "SE", 0.83, "abundant quality", "ADJ"),
    AffixRule("ável", "AB", 0.80, "capability", "ADJ"),
    AffixRule("ível", "AB", 0.80, "capability", "ADJ"),
    AffixRule("ico", "CC", 0.78, "relating to knowledge", "ADJ"),
    AffixRule("al", "AB", 0.75, "relating to", "ADJ"),
    # Abstract nouns
    AffixRule("idade", "AB", 0.85, "abstract quality", "NOUN"),
    AffixRule("eza", "AB", 0.83, "abstract quality", "NOUN"),
    AffixRule("ismo", "CC", 0.88, "doctrine/movement", "NOUN"),
    AffixRule("ura", "AB", 0.78, "result/quality", "NOUN"),
    # Adverbs of manner
    AffixRule("mente", "MG", 0.95, "adverb of manner", "ADV"),
    # Diminutives and augmentatives; longer affixes first
    AffixRule("zinho", INHERIT, 0.75, "diminutive"),
    AffixRule("zinha", INHERIT, 0.75, "diminutive"),
    AffixRule("inho", INHERIT, 0.70, "diminutive"),
    AffixRule("inha", INHERIT, 0.70, "diminutive"),
    AffixRule("ão", INHERIT, 0.65, "augmentative"),
    AffixRule("ona", INHERIT, 0.65, "augmentative"),
)

PREFIX_RULES: tuple[AffixRule, ...] = (
    AffixRule("contra", INHERIT, 0.75, "opposition"),
    AffixRule("anti", INHERIT, 0.75, "opposition"),
    AffixRule("des", INHERIT, 0.75, "negation/reversal"),
    AffixRule("pre", INHERIT, 0.68, "anteriority"),
    AffixRule("in", INHERIT, 0.72, "negation"),
    AffixRule("re", INHERIT, 0.70, "repetition"),
)

MIN_SUFFIX_BASE = 3
MIN_PREFIX_BASE = 4


def suffix_candidates(word: str, pos: str | None = None) -> list[tuple[AffixRule, str]]:
    """Applicable suffix rules with the stripped base, in rule order.

    A POS-restricted rule is skipped only when the occurrence has a
    different POS; unknown POS lets the rule through.
    """
    word = word.casefold()
    matches = []
    for rule in SUFFIX_RULES:
        if not word.endswith(rule.affix):
            continue
        if rule.requires_pos and pos and pos.upper() != rule.requires_pos:
            continue
        base = word[: -len(rule.affix)]
        if rule.inherits and len(base) < MIN_SUFFIX_BASE:
            continue
        if not rule.inherits and not base:
            continue
        matches.append((rule, base))
    return matches


def prefix_candidates(word: str) -> list[tuple[AffixRule, str]]:
    word = word.casefold()
    return [
        (rule, word[len(rule.affix):])
        for rule in PREFIX_RULES
        if word.startswith(rule.affix) and len(word) - len(rule.affix) >= MIN_PREFIX_BASE
    ]


def base_forms(base: str) -> list[str]:
    """Lexicon spellings to try for a stripped diminutive/augmentative base."""
    return list(dict.fromkeys([base, base + "o", base + "a"]))
