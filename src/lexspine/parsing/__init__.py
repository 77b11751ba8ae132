"""Dictionary source parsing: the block parser and format-specific rules."""

from lexspine.parsing.block_parser import BlockParser, ParsedEntry, ParseStats
from lexspine.parsing.formats import (
    DEFAULT_EXTRACTORS,
    HeadwordMatch,
    asterisk_headword,
    colon_headword,
    get_opener,
    make_regex_opener,
)

__all__ = [
    "BlockParser",
    "ParsedEntry",
    "ParseStats",
    "DEFAULT_EXTRACTORS",
    "HeadwordMatch",
    "asterisk_headword",
    "colon_headword",
    "get_opener",
    "make_regex_opener",
]
