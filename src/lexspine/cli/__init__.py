"""
lexicon-spine command-line interface.

Entry point::

    lexspine --help
"""

from lexspine.cli.app import app

__all__ = ["app"]
