"""
lexicon-spine: chunked, resumable dictionary import and corpus annotation.

Subpackages:
    core        settings, logging, errors, SQLite schema and text helpers
    execution   job store, chunk engine, schedulers, resilience kit, health
    parsing     block parser for scanned dictionary text
    resolution  six-strategy semantic resolution cascade
    handlers    job kinds (dictionary-import, corpus-annotate)
    api         FastAPI application
    cli         Typer command-line interface
"""

__version__ = "0.1.0"
