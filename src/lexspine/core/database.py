"""SQLite connection helpers.

lexicon-spine talks to SQLite through the standard :mod:`sqlite3` module
with ``?`` parameters. An engine owns one shared connection for control
and read traffic (API requests, cancellation, health), serialized by the
engine's lock. On a file database each thread that processes chunks
opens its own connection through :func:`connect`, so a slow chunk never
blocks those reads; WAL mode lets them run beside the chunk's write
transaction. An in-memory database cannot be shared between
connections, so there chunks run on the shared connection under the
lock. :func:`transaction` groups the writes of one chunk with its
checkpoint so they commit or roll back together.

Usage::

    from lexspine.core.database import connect, transaction

    conn = connect("data/lexspine.db")
    with transaction(conn):
        conn.execute("UPDATE lex_jobs SET ...", (...))
"""

from __future__ import annotations

import functools
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from lexspine.core.schema import create_core_tables


def connect(path: str = ":memory:", *, init_schema: bool = True) -> sqlite3.Connection:
    """Open a connection with row access by name and the schema in place."""
    conn = sqlite3.connect(path, check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    if init_schema:
        create_core_tables(conn)
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Commit on success, roll back on any exception and re-raise."""
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


def is_busy_error(error: BaseException) -> bool:
    """True for lock contention (``database is locked``, ``database is busy``)."""
    if not isinstance(error, sqlite3.OperationalError):
        return False
    message = str(error).lower()
    return "locked" in message or "busy" in message


def chunk_connector(settings) -> Callable[[], sqlite3.Connection] | None:
    """Factory for per-thread chunk connections, or None for ``:memory:``."""
    if settings.is_memory_db:
        return None
    return functools.partial(connect, settings.database_path)
