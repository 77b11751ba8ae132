"""Concurrency Guard: single-flight lock per job.

WHY
───
Two triggers may call ``process_chunk`` for the same job at the same
time (a worker draining the queue and an operator resuming a paused
job). Only one of them may touch the job; the other backs off. The
lock row carries an expiry so that a crashed worker cannot hold a job
forever.

ARCHITECTURE
────────────
::

    ConcurrencyGuard(conn)
      ├── .acquire(key, owner)        ─ try-lock with expiry
      ├── .release(key, owner)        ─ explicit unlock
      ├── .is_locked(key)             ─ check without acquiring
      ├── .get_lock_holder(key)       ─ owner of a live lock
      ├── .cleanup_expired()          ─ reap stale locks
      └── .list_active_locks()        ─ all live locks

    Lock key convention: ``job:<job_id>``

Example::

    guard = ConcurrencyGuard(conn)
    if guard.acquire(job_lock_key(job_id), owner="worker-1"):
        try:
            process()
        finally:
            guard.release(job_lock_key(job_id), owner="worker-1")
"""

import sqlite3
from datetime import UTC, datetime, timedelta


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def job_lock_key(job_id: str) -> str:
    return f"job:{job_id}"


class ConcurrencyGuard:
    """Database-level advisory locks with automatic expiry."""

    def __init__(self, conn):
        self._conn = conn

    def acquire(self, lock_key: str, owner: str, timeout_seconds: int = 600) -> bool:
        """Try to acquire a lock.

        Re-acquiring a lock already held by ``owner`` extends it.

        Returns:
            True if acquired, False if held by another owner
        """
        now = utcnow()
        expires_at = now + timedelta(seconds=timeout_seconds)
        cursor = self._conn.cursor()

        cursor.execute(
            "DELETE FROM lex_locks WHERE lock_key = ? AND expires_at < ?",
            (lock_key, now.isoformat()),
        )

        try:
            cursor.execute(
                """
                INSERT INTO lex_locks (lock_key, owner, acquired_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (lock_key, owner, now.isoformat(), expires_at.isoformat()),
            )
            self._conn.commit()
            return True
        except sqlite3.IntegrityError:
            self._conn.rollback()

        cursor.execute(
            "UPDATE lex_locks SET expires_at = ? WHERE lock_key = ? AND owner = ?",
            (expires_at.isoformat(), lock_key, owner),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def release(self, lock_key: str, owner: str | None = None) -> bool:
        """Release a lock; with ``owner`` only if that owner holds it."""
        cursor = self._conn.cursor()
        if owner:
            cursor.execute(
                "DELETE FROM lex_locks WHERE lock_key = ? AND owner = ?",
                (lock_key, owner),
            )
        else:
            cursor.execute("DELETE FROM lex_locks WHERE lock_key = ?", (lock_key,))
        self._conn.commit()
        return cursor.rowcount > 0

    def get_lock_holder(self, lock_key: str) -> str | None:
        """Owner of a live lock, or None."""
        row = self._conn.execute(
            "SELECT owner, expires_at FROM lex_locks WHERE lock_key = ?",
            (lock_key,),
        ).fetchone()
        if row is None:
            return None
        if datetime.fromisoformat(row[1]) < utcnow():
            return None
        return row[0]

    def is_locked(self, lock_key: str) -> bool:
        return self.get_lock_holder(lock_key) is not None

    def cleanup_expired(self) -> int:
        """Delete expired locks; returns how many were removed."""
        cursor = self._conn.cursor()
        cursor.execute("DELETE FROM lex_locks WHERE expires_at < ?", (utcnow().isoformat(),))
        self._conn.commit()
        return cursor.rowcount

    def count_expired(self) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM lex_locks WHERE expires_at < ?",
            (utcnow().isoformat(),),
        ).fetchone()
        return row[0]

    def list_active_locks(self) -> list[dict]:
        rows = self._conn.execute(
            """
            SELECT lock_key, owner, acquired_at, expires_at
            FROM lex_locks
            WHERE expires_at > ?
            ORDER BY acquired_at DESC
            """,
            (utcnow().isoformat(),),
        ).fetchall()
        return [
            {
                "lock_key": row[0],
                "owner": row[1],
                "acquired_at": row[2],
                "expires_at": row[3],
            }
            for row in rows
        ]
