"""Emergency stop for every job.

While the kill switch is active the engine refuses new jobs, and every
chunk invocation cancels its job instead of processing it. The flag is
a row in ``lex_flags`` with an expiry, so a forgotten switch releases
itself (30 minutes by default).

Example:
    >>> switch = KillSwitch(conn)
    >>> switch.activate("classifier bill exploding", set_by="ops", ttl_seconds=1800)
    >>> switch.is_active()
    True
    >>> switch.clear()
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

KILL_FLAG = "emergency:kill"


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class KillState:
    reason: str
    set_by: str | None
    set_at: datetime
    expires_at: datetime | None

    def remaining_seconds(self, now: datetime | None = None) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, (self.expires_at - (now or utcnow())).total_seconds())

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": True,
            "reason": self.reason,
            "setBy": self.set_by,
            "setAt": self.set_at.isoformat(),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }


class KillSwitch:
    """The ``emergency:kill`` flag in ``lex_flags``."""

    def __init__(self, conn):
        self._conn = conn

    def activate(
        self,
        reason: str,
        set_by: str | None = None,
        ttl_seconds: float | None = None,
        *,
        commit: bool = True,
    ) -> KillState:
        """Set (or re-arm) the flag; ``ttl_seconds=None`` never expires."""
        now = utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self._conn.execute(
            """
            INSERT OR REPLACE INTO lex_flags (flag_key, reason, set_by, set_at, expires_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (KILL_FLAG, reason, set_by, now.isoformat(), expires_at.isoformat() if expires_at else None),
        )
        if commit:
            self._conn.commit()
        return KillState(reason, set_by, now, expires_at)

    def clear(self) -> bool:
        """Remove the flag; True if it was set."""
        cursor = self._conn.execute("DELETE FROM lex_flags WHERE flag_key = ?", (KILL_FLAG,))
        self._conn.commit()
        return cursor.rowcount > 0

    def state(self) -> KillState | None:
        """The live flag, or None when unset or expired."""
        row = self._conn.execute(
            "SELECT reason, set_by, set_at, expires_at FROM lex_flags WHERE flag_key = ?",
            (KILL_FLAG,),
        ).fetchone()
        if row is None:
            return None
        expires_at = datetime.fromisoformat(row[3]) if row[3] else None
        if expires_at is not None and expires_at <= utcnow():
            return None
        return KillState(row[0], row[1], datetime.fromisoformat(row[2]), expires_at)

    def is_active(self) -> bool:
        return self.state() is not None
