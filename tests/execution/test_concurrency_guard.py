"""Tests for the per-job advisory lock."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest

from lexspine.execution.concurrency import ConcurrencyGuard, job_lock_key, utcnow


@pytest.fixture()
def guard(conn) -> ConcurrencyGuard:
    return ConcurrencyGuard(conn)


def later(seconds: int):
    return patch("lexspine.execution.concurrency.utcnow", return_value=utcnow() + timedelta(seconds=seconds))


class TestConcurrencyGuard:
    def test_key_convention(self):
        assert job_lock_key("abc") == "job:abc"

    def test_single_owner(self, guard):
        assert guard.acquire("job:1", "worker-a")
        assert not guard.acquire("job:1", "worker-b")
        assert guard.get_lock_holder("job:1") == "worker-a"
        assert guard.is_locked("job:1")

    def test_same_owner_extends(self, guard):
        assert guard.acquire("job:1", "worker-a", timeout_seconds=10)
        assert guard.acquire("job:1", "worker-a", timeout_seconds=600)
        with later(60):
            assert guard.get_lock_holder("job:1") == "worker-a"

    def test_release_only_by_owner(self, guard):
        guard.acquire("job:1", "worker-a")
        assert not guard.release("job:1", "worker-b")
        assert guard.release("job:1", "worker-a")
        assert not guard.is_locked("job:1")

    def test_expired_lock_can_be_taken(self, guard):
        guard.acquire("job:1", "crashed", timeout_seconds=5)
        with later(10):
            assert not guard.is_locked("job:1")
            assert guard.acquire("job:1", "worker-b")
            assert guard.get_lock_holder("job:1") == "worker-b"

    def test_expired_locks_counted_and_cleaned(self, guard):
        guard.acquire("job:1", "crashed", timeout_seconds=5)
        guard.acquire("job:2", "alive", timeout_seconds=600)
        with later(10):
            assert guard.count_expired() == 1
            assert [lock["lock_key"] for lock in guard.list_active_locks()] == ["job:2"]
            assert guard.cleanup_expired() == 1
            assert guard.count_expired() == 0
