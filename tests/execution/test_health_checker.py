"""Tests for the health checker."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest

from lexspine.execution.circuit_breaker import get_circuit_breaker
from lexspine.execution.concurrency import ConcurrencyGuard
from lexspine.execution.health import HealthChecker, HealthStatus, HealthThresholds
from lexspine.execution.job_store import utcnow
from lexspine.execution.models import Job, JobKind, JobStatus


def running_job(store) -> Job:
    job = store.create_job(Job.create(JobKind.DICTIONARY_IMPORT))
    return store.transition(job.id, JobStatus.QUEUED, JobStatus.RUNNING)


def checks_by_name(report) -> dict:
    return {check.name: check for check in report.checks}


class TestHealthChecker:
    def test_fresh_database_is_healthy(self, conn):
        report = HealthChecker(conn).run()
        assert report.status == HealthStatus.HEALTHY
        assert report.is_healthy
        assert set(checks_by_name(report)) == {"database", "circuits", "classifier", "stale_jobs", "locks"}

    def test_report_dict(self, conn):
        data = HealthChecker(conn).run().to_dict()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["message"] == "connected"
        assert "checked_at" in data

    def test_stale_job_degrades(self, conn, store):
        running_job(store)
        later = utcnow() + timedelta(minutes=31)
        with patch("lexspine.execution.health.utcnow", return_value=later):
            report = HealthChecker(conn).run()
        stale = checks_by_name(report)["stale_jobs"]
        assert stale.status == HealthStatus.DEGRADED
        assert stale.details["count"] == 1
        assert report.status == HealthStatus.DEGRADED

    def test_recent_running_job_is_not_stale(self, conn, store):
        running_job(store)
        assert checks_by_name(HealthChecker(conn).run())["stale_jobs"].status == HealthStatus.HEALTHY

    def test_many_stale_jobs_unhealthy(self, conn, store):
        for _ in range(3):
            running_job(store)
        later = utcnow() + timedelta(minutes=31)
        with patch("lexspine.execution.health.utcnow", return_value=later):
            report = HealthChecker(conn, HealthThresholds(stale_jobs_unhealthy=3)).run()
        assert report.status == HealthStatus.UNHEALTHY
        assert not report.is_healthy

    def test_open_circuit_degrades(self, conn):
        get_circuit_breaker("classifier").force_open()
        circuits = checks_by_name(HealthChecker(conn).run())["circuits"]
        assert circuits.status == HealthStatus.DEGRADED
        assert "classifier" in circuits.message
        assert circuits.details["classifier"]["state"] == "open"

    def test_expired_lock_degrades(self, conn):
        ConcurrencyGuard(conn).acquire("job:dead", "crashed", timeout_seconds=5)
        later = utcnow() + timedelta(seconds=10)
        with patch("lexspine.execution.concurrency.utcnow", return_value=later):
            locks = checks_by_name(HealthChecker(conn).run())["locks"]
        assert locks.status == HealthStatus.DEGRADED
        assert locks.details["expired"] == 1

    def test_classifier_reported(self, conn):
        thresholds = HealthThresholds(classifier_configured=True)
        assert checks_by_name(HealthChecker(conn, thresholds).run())["classifier"].message == "configured"

    def test_closed_connection_unhealthy(self, conn):
        conn.close()
        report = HealthChecker(conn).run()
        assert report.status == HealthStatus.UNHEALTHY
        assert "stale_jobs" not in checks_by_name(report)

    def test_thresholds_from_settings(self, settings):
        thresholds = HealthThresholds.from_settings(settings)
        assert thresholds.stale_job_minutes == 30
        assert thresholds.classifier_configured is False
