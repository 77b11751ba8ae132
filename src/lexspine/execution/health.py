"""Health checks for the job engine and its dependencies.

Each check returns a :class:`CheckResult`; the report's overall status
is the worst of them::

    checker = HealthChecker(conn, HealthThresholds.from_settings(settings))
    report = checker.run()
    report.status          # "healthy" | "degraded" | "unhealthy"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

from lexspine.core.errors import describe_error
from lexspine.core.logging import get_logger

from .circuit_breaker import CircuitState, get_all_circuit_breakers
from .concurrency import ConcurrencyGuard
from .job_store import JobStore, utcnow
from .models import JobStatus

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass(frozen=True)
class HealthThresholds:
    stale_job_minutes: int = 30
    stale_jobs_unhealthy: int = 10
    expired_locks_degraded: int = 1
    classifier_configured: bool = False

    @classmethod
    def from_settings(cls, settings) -> HealthThresholds:
        return cls(
            stale_job_minutes=settings.stale_job_minutes,
            classifier_configured=settings.classifier_configured,
        )


@dataclass
class CheckResult:
    name: str
    status: HealthStatus
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class HealthReport:
    checks: list[CheckResult]
    checked_at: str = field(default_factory=lambda: utcnow().isoformat())

    @property
    def status(self) -> HealthStatus:
        worst = HealthStatus.HEALTHY
        for check in self.checks:
            if _SEVERITY[check.status] > _SEVERITY[worst]:
                worst = check.status
        return worst

    @property
    def is_healthy(self) -> bool:
        return self.status != HealthStatus.UNHEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "checked_at": self.checked_at,
            "checks": {check.name: check.to_dict() for check in self.checks},
        }


class HealthChecker:
    """Runs the database, circuits, stale_jobs, locks and classifier checks."""

    def __init__(self, conn, thresholds: HealthThresholds | None = None):
        self.conn = conn
        self.thresholds = thresholds or HealthThresholds()

    def run(self) -> HealthReport:
        database = self.check_database()
        checks = [database, self.check_circuits(), self.check_classifier()]
        # the remaining checks query tables
        if database.status == HealthStatus.HEALTHY:
            checks.extend([self.check_stale_jobs(), self.check_locks()])
        report = HealthReport(checks)
        if report.status != HealthStatus.HEALTHY:
            logger.warning(
                "health_check_failed",
                status=report.status.value,
                failing=[c.name for c in checks if c.status != HealthStatus.HEALTHY],
            )
        return report

    def check_database(self) -> CheckResult:
        try:
            self.conn.execute("SELECT 1").fetchone()
        except Exception as e:
            return CheckResult("database", HealthStatus.UNHEALTHY, describe_error(e))
        return CheckResult("database", HealthStatus.HEALTHY, "connected")

    def check_circuits(self) -> CheckResult:
        snapshots = {name: breaker.snapshot() for name, breaker in get_all_circuit_breakers().items()}
        open_circuits = sorted(
            name for name, snap in snapshots.items() if snap["state"] != CircuitState.CLOSED.value
        )
        if open_circuits:
            return CheckResult(
                "circuits",
                HealthStatus.DEGRADED,
                f"not closed: {', '.join(open_circuits)}",
                snapshots,
            )
        return CheckResult("circuits", HealthStatus.HEALTHY, f"{len(snapshots)} closed", snapshots)

    def check_stale_jobs(self) -> CheckResult:
        minutes = self.thresholds.stale_job_minutes
        cutoff = utcnow() - timedelta(minutes=minutes)
        stale = JobStore(self.conn).list_jobs(status=JobStatus.RUNNING, updated_before=cutoff, limit=1000)
        details = {"count": len(stale), "older_than_minutes": minutes, "job_ids": [j.id for j in stale[:20]]}
        if not stale:
            return CheckResult("stale_jobs", HealthStatus.HEALTHY, "none", details)
        status = (
            HealthStatus.UNHEALTHY
            if len(stale) >= self.thresholds.stale_jobs_unhealthy
            else HealthStatus.DEGRADED
        )
        return CheckResult("stale_jobs", status, f"{len(stale)} running job(s) idle > {minutes}m", details)

    def check_locks(self) -> CheckResult:
        guard = ConcurrencyGuard(self.conn)
        expired = guard.count_expired()
        details = {"active": len(guard.list_active_locks()), "expired": expired}
        if expired >= self.thresholds.expired_locks_degraded:
            return CheckResult("locks", HealthStatus.DEGRADED, f"{expired} expired lock(s)", details)
        return CheckResult("locks", HealthStatus.HEALTHY, "ok", details)

    def check_classifier(self) -> CheckResult:
        # an unconfigured classifier only disables the last cascade strategy
        if self.thresholds.classifier_configured:
            return CheckResult("classifier", HealthStatus.HEALTHY, "configured")
        return CheckResult("classifier", HealthStatus.HEALTHY, "not configured", {"configured": False})
