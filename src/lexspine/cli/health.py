"""
CLI ``lexspine health``: run the health checks against the database.
"""

from __future__ import annotations

import typer

from lexspine.cli.utils import console, load_settings, open_connection, output, print_table
from lexspine.execution.health import HealthChecker, HealthStatus, HealthThresholds

_STYLE = {
    HealthStatus.HEALTHY: "bold green",
    HealthStatus.DEGRADED: "bold yellow",
    HealthStatus.UNHEALTHY: "bold red",
}


def health(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Check database, circuit breakers, stale jobs, locks and classifier.

    Exits with code 1 when the report is unhealthy.
    """
    settings = load_settings(database)
    conn = open_connection(settings)
    try:
        report = HealthChecker(conn, HealthThresholds.from_settings(settings)).run()
    finally:
        conn.close()

    if json_out:
        output(report.to_dict(), as_json=True)
    else:
        status = report.status
        console.print(f"[{_STYLE[status]}]{status.value}[/{_STYLE[status]}]")
        print_table(
            [{"check": c.name, "status": c.status.value, "message": c.message} for c in report.checks],
            title="Health",
        )
    if not report.is_healthy:
        raise typer.Exit(code=1)
