"""Health endpoint: 200 while healthy or degraded, 503 when unhealthy."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from lexspine.api.deps import Engine, Settings
from lexspine.execution.health import HealthChecker, HealthThresholds

router = APIRouter()


@router.get("/health")
def health(engine: Engine, settings: Settings) -> JSONResponse:
    with engine.db_lock:
        report = HealthChecker(engine.conn, HealthThresholds.from_settings(settings)).run()
    return JSONResponse(status_code=200 if report.is_healthy else 503, content=report.to_dict())
