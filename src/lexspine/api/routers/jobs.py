"""
Jobs router: start, continue, cancel and inspect chunked jobs.

Endpoints:
    POST   /jobs                     Start a job; 202 {jobId, totalUnits}
    POST   /jobs/{job_id}/continue   Run the chunk at fromIndex; 202 {jobId, outcome}
    POST   /jobs/{job_id}/cancel     Request cancellation; 200 {jobId, status}
    GET    /jobs                     List jobs (filters: kind, status)
    GET    /jobs/{job_id}            Job detail
    GET    /jobs/{job_id}/events     Job event log
    GET    /jobs/kill-switch         Emergency stop state
    POST   /jobs/kill-switch         Cancel every active job, refuse new ones
    DELETE /jobs/kill-switch         Lift the emergency stop
    POST   /jobs/reprocess-unclassified  Re-run unresolved occurrences

Per-caller rate limits key on the authenticated identity (see
:func:`~lexspine.api.deps.get_principal`); ``X-Caller-Id`` is only
recorded as ``cancelled_by``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from lexspine.api.deps import Caller, Engine, Principal, TriggerLimiter
from lexspine.api.schemas.jobs import (
    CancelJobBody,
    ChunkReportSchema,
    ContinueJobBody,
    JobAcceptedSchema,
    KillSwitchBody,
    ReprocessBody,
    StartJobBody,
)
from lexspine.core.errors import ValidationError
from lexspine.execution.models import JobKind, JobStatus

router = APIRouter(prefix="/jobs")


def _caller_key(action: str, principal: str) -> str:
    return f"{action}:{principal}"


def _parse(enum_type, value: str | None, field: str):
    if value is None:
        return None
    try:
        return enum_type(value)
    except ValueError as e:
        raise ValidationError(f"unknown {field} {value!r}", field=field, value=value) from e


@router.post("", response_model=JobAcceptedSchema, status_code=202)
def start_job(body: StartJobBody, engine: Engine, limiter: TriggerLimiter, principal: Principal):
    """Validate and materialize a job, then hand chunk 0 to the workers.

    Raises:
        400: Unknown kind or invalid source payload (no job is created)
        429: Caller exceeded the trigger rate
    """
    limiter.check(_caller_key("start-job", principal))
    ticket = engine.start_job(body.kind, body.source)
    return JobAcceptedSchema(job_id=ticket.job_id, total_units=ticket.total_units)


@router.get("/kill-switch")
def kill_switch_status(engine: Engine) -> dict[str, Any]:
    state = engine.kill_status()
    return state.to_dict() if state else {"active": False}


@router.post("/kill-switch")
def activate_kill_switch(body: KillSwitchBody, engine: Engine, caller: Caller) -> dict[str, Any]:
    """Emergency stop: cancel every active job and refuse new ones until cleared."""
    report = engine.kill_all(body.reason, caller, ttl_minutes=body.ttl_minutes)
    return report.to_dict()


@router.delete("/kill-switch")
def clear_kill_switch(engine: Engine, caller: Caller) -> dict[str, Any]:
    return {"active": False, "cleared": engine.clear_kill(caller)}


@router.post("/reprocess-unclassified")
def reprocess_unclassified(
    body: ReprocessBody, engine: Engine, limiter: TriggerLimiter, principal: Principal
) -> JSONResponse:
    """Re-run the cascade over stored occurrences that are still unresolved.

    202 with the new job when one was started; 200 for a dry run or when
    nothing is left to reprocess.
    """
    limiter.check(_caller_key("reprocess", principal))
    plan = engine.reprocess_unclassified(
        body.corpus, below_confidence=body.below_confidence, dry_run=body.dry_run
    )
    return JSONResponse(status_code=202 if plan.job_id else 200, content=plan.to_dict())


@router.post("/{job_id}/continue", response_model=ChunkReportSchema, status_code=202)
def continue_job(
    job_id: str, body: ContinueJobBody, engine: Engine, limiter: TriggerLimiter, principal: Principal
):
    """Process the chunk starting at ``fromIndex``.

    A stale ``fromIndex`` or a finished job is acknowledged with outcome
    ``noop``; an index ahead of the cursor is a 409.
    """
    limiter.check(_caller_key("continue-job", principal))
    report = engine.process_chunk(job_id, body.from_index)
    return ChunkReportSchema(**report.to_dict())


@router.post("/{job_id}/cancel")
def cancel_job(
    job_id: str, body: CancelJobBody, engine: Engine, caller: Caller, principal: Principal
) -> dict[str, Any]:
    job = engine.cancel_job(job_id, body.reason, caller, rate_key=principal)
    return {"jobId": job.id, "status": job.status.value, "cancelRequested": job.cancel_requested}


@router.get("")
def list_jobs(
    engine: Engine,
    kind: str | None = Query(None, description="Filter by job kind"),
    status: str | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=1000),
) -> dict[str, Any]:
    jobs = engine.list_jobs(kind=_parse(JobKind, kind, "kind"), status=_parse(JobStatus, status, "status"), limit=limit)
    return {"items": [job.to_dict() for job in jobs], "count": len(jobs)}


@router.get("/{job_id}")
def get_job(job_id: str, engine: Engine) -> dict[str, Any]:
    return engine.get_job(job_id).to_dict()


@router.get("/{job_id}/events")
def get_job_events(job_id: str, engine: Engine) -> dict[str, Any]:
    events = engine.get_events(job_id)
    return {"jobId": job_id, "items": [event.to_dict() for event in events]}
