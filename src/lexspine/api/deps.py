"""
FastAPI dependency injection.

The engine, its connection and the trigger rate limiter live on
``app.state``; routers reach them through the aliases below::

    @router.get("/jobs/{job_id}")
    def get_job(job_id: str, engine: Engine):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from lexspine.core.settings import LexSpineSettings
from lexspine.execution.engine import ChunkedJobEngine
from lexspine.execution.rate_limit import KeyedRateLimiter


def get_settings(request: Request) -> LexSpineSettings:
    return request.app.state.settings


def get_engine(request: Request) -> ChunkedJobEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="job engine is not running")
    return engine


def get_trigger_limiter(request: Request) -> KeyedRateLimiter:
    return request.app.state.trigger_limiter


def get_caller(x_caller_id: Annotated[str | None, Header()] = None) -> str | None:
    """Self-declared caller name, recorded as ``cancelled_by``; never a rate-limit key."""
    return x_caller_id.strip() if x_caller_id and x_caller_id.strip() else None


def get_principal(request: Request) -> str:
    """Identity that per-caller rate limits are keyed on.

    The authenticated API key when auth is enabled, otherwise the client
    host. Unlike ``X-Caller-Id`` neither can be changed per request.
    """
    principal = getattr(request.state, "principal", None)
    if principal:
        return principal
    return f"host:{request.client.host if request.client else 'unknown'}"


Settings = Annotated[LexSpineSettings, Depends(get_settings)]
Engine = Annotated[ChunkedJobEngine, Depends(get_engine)]
TriggerLimiter = Annotated[KeyedRateLimiter, Depends(get_trigger_limiter)]
Caller = Annotated[str | None, Depends(get_caller)]
Principal = Annotated[str, Depends(get_principal)]
