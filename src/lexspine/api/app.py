"""
FastAPI application factory.

``create_app()`` wires middleware, routers, exception handlers and the
lifespan into one ``FastAPI`` instance. When no engine is passed in, the
lifespan opens the configured SQLite database, builds an engine on a
:class:`QueueScheduler`, starts ``worker_threads`` chunk workers, and
reschedules paused and stalled jobs; shutdown stops the workers and
closes the connection.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from lexspine.api.middleware.auth import AuthMiddleware
from lexspine.api.middleware.errors import (
    lexspine_exception_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from lexspine.api.middleware.request_id import RequestIDMiddleware
from lexspine.api.routers import health, jobs
from lexspine.core.database import chunk_connector, connect
from lexspine.core.errors import LexSpineError
from lexspine.core.logging import configure_logging, get_logger
from lexspine.core.settings import LexSpineSettings, get_settings
from lexspine.execution.engine import ChunkedJobEngine
from lexspine.execution.rate_limit import KeyedRateLimiter
from lexspine.execution.worker import QueueScheduler
from lexspine.handlers import default_registry

logger = get_logger("lexspine.api")

API_VERSION = "0.1.0"


def build_engine(settings: LexSpineSettings) -> ChunkedJobEngine:
    """Engine on a fresh connection with a queue scheduler (workers not started)."""
    settings.ensure_data_dir()
    conn = connect(settings.database_path)
    return ChunkedJobEngine(
        conn,
        default_registry(settings),
        settings=settings,
        scheduler=QueueScheduler(),
        worker_id="api",
        connect=chunk_connector(settings),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: LexSpineSettings = app.state.settings
    owned = app.state.engine is None
    if owned:
        configure_logging(level=settings.log_level, json_format=settings.log_format == "json", service="lexspine-api")
        engine = build_engine(settings)
        app.state.engine = engine
        engine.scheduler.start_workers(settings.worker_threads)
        engine.recover_stalled()
        engine.resume_paused()
    logger.info("api_started", version=app.version, database=settings.database_path, owned_engine=owned)

    yield

    if owned:
        engine = app.state.engine
        engine.scheduler.stop_workers()
        engine.close()
        engine.conn.close()
        app.state.engine = None
    logger.info("api_stopped")


def create_app(
    settings: LexSpineSettings | None = None,
    *,
    engine: ChunkedJobEngine | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Args:
        settings: Override settings (tests); defaults to :func:`get_settings`
        engine: Pre-built engine; when given the lifespan neither starts
            workers nor closes its connection
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="lexicon-spine",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.trigger_limiter = KeyedRateLimiter.sliding_window(settings.trigger_rate_limit, 60.0)

    # ── Middleware (last added is outermost) ─────────────────────────
    app.add_middleware(AuthMiddleware, api_key=settings.api_key)
    app.add_middleware(RequestIDMiddleware)

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(LexSpineError, lexspine_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
    app.include_router(jobs.router, prefix=settings.api_prefix, tags=["jobs"])

    return app
