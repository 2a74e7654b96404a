"""
Drift Engine - FastAPI Application Entry Point

- Async lifespan management (DB pool, realtime event bus)
- Per-request timeout and structured access logging
- Engine error handlers rendering ``{"detail", "code", "retryable"}``
- Health-check endpoints (liveness + deep readiness)
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.middleware.base import RequestResponseEndpoint

from drift_engine import __version__
from drift_engine.config import get_settings
from drift_engine.database import dispose_engine, get_engine, get_session_factory
from drift_engine.errors import EngineError, TransientError
from drift_engine.services.realtime import build_event_bus, get_event_bus, set_event_bus

settings = get_settings()

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.LOG_LEVEL)
    ),
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("drift")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Warm the DB pool and connect the event bus; undo both on shutdown."""
    logger.info("startup_begin", environment=settings.ENVIRONMENT)

    async with get_engine().begin() as conn:
        await conn.execute(text("SELECT 1"))

    bus = build_event_bus()
    await bus.connect()
    set_event_bus(bus)
    logger.info("startup_complete", event_bus=type(bus).__name__)

    yield

    await bus.close()
    set_event_bus(None)
    await dispose_engine()
    logger.info("shutdown_complete")


app = FastAPI(
    title="Drift Engine",
    description="Discovery, matching, messaging and social graph backend",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)


@app.middleware("http")
async def request_context(request: Request, call_next: RequestResponseEndpoint) -> Response:
    """Bind a request id for every log line, enforce the request timeout
    and record one ``request_handled`` line per response."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request.headers.get("x-request-id") or uuid.uuid4().hex,
        method=request.method,
        path=request.url.path,
    )
    start = time.perf_counter()
    try:
        response = await asyncio.wait_for(
            call_next(request), timeout=settings.REQUEST_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        logger.warning("request_timeout", timeout=settings.REQUEST_TIMEOUT_SECONDS)
        response = JSONResponse(
            status_code=504,
            content={"detail": "Request timed out", "code": "timeout", "retryable": True},
        )
    logger.info(
        "request_handled",
        status=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return response


# -- Error handlers -------------------------------------------------------- #


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    headers = {"Retry-After": "1"} if isinstance(exc, TransientError) else None
    if exc.status_code >= 500:
        logger.warning(
            "engine_error",
            code=exc.code,
            detail=exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# -- Health-check endpoints ------------------------------------------------ #


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    """Liveness check; healthy whenever the process is running."""
    return {"status": "healthy"}


@app.get("/health/deep", tags=["health"])
async def health_deep(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict:
    """Readiness check; verifies database and event-bus connectivity."""
    result: dict = {
        "status": "healthy",
        "database": "connected",
        "event_bus": "connected",
    }

    # Database
    try:
        async with factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_db_failure", error=str(exc))
        result["database"] = f"error: {exc}"
        result["status"] = "degraded"

    # Event bus
    try:
        if not await get_event_bus().ping():
            raise RuntimeError("Event bus not connected")
    except Exception as exc:
        logger.error("health_event_bus_failure", error=str(exc))
        result["event_bus"] = f"error: {exc}"
        result["status"] = "degraded"

    return result


# -- API router ------------------------------------------------------------ #

from drift_engine.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")
