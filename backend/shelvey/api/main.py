"""
ShelVey Orchestrator - FastAPI Application
==========================================

Two action endpoints (phase orchestrator, escalation handler) plus health.
The optional timeout scheduler runs for the lifetime of the app.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shelvey.api import escalations, phase_orchestrator
from shelvey.core.config import Settings, settings
from shelvey.core.database import close_db, init_db
from shelvey.core.schemas import ErrorResponse, HealthResponse
from shelvey.core.workflow import TimeoutScheduler


def configure_logging(config: Settings) -> None:
    """
    Route stdlib and structlog output through one pipeline.

    Workflow modules log with ``logging.getLogger(__name__)``; the API,
    scheduler and outbox use structlog key/value events.
    """
    logging.basicConfig(format="%(message)s", level=config.LOG_LEVEL)

    renderer = (
        structlog.processors.JSONRenderer()
        if config.is_production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(settings)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables, run the timeout sweep if enabled, clean up on exit."""
    logger.info(
        "Starting orchestrator",
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )
    await init_db()

    app.state.scheduler = None
    if settings.TIMEOUT_SWEEP_ENABLED:
        app.state.scheduler = TimeoutScheduler()
        await app.state.scheduler.start()

    try:
        yield
    finally:
        if app.state.scheduler is not None:
            await app.state.scheduler.stop()
        await close_db()
        logger.info("Orchestrator stopped")


def create_app() -> FastAPI:
    """Build the application with middleware, error handling and routers."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Six-phase project lifecycle and agent escalation path",
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        """Anything that escaped the action dispatcher is a 500 envelope."""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
        )
        message = str(exc) if settings.is_development else "Internal server error"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error=message).model_dump(),
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
        )

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "health": "/health",
            "endpoints": [
                phase_orchestrator.router.prefix,
                escalations.router.prefix,
            ],
        }

    app.include_router(phase_orchestrator.router)
    app.include_router(escalations.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "shelvey.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
