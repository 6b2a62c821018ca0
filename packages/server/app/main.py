"""
Task Engine API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.core.config import get_settings
from app.core.database import engine, init_db
from app.core.errors import TaskEngineError
from app.core.logging_config import configure_logging
from app.core.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    task_engine_error_handler,
)
from app.core.redis import close_redis, redis_ready
from app.api.v1 import router as api_v1_router

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="EventFlow Task Engine",
        description="Task orchestration for event production: hierarchy, dependencies, templates and status projection.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware (order matters, outermost first)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "X-User-Id"],
    )

    app.add_exception_handler(TaskEngineError, task_engine_error_handler)

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: database always, Redis only when it carries notifications."""
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        if settings.notifier == "redis" and not await redis_ready():
            return JSONResponse(status_code=503, content={"status": "unavailable", "failing": ["redis"]})
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        log.info("Task engine starting", notifier=settings.notifier)
        if settings.create_tables:
            await init_db()

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Task engine shutting down")
        await close_redis()

    return app


app = create_app()
