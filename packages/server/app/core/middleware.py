"""
HTTP middleware and error rendering.

Domain errors are rendered in the same envelope as every other API error:
``{"error": {"code", "message", "status", "context"}}``.
"""

from __future__ import annotations

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.core.errors import TaskEngineError

log = structlog.get_logger()

# ---------------------------------------------------------------------------
# Security Headers
# ---------------------------------------------------------------------------

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none';",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach security headers to every response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response


# ---------------------------------------------------------------------------
# Request logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind the acting user to the log context and log each request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            method=request.method,
            path=request.url.path,
            user_id=request.headers.get("X-User-Id"),
        )
        started = time.perf_counter()
        response = await call_next(request)
        log.info(
            "http.request",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


async def task_engine_error_handler(request: Request, exc: TaskEngineError) -> JSONResponse:
    log.info("http.domain_error", code=exc.code, status=exc.status_code, **exc.context)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})
