"""Request id, access logging and security header middleware."""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from typing import Any, Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from crm.core.config import settings
from crm.core.metrics import emit_http_request

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_PATHS = [
    "/health",
    "/api/v1/ping",
    "/docs",
    "/openapi.json",
    "/redoc",
]

DEV_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
]

IMPORT_ID_PATTERN = re.compile(
    r"/imports/([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})",
    re.IGNORECASE,
)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID or mint one, and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.app_env == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One JSON line per request and per response, plus HTTP metrics.

    Requests that address a specific import carry its id in both lines so a
    long chunked commit can be followed across calls.
    """

    def __init__(self, app, exclude_paths: list[str] | None = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or DEFAULT_EXCLUDED_PATHS

    def _context(self, request: Request) -> dict[str, Any]:
        context: dict[str, Any] = {
            "request_id": getattr(request.state, "request_id", "unknown"),
            "method": request.method,
            "path": request.url.path,
        }
        match = IMPORT_ID_PATTERN.search(request.url.path)
        if match:
            context["import_id"] = match.group(1)
        return context

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if any(request.url.path.startswith(path) for path in self.exclude_paths):
            return await call_next(request)

        context = self._context(request)
        extra = {k: context[k] for k in ("request_id", "import_id") if k in context}

        request_log = {
            "type": "http_request",
            **context,
            "query_params": dict(request.query_params),
            "client_host": request.client.host if request.client else None,
        }
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            request_log["request_body_size"] = int(content_length)
        logger.info(json.dumps(request_log, default=str), extra=extra)

        start_time = time.perf_counter()
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error(
                f"Request processing error: {type(e).__name__}: {e}",
                extra=extra,
                exc_info=True,
            )
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            emit_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=duration_ms,
            )
            response_log = {
                "type": "http_response",
                **context,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            }
            logger.log(_level_for(status_code), json.dumps(response_log, default=str), extra=extra)

        response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"
        return response


def setup_cors(app: FastAPI) -> None:
    """CORS from the comma-separated setting; localhost defaults outside production."""
    if settings.cors_origins:
        cors_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    elif settings.app_env == "production":
        cors_origins = []
    else:
        cors_origins = DEV_CORS_ORIGINS

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        # Browsers need these to name the error CSV download and trace requests
        expose_headers=["X-Request-ID", "X-Process-Time", "Content-Disposition"],
    )


def setup_gzip(app: FastAPI) -> None:
    app.add_middleware(GZipMiddleware, minimum_size=500, compresslevel=6)
