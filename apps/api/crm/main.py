"""ASGI entrypoint: `uvicorn crm.main:app`."""

from __future__ import annotations

from fastapi import FastAPI

from crm.core.config import settings
from crm.core.errors import setup_error_handlers
from crm.core.log_setup import setup_logging
from crm.core.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    setup_cors,
    setup_gzip,
)
from crm.core.otel_setup import setup_opentelemetry
from crm.imports.routes import router as imports_router

API_PREFIX = "/api/v1"


def create_app() -> FastAPI:
    application = FastAPI(
        title=f"{settings.workspace_name} API",
        description="Bulk import of students into call lists and groups",
        version="0.1.0",
    )

    setup_error_handlers(application, debug=(settings.app_env != "production"))

    # Last added runs first: request id, then logging, then security headers
    application.add_middleware(SecurityHeadersMiddleware)
    if settings.enable_request_logging:
        application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(RequestIDMiddleware)

    setup_cors(application)
    if settings.enable_gzip:
        setup_gzip(application)

    application.include_router(imports_router, prefix=API_PREFIX)

    @application.get("/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "env": settings.app_env,
            "version": application.version,
        }

    @application.get(f"{API_PREFIX}/ping")
    async def ping() -> dict:
        return {"message": "pong"}

    return application


setup_logging()
# Must run before the app records any metric
setup_opentelemetry()

app = create_app()
