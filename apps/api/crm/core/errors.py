"""API error types and the handlers that turn exceptions into JSON bodies.

Every error response has the shape::

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": {...}}}

`details` is always present for APIError subclasses that carry any, and for
unexpected failures only when the app runs with ``debug``.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import DatabaseError, IntegrityError

from crm.core.metrics import emit_error

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors.

    Attributes:
        status_code: HTTP status code
        error_code: Stable, machine-readable code
        message: Human-readable message shown to the uploader
        details: Extra context (offending field, limits, state)
    """

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class BadRequestError(APIError):
    def __init__(
        self,
        message: str,
        error_code: str = "bad_request",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(status.HTTP_400_BAD_REQUEST, error_code, message, details)


class ValidationAPIError(APIError):
    """Rejected input, with one entry per offending field."""

    def __init__(
        self,
        message: str = "Validation error",
        errors: list[dict[str, Any]] | None = None,
        error_code: str = "validation_error",
    ):
        super().__init__(
            status.HTTP_422_UNPROCESSABLE_CONTENT,
            error_code,
            message,
            {"errors": errors or []},
        )


class NotFoundError(APIError):
    def __init__(self, resource: str, identifier: str | None = None):
        message = f"{resource} not found: {identifier}" if identifier else f"{resource} not found"
        super().__init__(
            status.HTTP_404_NOT_FOUND,
            "not_found",
            message,
            {"resource": resource, "identifier": identifier},
        )


def _body(
    code: str,
    message: str,
    request_id: str | None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message, "request_id": request_id}
    if details is not None:
        error["details"] = details
    return {"error": error}


def _exception_details(exc: Exception, with_traceback: bool = False) -> dict[str, Any]:
    details: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    if with_traceback:
        details["traceback"] = traceback.format_exc().split("\n")
    return details


def _field_errors(error: RequestValidationError | ValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(loc) for loc in err.get("loc", [])),
            "message": err.get("msg", "Invalid value"),
            "type": err.get("type", "validation_error"),
        }
        for err in error.errors()
    ]


def format_error_response(
    error: Exception,
    request: Request,
    include_details: bool = False,
) -> dict[str, Any]:
    """Build the JSON error body for any exception.

    Args:
        error: The exception that occurred
        request: Request being answered (for its request id)
        include_details: Expose exception internals for non-API errors

    Returns:
        Dictionary with error response structure
    """
    request_id = getattr(request.state, "request_id", None)

    if isinstance(error, APIError):
        details = error.details if (error.details or include_details) else None
        return _body(error.error_code, error.message, request_id, details)

    if isinstance(error, (RequestValidationError, ValidationError)):
        return _body(
            "validation_error",
            "Validation failed",
            request_id,
            {"errors": _field_errors(error)},
        )

    return _body(
        "internal_error",
        "An internal error occurred",
        request_id,
        _exception_details(error) if include_details else None,
    )


def _record(
    request: Request,
    level: int,
    message: str,
    error_code: str,
    status_code: int,
    exc_info: bool = False,
    **extra: Any,
) -> str | None:
    """Log the failure, count it, and return the request id."""
    request_id = getattr(request.state, "request_id", None)
    logger.log(
        level,
        message,
        extra={
            "request_id": request_id,
            "error_code": error_code,
            "status_code": status_code,
            "path": request.url.path,
            "method": request.method,
            **extra,
        },
        exc_info=exc_info,
    )
    emit_error(
        error_code=error_code,
        status_code=status_code,
        path=request.url.path,
        method=request.method,
    )
    return request_id


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    _record(
        request,
        logging.WARNING,
        f"API error: {exc.error_code} - {exc.message}",
        exc.error_code,
        exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(exc, request, include_details=True),
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Client errors, not bugs
    _record(
        request,
        logging.INFO,
        f"Validation error: {exc}",
        "validation_error",
        status.HTTP_422_UNPROCESSABLE_CONTENT,
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=format_error_response(exc, request, include_details=True),
    )


async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    """Answer 500 without leaking SQL unless running in debug."""
    request_id = _record(
        request,
        logging.ERROR,
        f"Database error: {exc}",
        "database_error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        exc_info=True,
        exception_type=type(exc).__name__,
    )

    if isinstance(exc, IntegrityError):
        message = "Database integrity constraint violated"
    else:
        message = "A database error occurred"
    debug = getattr(request.app.state, "debug", False)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_body(
            "database_error",
            message,
            request_id,
            _exception_details(exc) if debug else None,
        ),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _record(
        request,
        logging.ERROR,
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        "internal_error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        exc_info=True,
        exception_type=type(exc).__name__,
    )
    debug = getattr(request.app.state, "debug", False)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_body(
            "internal_error",
            "An internal error occurred",
            request_id,
            _exception_details(exc, with_traceback=True) if debug else None,
        ),
    )


def setup_error_handlers(app: FastAPI, debug: bool = False) -> None:
    """Register the handlers above, most specific first."""
    app.state.debug = debug

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(DatabaseError, database_error_handler)
    app.add_exception_handler(IntegrityError, database_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
