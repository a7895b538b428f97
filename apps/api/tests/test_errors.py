"""Tests for error handling and exception management."""

from __future__ import annotations

import json
import logging
from unittest.mock import Mock, patch

import pytest
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import DatabaseError, IntegrityError

from crm.core.errors import (
    APIError,
    BadRequestError,
    NotFoundError,
    ValidationAPIError,
    api_error_handler,
    database_error_handler,
    format_error_response,
    generic_exception_handler,
    setup_error_handlers,
    validation_error_handler,
)
from crm.imports.errors import (
    ImportExpiredError,
    ImportStateError,
    OrchestratorFault,
    ParseError,
    PreviewTimeoutError,
)


def make_request(path: str = "/api/v1/imports", method: str = "GET") -> Mock:
    request = Mock(spec=Request)
    request.state.request_id = "test-123"
    request.url.path = path
    request.method = method
    request.app.state.debug = False
    return request


class TestAPIError:
    """Test APIError exception classes."""

    def test_api_error_creation(self):
        error = APIError(
            status_code=400,
            error_code="test_error",
            message="Test error message",
            details={"key": "value"},
        )

        assert error.status_code == 400
        assert error.error_code == "test_error"
        assert error.details == {"key": "value"}
        assert str(error) == "Test error message"

    def test_bad_request_error(self):
        error = BadRequestError("Broken input")

        assert error.status_code == status.HTTP_400_BAD_REQUEST
        assert error.error_code == "bad_request"

    def test_validation_api_error(self):
        error = ValidationAPIError(
            message="Validation failed",
            errors=[{"field": "email", "message": "Invalid email"}],
        )

        assert error.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT
        assert error.error_code == "validation_error"
        assert error.details["errors"][0]["field"] == "email"

    def test_not_found_error(self):
        error = NotFoundError("Call list", "123")

        assert error.status_code == status.HTTP_404_NOT_FOUND
        assert error.message == "Call list not found: 123"
        assert error.details["resource"] == "Call list"

    def test_not_found_error_no_identifier(self):
        error = NotFoundError("Import")

        assert error.message == "Import not found"
        assert error.details["identifier"] is None


class TestImportErrors:
    """Test the import error taxonomy."""

    @pytest.mark.parametrize(
        "error,status_code,code",
        [
            (ParseError("bad quote"), 400, "parse_error"),
            (ImportExpiredError("abc"), 410, "import_expired"),
            (ImportStateError("abc", "READY", "PROCESSING"), 409, "invalid_import_state"),
            (PreviewTimeoutError(90), 408, "preview_timeout"),
            (OrchestratorFault("abc", "database unavailable"), 503, "import_failed"),
        ],
    )
    def test_status_and_code(self, error, status_code, code):
        assert isinstance(error, APIError)
        assert error.status_code == status_code
        assert error.error_code == code

    def test_parse_error_message(self):
        error = ParseError("EOF inside string")

        assert error.message == "Could not parse file: EOF inside string"
        assert error.details == {"reason": "EOF inside string"}


class TestFormatErrorResponse:
    """Test error response formatting."""

    def test_format_api_error(self):
        error = NotFoundError("Import", "abc")

        response = format_error_response(error, make_request(), include_details=True)

        assert response["error"]["code"] == "not_found"
        assert response["error"]["request_id"] == "test-123"
        assert response["error"]["details"]["identifier"] == "abc"

    def test_format_validation_error(self):
        error = RequestValidationError(
            errors=[{"loc": ("body", "import_id"), "msg": "Field required", "type": "missing"}]
        )

        response = format_error_response(error, make_request())

        detail = response["error"]["details"]["errors"][0]
        assert response["error"]["code"] == "validation_error"
        assert detail["field"] == "body.import_id"
        assert detail["type"] == "missing"

    def test_format_generic_error(self):
        response = format_error_response(ValueError("boom"), make_request())

        assert response["error"]["code"] == "internal_error"
        assert "details" not in response["error"]

    def test_format_generic_error_with_details(self):
        response = format_error_response(
            ValueError("boom"), make_request(), include_details=True
        )

        assert response["error"]["details"]["type"] == "ValueError"


class TestErrorHandlers:
    """Test error handler functions."""

    @pytest.mark.asyncio
    async def test_api_error_handler(self):
        error = ImportStateError("abc", "READY", "PROCESSING")

        with patch("crm.core.errors.emit_error") as mock_emit:
            response = await api_error_handler(make_request(), error)

        assert response.status_code == 409
        assert "invalid_import_state" in response.body.decode()
        mock_emit.assert_called_once_with(
            error_code="invalid_import_state",
            status_code=409,
            path="/api/v1/imports",
            method="GET",
        )

    @pytest.mark.asyncio
    async def test_api_error_handler_keeps_status_and_logs_code(self, caplog):
        error = NotFoundError("Import", "abc")
        caplog.set_level(logging.WARNING, logger="crm.core.errors")

        with patch("crm.core.errors.emit_error"):
            response = await api_error_handler(make_request(), error)

        assert response.status_code == 404
        assert json.loads(response.body)["error"]["code"] == "not_found"
        record = next(r for r in caplog.records if r.name == "crm.core.errors")
        assert record.error_code == "not_found"
        assert record.status_code == 404
        assert record.request_id == "test-123"

    @pytest.mark.asyncio
    async def test_validation_error_handler(self):
        validation_error = RequestValidationError(
            errors=[{"loc": ("body", "text"), "msg": "Invalid"}]
        )

        with patch("crm.core.errors.emit_error") as mock_emit:
            response = await validation_error_handler(make_request(method="POST"), validation_error)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT
        mock_emit.assert_called_once()

    @pytest.mark.asyncio
    async def test_database_error_handler_integrity_error(self):
        error = IntegrityError("INSERT", {}, Exception("duplicate key"))

        with patch("crm.core.errors.emit_error"):
            response = await database_error_handler(make_request(), error)

        assert response.status_code == 500
        body = response.body.decode()
        assert "Database integrity constraint violated" in body
        assert "duplicate key" not in body

    @pytest.mark.asyncio
    async def test_database_error_handler_with_debug(self):
        request = make_request()
        request.app.state.debug = True
        error = DatabaseError("SELECT", {}, Exception("connection lost"))

        with patch("crm.core.errors.emit_error"):
            response = await database_error_handler(request, error)

        assert "DatabaseError" in response.body.decode()

    @pytest.mark.asyncio
    async def test_generic_exception_handler(self):
        with patch("crm.core.errors.emit_error") as mock_emit:
            response = await generic_exception_handler(make_request(), RuntimeError("boom"))

        assert response.status_code == 500
        assert "boom" not in response.body.decode()
        mock_emit.assert_called_once()

    def test_setup_error_handlers(self):
        app = FastAPI()

        setup_error_handlers(app, debug=True)

        assert app.state.debug is True
        assert APIError in app.exception_handlers
        assert RequestValidationError in app.exception_handlers
        assert Exception in app.exception_handlers
