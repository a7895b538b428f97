"""Structural errors raised by the import pipeline.

Row-level failures never raise; they are recorded on the session. Everything
here aborts the current request and is rendered by the global API error
handlers.
"""

from __future__ import annotations

from typing import Any

from fastapi import status

from crm.core.errors import APIError, BadRequestError, ValidationAPIError


class ParseError(BadRequestError):
    """Uploaded content could not be read as a table."""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Could not parse file: {reason}",
            error_code="parse_error",
            details={"reason": reason},
        )


class UnsupportedFormat(BadRequestError):
    """Upload extension is not one of the supported tabular formats."""

    def __init__(self, filename: str):
        super().__init__(
            message="Unsupported file format. Please upload a CSV or Excel file.",
            error_code="unsupported_format",
            details={"filename": filename},
        )


class EmptyImportError(BadRequestError):
    def __init__(self):
        super().__init__(
            message="File is empty or has no valid data rows",
            error_code="empty_import",
        )


class UploadTooLargeError(APIError):
    def __init__(self, size: int, limit: int):
        super().__init__(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            error_code="upload_too_large",
            message=f"File exceeds the maximum upload size of {limit} bytes",
            details={"size": size, "limit": limit},
        )


class MissingRequiredField(ValidationAPIError):
    def __init__(self, field: str = "name"):
        super().__init__(
            message=f"Column mapping must include the '{field}' field",
            errors=[{"field": field, "message": "Field is required"}],
            error_code="missing_required_field",
        )


class IncompatibleMatchStrategy(ValidationAPIError):
    """Match strategy needs a field the mapping does not provide."""

    def __init__(self, match_by: str, missing: list[str], allowed: list[str]):
        super().__init__(
            message=(
                f"Cannot match by '{match_by}': "
                f"map the {' and '.join(missing)} column first"
            ),
            errors=[
                {
                    "field": "match_by",
                    "message": f"Requires mapped field(s): {', '.join(missing)}",
                    "allowed": allowed,
                }
            ],
            error_code="incompatible_match_strategy",
        )


class UnknownColumn(ValidationAPIError):
    def __init__(self, field: str, column: str):
        super().__init__(
            message=f"Column '{column}' mapped to '{field}' is not in the uploaded file",
            errors=[{"field": field, "message": f"Unknown column: {column}"}],
            error_code="unknown_column",
        )


class InvalidFieldPath(ValidationAPIError):
    def __init__(self, key: str):
        super().__init__(
            message=f"Unknown mapping field: {key}",
            errors=[{"field": key, "message": "Not a recognised import field"}],
            error_code="invalid_field_path",
        )


class ImportExpiredError(APIError):
    def __init__(self, import_id: Any):
        super().__init__(
            status_code=status.HTTP_410_GONE,
            error_code="import_expired",
            message="Import session has expired. Please upload the file again.",
            details={"import_id": str(import_id)},
        )


class ImportStateError(APIError):
    """Operation is not allowed in the session's current phase."""

    def __init__(self, import_id: Any, phase: str, expected: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="invalid_import_state",
            message=f"Import is {phase}; expected {expected}",
            details={"import_id": str(import_id), "phase": phase, "expected": expected},
        )


class PreviewTimeoutError(APIError):
    def __init__(self, timeout_seconds: float):
        super().__init__(
            status_code=status.HTTP_408_REQUEST_TIMEOUT,
            error_code="preview_timeout",
            message="Processing took too long. Try a smaller file.",
            details={"timeout_seconds": timeout_seconds},
        )


class OrchestratorFault(APIError):
    """Fatal failure while committing a chunk; the session is marked FAILED."""

    def __init__(self, import_id: Any, reason: str):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="import_failed",
            message=f"Import failed: {reason}",
            details={"import_id": str(import_id), "reason": reason},
        )
