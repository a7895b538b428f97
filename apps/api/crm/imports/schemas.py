"""Pydantic schemas for Import module."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Any
from uuid import UUID

from pydantic import BaseModel, Field

from crm.imports.fields import MatchStrategy
from crm.imports.models import DestinationType


class PasteImportRequest(BaseModel):
    """Bulk-paste variant of the preview upload."""

    destination_type: DestinationType
    destination_id: UUID
    batch_ids: list[UUID] = Field(default_factory=list)
    text: str = Field(..., min_length=1, description="Comma or tab separated text, header first")


class MatchingStatsResponse(BaseModel):
    will_match: int
    will_create: int
    will_skip: int


class ImportPreviewResponse(BaseModel):
    """Response with import preview data."""

    import_id: UUID
    headers: list[str]
    preview_rows: list[dict[str, str]] = Field(
        ..., description="First rows of the file, keyed by header"
    )
    total_rows: int
    suggestions: dict[str, str] = Field(
        ..., description="Auto-detected field to header mapping"
    )
    suggested_match_by: MatchStrategy
    allowed_match_by: list[MatchStrategy]
    mapping_candidates: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Fuzzy field candidates per header"
    )
    matching_stats: MatchingStatsResponse
    message: str


class MatchingStatsRequest(BaseModel):
    column_mapping: dict[str, Optional[str]]
    match_by: MatchStrategy = MatchStrategy.EMAIL_OR_PHONE
    skip_duplicates: bool = True
    create_new_students: bool = True


class CommitImportRequest(BaseModel):
    """Confirmed mapping and options; starts the chunked commit."""

    import_id: UUID
    column_mapping: dict[str, Optional[str]] = Field(
        ..., description='e.g. {"name": "Full Name", "email": "Email", "phone.1": "Mobile"}'
    )
    match_by: MatchStrategy = MatchStrategy.EMAIL_OR_PHONE
    create_new_students: bool = True
    skip_duplicates: bool = True


class ProcessChunkRequest(BaseModel):
    import_id: UUID
    chunk_size: Optional[int] = Field(
        default=None, ge=1, description="Rows to process; clamped to the server maximum"
    )


class ImportProgressResponse(BaseModel):
    phase: str
    total_rows: int
    processed_rows: int
    matched: int
    created: int
    added: int
    duplicates: int
    errors: int
    percent: float
    updated_at: Optional[datetime]


class ImportResultResponse(BaseModel):
    message: str
    outcome: str = Field(..., description="success, partial or failed")
    stats: dict[str, int]
    errors: list[str] = Field(..., description='First row errors as "Row N: message"')
    error_count: int
    failure_reason: Optional[str] = None


class ImportStatusResponse(BaseModel):
    import_id: UUID
    status: str
    progress: ImportProgressResponse
    result: Optional[ImportResultResponse] = None


class ImportSessionSummary(BaseModel):
    """Row of the import history list."""

    import_id: UUID
    destination_type: str
    destination_id: UUID
    source_name: str
    source_format: str
    status: str
    total_rows: int
    processed_rows: int
    created_at: datetime
    completed_at: Optional[datetime]


class ImportFieldInfo(BaseModel):
    key: str
    label: str
    required: bool = False
    repeatable: bool = False


class MatchStrategyInfo(BaseModel):
    value: MatchStrategy
    requires: list[str]


class ImportFieldsResponse(BaseModel):
    fields: list[ImportFieldInfo]
    match_strategies: list[MatchStrategyInfo]
