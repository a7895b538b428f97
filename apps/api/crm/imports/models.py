"""Import session model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import (
    String,
    Boolean,
    Index,
    Integer,
    JSON,
    TIMESTAMP,
    Uuid,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from crm.common.models.base import Base, utcnow


class ImportPhase(str, Enum):
    """Session phases; transitions only move forward."""

    READY = "READY"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


FINISHED_PHASES = (ImportPhase.COMPLETED.value, ImportPhase.FAILED.value)


class DestinationType(str, Enum):
    CALL_LIST = "call_list"
    GROUP = "group"


class ImportSession(Base):
    """One upload, from preview through chunked commit.

    `source_rows` is written once at preview time and never changed;
    `processed_rows` is the only resumption cursor.
    """

    __tablename__ = "import_sessions"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    workspace_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    destination_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # "call_list", "group"
    destination_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    batch_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    source_name: Mapped[str] = mapped_column(String(500), nullable=False)
    source_format: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # "csv", "xlsx", "xls", "text"
    headers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    source_rows: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    column_mapping: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    match_by: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    create_new_students: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    skip_duplicates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    phase: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ImportPhase.READY.value
    )
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    matched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duplicates: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    row_errors: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list
    )  # [{"row": 3, "message": "Missing name"}, ...]
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    chunk_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_import_sessions_workspace_user", "workspace_id", "user_id"),
        Index("ix_import_sessions_expires_at", "expires_at"),
    )

    @property
    def is_finished(self) -> bool:
        return self.phase in FINISHED_PHASES
