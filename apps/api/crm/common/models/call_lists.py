"""Call list models."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import (
    String,
    ForeignKey,
    UniqueConstraint,
    Integer,
    JSON,
    TIMESTAMP,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from crm.common.models.base import Base, utcnow


class CallList(Base):
    """Named set of students to contact, optionally scoped to a group.

    `meta` may carry a `batchId` that imported students are also added to.
    """

    __tablename__ = "call_lists"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    workspace_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    group_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("groups.id", ondelete="SET NULL"),
        nullable=True,
    )
    meta: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow
    )


class CallListItem(Base):
    __tablename__ = "call_list_items"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    call_list_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("call_lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default="QUEUED"
    )  # "QUEUED", "DONE", "SKIPPED"
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "call_list_id", "student_id", name="uq_call_list_items_list_student"
        ),
    )
