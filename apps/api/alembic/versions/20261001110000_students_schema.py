"""students, groups and call lists schema

Revision ID: 20261001110000
Revises:
Create Date: 2026-10-01 11:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261001110000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False)


def _workspace() -> sa.Column:
    return sa.Column("workspace_id", postgresql.UUID(as_uuid=True), nullable=False)


def _fk(name: str, target: str, nullable: bool = False) -> sa.Column:
    ondelete = "SET NULL" if nullable else "CASCADE"
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def upgrade() -> None:
    """Create the student directory and the two import destinations."""
    op.create_table(
        "students",
        _id(),
        _workspace(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("discord_id", sa.String(length=100), nullable=True),
        sa.Column("tags", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_students")),
    )
    op.create_index(op.f("ix_students_workspace_id"), "students", ["workspace_id"])
    op.create_index("ix_students_workspace_email", "students", ["workspace_id", "email"])

    op.create_table(
        "student_phones",
        _id(),
        _workspace(),
        _fk("student_id", "students.id"),
        sa.Column("phone", sa.String(length=50), nullable=False),
        sa.Column("normalized_phone", sa.String(length=50), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_student_phones")),
    )
    op.create_index(op.f("ix_student_phones_workspace_id"), "student_phones", ["workspace_id"])
    op.create_index(op.f("ix_student_phones_student_id"), "student_phones", ["student_id"])
    op.create_index(
        "ix_student_phones_workspace_phone",
        "student_phones",
        ["workspace_id", "normalized_phone"],
    )

    op.create_table(
        "batches",
        _id(),
        _workspace(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_batches")),
    )
    op.create_index(op.f("ix_batches_workspace_id"), "batches", ["workspace_id"])

    op.create_table(
        "groups",
        _id(),
        _workspace(),
        sa.Column("name", sa.String(length=200), nullable=False),
        _fk("batch_id", "batches.id", nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_groups")),
    )
    op.create_index(op.f("ix_groups_workspace_id"), "groups", ["workspace_id"])

    op.create_table(
        "courses",
        _id(),
        _workspace(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_courses")),
    )
    op.create_index(op.f("ix_courses_workspace_id"), "courses", ["workspace_id"])

    op.create_table(
        "student_batches",
        _id(),
        _fk("student_id", "students.id"),
        _fk("batch_id", "batches.id"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_student_batches")),
        sa.UniqueConstraint(
            "student_id", "batch_id", name="uq_student_batches_student_batch"
        ),
    )

    op.create_table(
        "enrollments",
        _id(),
        _fk("student_id", "students.id"),
        _fk("group_id", "groups.id"),
        _fk("course_id", "courses.id", nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_enrollments")),
    )
    op.create_index(op.f("ix_enrollments_student_id"), "enrollments", ["student_id"])
    op.create_index(op.f("ix_enrollments_group_id"), "enrollments", ["group_id"])

    op.create_table(
        "student_group_statuses",
        _id(),
        _fk("student_id", "students.id"),
        _fk("group_id", "groups.id"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="NEW"),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_student_group_statuses")),
        sa.UniqueConstraint(
            "student_id", "group_id", name="uq_student_group_statuses_student_group"
        ),
    )
    op.create_index(
        op.f("ix_student_group_statuses_group_id"), "student_group_statuses", ["group_id"]
    )

    op.create_table(
        "call_lists",
        _id(),
        _workspace(),
        sa.Column("name", sa.String(length=200), nullable=False),
        _fk("group_id", "groups.id", nullable=True),
        sa.Column("meta", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_call_lists")),
    )
    op.create_index(op.f("ix_call_lists_workspace_id"), "call_lists", ["workspace_id"])

    op.create_table(
        "call_list_items",
        _id(),
        _fk("call_list_id", "call_lists.id"),
        _fk("student_id", "students.id"),
        sa.Column("state", sa.String(length=20), nullable=False, server_default="QUEUED"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_call_list_items")),
        sa.UniqueConstraint(
            "call_list_id", "student_id", name="uq_call_list_items_list_student"
        ),
    )
    op.create_index(
        op.f("ix_call_list_items_call_list_id"), "call_list_items", ["call_list_id"]
    )


def downgrade() -> None:
    """Drop tables in reverse dependency order."""
    for table in (
        "call_list_items",
        "call_lists",
        "student_group_statuses",
        "enrollments",
        "student_batches",
        "courses",
        "groups",
        "batches",
        "student_phones",
        "students",
    ):
        op.drop_table(table)
