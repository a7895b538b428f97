"""import sessions schema

Revision ID: 20261001120000
Revises: 20261001110000
Create Date: 2026-10-01 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261001120000"
down_revision: Union[str, None] = "20261001110000"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the import session table."""
    op.create_table(
        "import_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("workspace_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("destination_type", sa.String(length=20), nullable=False),
        sa.Column("destination_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("batch_ids", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("source_name", sa.String(length=500), nullable=False),
        sa.Column("source_format", sa.String(length=20), nullable=False),
        sa.Column("headers", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("source_rows", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("column_mapping", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("match_by", sa.String(length=20), nullable=True),
        sa.Column("create_new_students", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("skip_duplicates", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("phase", sa.String(length=20), nullable=False, server_default="READY"),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("added", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duplicates", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("row_errors", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("chunk_calls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_import_sessions")),
    )
    op.create_index(
        op.f("ix_import_sessions_workspace_id"), "import_sessions", ["workspace_id"], unique=False
    )
    op.create_index(
        op.f("ix_import_sessions_user_id"), "import_sessions", ["user_id"], unique=False
    )
    op.create_index(
        "ix_import_sessions_workspace_user",
        "import_sessions",
        ["workspace_id", "user_id"],
        unique=False,
    )
    op.create_index(
        "ix_import_sessions_expires_at", "import_sessions", ["expires_at"], unique=False
    )


def downgrade() -> None:
    """Drop the import session table."""
    op.drop_index("ix_import_sessions_expires_at", table_name="import_sessions")
    op.drop_index("ix_import_sessions_workspace_user", table_name="import_sessions")
    op.drop_index(op.f("ix_import_sessions_user_id"), table_name="import_sessions")
    op.drop_index(op.f("ix_import_sessions_workspace_id"), table_name="import_sessions")
    op.drop_table("import_sessions")
