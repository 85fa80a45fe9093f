# @TASK P0-T0.5 - Initial PostgreSQL schema for documents

"""Create the documents table.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-01-29 08:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Apply schema migrations."""
    op.create_table(
        "documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True, server_default=""),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("original_file_name", sa.String(255), nullable=False),
        sa.Column("file_size", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("file_type", sa.String(20), nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=True, server_default="processing"),
        sa.Column("tags", sa.Text, nullable=True, server_default=""),
        sa.Column("is_public", sa.Boolean, nullable=True, server_default="false"),
        sa.Column("view_count", sa.Integer, nullable=True, server_default="0"),
        sa.Column("download_count", sa.Integer, nullable=True, server_default="0"),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_documents_user_id", "documents", ["user_id"])
    op.create_index("ix_documents_deleted_at", "documents", ["deleted_at"])


def downgrade() -> None:
    """Revert schema migrations."""
    op.drop_index("ix_documents_deleted_at", table_name="documents")
    op.drop_index("ix_documents_user_id", table_name="documents")
    op.drop_table("documents")
