# @TASK P2-T2.7 - Full-text search column, trigger and indexes

"""Add weighted search_vector, its trigger and the search indexes.

Revision ID: 002_document_search
Revises: 001_initial_schema
Create Date: 2026-01-30 09:00:00.000000

Uses the same statements as the runtime schema manager so both paths
produce an identical schema. The migration is strict: every statement
must succeed, including the ones the runtime setup treats as optional.
The vector is built with the built-in language configuration; the
custom configuration, if wanted, is installed by the runtime setup.
"""

from typing import Sequence, Union

from alembic import op

from app.config import get_settings
from app.search.schema import (
    SEARCH_INDEXES,
    TABLE,
    VECTOR_FUNCTION,
    add_column_sql,
    backfill_sql,
    create_trigger_sql,
    drop_trigger_sql,
    trigger_function_sql,
)

# revision identifiers, used by Alembic.
revision: str = "002_document_search"
down_revision: Union[str, None] = "001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Install search column, trigger, backfill and indexes."""
    language = get_settings().SEARCH_LANGUAGE

    op.execute('CREATE EXTENSION IF NOT EXISTS "pg_trgm"')
    op.execute(add_column_sql())
    op.execute(trigger_function_sql(language))
    op.execute(drop_trigger_sql())
    op.execute(create_trigger_sql())
    op.execute(backfill_sql(language))

    for index in SEARCH_INDEXES:
        op.execute(index.ddl)


def downgrade() -> None:
    """Remove trigger, function, indexes and column."""
    op.execute(drop_trigger_sql())
    op.execute(f"DROP FUNCTION IF EXISTS {VECTOR_FUNCTION}()")

    for index in reversed(SEARCH_INDEXES):
        op.execute(f"DROP INDEX IF EXISTS {index.name}")

    op.execute(f"ALTER TABLE {TABLE} DROP COLUMN IF EXISTS search_vector")
