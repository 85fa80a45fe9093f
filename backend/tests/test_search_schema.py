# @TASK P2-T2.7 - Full-text search schema setup tests
# @TEST tests/test_search_schema.py

"""Tests for SearchSchemaManager setup, degradation and rollback.

A fake AsyncConnection records every statement and can be told to reject
statements containing a given fragment, mimicking permission errors.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import ProgrammingError

from app.config import Settings
from app.search.schema import (
    SEARCH_INDEXES,
    SchemaSetupError,
    SearchSchemaManager,
    create_trigger_sql,
    rollback_search_schema,
    search_vector_sql,
    setup_search_schema,
    text_search_config_sql,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Begin:
    def __init__(self, conn):
        self._conn = conn
        self.exited_with = None

    async def __aenter__(self):
        return self._conn

    async def __aexit__(self, exc_type, exc, tb):
        self.exited_with = exc_type
        return False


class _Savepoint:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


def _make_conn(fail_on: tuple[str, ...] = (), config_exists: bool = False, extension_present: bool = True):
    conn = MagicMock()
    conn.executed = []

    async def execute(stmt, params=None):
        sql = str(stmt)
        conn.executed.append(sql)
        for fragment in fail_on:
            if fragment in sql:
                raise ProgrammingError(sql, params, Exception("permission denied"))

        result = MagicMock()
        if "pg_ts_config" in sql:
            result.scalar.return_value = config_exists
        elif "pg_extension" in sql:
            result.scalar.return_value = extension_present
        else:
            result.scalar.return_value = 3
        result.rowcount = 7 if sql.lstrip().startswith("UPDATE") else -1
        result.one.return_value = MagicMock(total=10, with_vector=8)
        return result

    conn.execute = AsyncMock(side_effect=execute)
    conn.begin_nested = MagicMock(side_effect=lambda: _Savepoint())
    return conn


def _fake_engine(conn):
    engine = MagicMock()
    engine.transactions = []

    def begin():
        transaction = _Begin(conn)
        engine.transactions.append(transaction)
        return transaction

    engine.begin = MagicMock(side_effect=begin)
    return engine


def _settings(**overrides) -> Settings:
    values = {"DATABASE_URL": "postgresql+asyncpg://u:p@db:5432/docsearch"}
    values.update(overrides)
    return Settings(**values)


def _executed_matching(conn, fragment: str) -> list[str]:
    return [sql for sql in conn.executed if fragment in sql]


# ---------------------------------------------------------------------------
# SQL builders
# ---------------------------------------------------------------------------


class TestSqlBuilders:
    def test_vector_weights_by_field(self):
        sql = search_vector_sql("english")
        assert "coalesce(title, '')), 'A')" in sql
        assert "coalesce(description, '')), 'B')" in sql
        assert "coalesce(tags, '')), 'C')" in sql
        assert "coalesce(original_file_name, '')), 'D')" in sql

    def test_trigger_fires_only_on_source_columns(self):
        assert "BEFORE INSERT OR UPDATE OF title, description, tags, original_file_name ON documents" in (
            create_trigger_sql()
        )

    def test_config_statements(self):
        create, alter = text_search_config_sql("custom_search", "english")
        assert create == "CREATE TEXT SEARCH CONFIGURATION custom_search (COPY = english)"
        assert "WITH english_stem, simple" in alter

    @pytest.mark.parametrize("name", ["bad-name", "x; DROP TABLE documents", ""])
    def test_identifiers_validated(self, name):
        with pytest.raises(ValueError):
            search_vector_sql(name)

    def test_index_ddl_is_idempotent(self):
        assert all("IF NOT EXISTS" in index.ddl for index in SEARCH_INDEXES)

    def test_full_text_gin_index_is_critical(self):
        critical = {index.name for index in SEARCH_INDEXES if index.critical}
        assert "idx_documents_search_vector" in critical
        assert "idx_documents_title_trgm" not in critical


# ---------------------------------------------------------------------------
# apply()
# ---------------------------------------------------------------------------


class TestApply:
    @pytest.mark.asyncio
    async def test_full_setup(self):
        conn = _make_conn()
        report = await SearchSchemaManager(_settings()).apply(conn)

        assert report.skipped == {}
        assert report.text_config == "custom_search"
        assert report.backfilled == 7
        assert report.indexes_created == report.indexes_total == len(SEARCH_INDEXES)
        assert report.threshold_scope == "database"
        assert report.verification == {"pg_trgm": True, "total": 10, "with_vector": 8, "smoke_test_matches": 3}
        assert _executed_matching(conn, "CREATE TEXT SEARCH CONFIGURATION custom_search")
        assert _executed_matching(conn, 'ALTER DATABASE "docsearch" SET pg_trgm.similarity_threshold = 0.2')

    @pytest.mark.asyncio
    async def test_step_order(self):
        conn = _make_conn()
        await SearchSchemaManager(_settings()).apply(conn)

        def first(fragment):
            return next(i for i, sql in enumerate(conn.executed) if fragment in sql)

        assert first("CREATE EXTENSION") < first("ADD COLUMN IF NOT EXISTS search_vector")
        assert first("ADD COLUMN") < first("CREATE OR REPLACE FUNCTION")
        assert first("CREATE TRIGGER") < first("UPDATE documents SET search_vector")
        assert first("UPDATE documents") < first("CREATE INDEX")

    @pytest.mark.asyncio
    async def test_existing_config_reused(self):
        conn = _make_conn(config_exists=True)
        report = await SearchSchemaManager(_settings()).apply(conn)

        assert report.text_config == "custom_search"
        assert not _executed_matching(conn, "CREATE TEXT SEARCH CONFIGURATION")

    @pytest.mark.asyncio
    async def test_config_failure_falls_back_to_language(self):
        conn = _make_conn(fail_on=("CREATE TEXT SEARCH CONFIGURATION",))
        report = await SearchSchemaManager(_settings()).apply(conn)

        assert report.text_config == "english"
        assert "text_search_config" in report.skipped
        function_sql = _executed_matching(conn, "CREATE OR REPLACE FUNCTION")[0]
        assert "to_tsvector('english'" in function_sql

    @pytest.mark.asyncio
    async def test_missing_pg_trgm_degrades(self):
        conn = _make_conn(fail_on=("CREATE EXTENSION", "gin_trgm_ops"), extension_present=False)
        report = await SearchSchemaManager(_settings()).apply(conn)

        trigram_indexes = [index for index in SEARCH_INDEXES if "gin_trgm_ops" in index.ddl]
        assert "pg_trgm_extension" in report.skipped
        assert report.indexes_created == len(SEARCH_INDEXES) - len(trigram_indexes)
        assert report.verification["pg_trgm"] is False

    @pytest.mark.asyncio
    async def test_column_failure_is_fatal(self):
        conn = _make_conn(fail_on=("ADD COLUMN",))
        with pytest.raises(SchemaSetupError) as exc_info:
            await SearchSchemaManager(_settings()).apply(conn)
        assert exc_info.value.step == "search_vector_column"

    @pytest.mark.asyncio
    async def test_trigger_failure_is_fatal(self):
        conn = _make_conn(fail_on=("CREATE TRIGGER",))
        with pytest.raises(SchemaSetupError) as exc_info:
            await SearchSchemaManager(_settings()).apply(conn)
        assert exc_info.value.step == "search_vector_trigger"

    @pytest.mark.asyncio
    async def test_critical_index_failure_is_fatal(self):
        conn = _make_conn(fail_on=("idx_documents_search_vector ON",))
        with pytest.raises(SchemaSetupError) as exc_info:
            await SearchSchemaManager(_settings()).apply(conn)
        assert exc_info.value.step == "idx_documents_search_vector"

    @pytest.mark.asyncio
    async def test_backfill_failure_is_tolerated(self):
        conn = _make_conn(fail_on=("UPDATE documents",))
        report = await SearchSchemaManager(_settings()).apply(conn)

        assert report.backfilled == 0
        assert "backfill" in report.skipped

    @pytest.mark.asyncio
    async def test_threshold_falls_back_to_session(self):
        conn = _make_conn(fail_on=("ALTER DATABASE",))
        report = await SearchSchemaManager(_settings()).apply(conn)

        assert report.threshold_scope == "session"
        assert _executed_matching(conn, "set_limit")

    @pytest.mark.asyncio
    async def test_unusable_database_name_skips_alter(self):
        conn = _make_conn()
        settings = _settings(DATABASE_URL="postgresql+asyncpg://u:p@db:5432/my-db")
        report = await SearchSchemaManager(settings).apply(conn)

        assert not _executed_matching(conn, "ALTER DATABASE")
        assert report.threshold_scope == "session"

    @pytest.mark.asyncio
    async def test_threshold_failure_is_tolerated(self):
        conn = _make_conn(fail_on=("ALTER DATABASE", "set_limit"))
        report = await SearchSchemaManager(_settings()).apply(conn)

        assert report.threshold_scope is None
        assert "trigram_threshold" in report.skipped

    @pytest.mark.asyncio
    async def test_verification_problems_never_raise(self):
        conn = _make_conn(fail_on=("pg_extension", "COUNT("))
        report = await SearchSchemaManager(_settings()).apply(conn)
        assert report.verification == {}


# ---------------------------------------------------------------------------
# rollback()
# ---------------------------------------------------------------------------


class TestRollback:
    @pytest.mark.asyncio
    async def test_drops_in_reverse_order(self):
        conn = _make_conn()
        await SearchSchemaManager(_settings()).rollback(conn)

        assert conn.executed[0].startswith("DROP TRIGGER IF EXISTS documents_search_vector_trigger")
        assert conn.executed[1] == "DROP FUNCTION IF EXISTS documents_search_vector_update()"
        assert conn.executed[-1] == "ALTER TABLE documents DROP COLUMN IF EXISTS search_vector"
        assert len(_executed_matching(conn, "DROP INDEX IF EXISTS")) == len(SEARCH_INDEXES)
        assert _executed_matching(conn, "DROP TEXT SEARCH CONFIGURATION IF EXISTS custom_search")

    @pytest.mark.asyncio
    async def test_index_drop_failure_tolerated(self):
        conn = _make_conn(fail_on=("DROP INDEX",))
        await SearchSchemaManager(_settings()).rollback(conn)
        assert conn.executed[-1].startswith("ALTER TABLE documents DROP COLUMN")

    @pytest.mark.asyncio
    async def test_trigger_drop_failure_raises(self):
        conn = _make_conn(fail_on=("DROP TRIGGER",))
        with pytest.raises(SchemaSetupError):
            await SearchSchemaManager(_settings()).rollback(conn)


# ---------------------------------------------------------------------------
# Engine-level entry points
# ---------------------------------------------------------------------------


class TestEngineEntryPoints:
    @pytest.mark.asyncio
    async def test_setup_runs_in_one_transaction(self):
        conn = _make_conn()
        engine = _fake_engine(conn)

        report = await setup_search_schema(engine, _settings())

        engine.begin.assert_called_once_with()
        assert engine.transactions[0].exited_with is None
        assert report.text_config == "custom_search"
        assert _executed_matching(conn, "ADD COLUMN IF NOT EXISTS search_vector")

    @pytest.mark.asyncio
    async def test_rollback_runs_in_one_transaction(self):
        conn = _make_conn()
        engine = _fake_engine(conn)

        await rollback_search_schema(engine, _settings())

        engine.begin.assert_called_once_with()
        assert engine.transactions[0].exited_with is None
        assert conn.executed[0].startswith("DROP TRIGGER IF EXISTS")
        assert conn.executed[-1] == "ALTER TABLE documents DROP COLUMN IF EXISTS search_vector"

    @pytest.mark.asyncio
    async def test_rollback_failure_aborts_transaction(self):
        conn = _make_conn(fail_on=("DROP FUNCTION",))
        engine = _fake_engine(conn)

        with pytest.raises(SchemaSetupError):
            await rollback_search_schema(engine, _settings())

        assert engine.transactions[0].exited_with is SchemaSetupError
        assert not _executed_matching(conn, "DROP COLUMN")
