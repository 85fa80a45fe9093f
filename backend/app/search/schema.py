# @TASK P2-T2.7 - Full-text search schema and index setup
# @TEST tests/test_search_schema.py

"""Idempotent setup of the physical search representation.

Installs, in order:

1. ``pg_trgm`` extension (best-effort)
2. ``documents.search_vector`` column (critical)
3. custom text search configuration, falling back to the built-in
   language configuration (best-effort)
4. trigger function + trigger recomputing the vector on writes (critical)
5. backfill of rows that predate the trigger (best-effort)
6. GIN / trigram / lower() btree / composite indexes (per-index criticality)
7. ``pg_trgm.similarity_threshold``, durable per database with a session
   fallback (best-effort)
8. verification checks (log only)

Critical failures raise ``SchemaSetupError`` and abort the surrounding
transaction. Best-effort steps run inside a SAVEPOINT so their failure
leaves the transaction usable.

The vector weights title A, description B, tags C, original_file_name D.
Changing that order changes ranking for every existing document.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

TABLE = "documents"
VECTOR_FUNCTION = "documents_search_vector_update"
VECTOR_TRIGGER = "documents_search_vector_trigger"

# (column, weight) from highest to lowest tier
VECTOR_FIELDS: tuple[tuple[str, str], ...] = (
    ("title", "A"),
    ("description", "B"),
    ("tags", "C"),
    ("original_file_name", "D"),
)


class SchemaSetupError(Exception):
    """A critical search setup step failed."""

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        super().__init__(f"Search schema step '{step}' failed: {message}")


@dataclass(frozen=True)
class IndexSpec:
    name: str
    ddl: str
    description: str
    critical: bool


SEARCH_INDEXES: tuple[IndexSpec, ...] = (
    IndexSpec(
        "idx_documents_search_vector",
        f"CREATE INDEX IF NOT EXISTS idx_documents_search_vector ON {TABLE} USING gin (search_vector)",
        "GIN index for full-text search",
        critical=True,
    ),
    IndexSpec(
        "idx_documents_title_trgm",
        f"CREATE INDEX IF NOT EXISTS idx_documents_title_trgm ON {TABLE} USING gin (title gin_trgm_ops)",
        "Trigram index for title fuzzy search",
        critical=False,
    ),
    IndexSpec(
        "idx_documents_description_trgm",
        f"CREATE INDEX IF NOT EXISTS idx_documents_description_trgm ON {TABLE} USING gin (description gin_trgm_ops)",
        "Trigram index for description fuzzy search",
        critical=False,
    ),
    IndexSpec(
        "idx_documents_tags_trgm",
        f"CREATE INDEX IF NOT EXISTS idx_documents_tags_trgm ON {TABLE} USING gin (tags gin_trgm_ops)",
        "Trigram index for tag substring search",
        critical=False,
    ),
    IndexSpec(
        "idx_documents_original_file_name_trgm",
        f"CREATE INDEX IF NOT EXISTS idx_documents_original_file_name_trgm "
        f"ON {TABLE} USING gin (original_file_name gin_trgm_ops)",
        "Trigram index for filename fuzzy search",
        critical=False,
    ),
    IndexSpec(
        "idx_documents_title_lower",
        f"CREATE INDEX IF NOT EXISTS idx_documents_title_lower ON {TABLE} USING btree (lower(title))",
        "Case-normalized index for title pattern matching",
        critical=True,
    ),
    IndexSpec(
        "idx_documents_description_lower",
        f"CREATE INDEX IF NOT EXISTS idx_documents_description_lower ON {TABLE} USING btree (lower(description))",
        "Case-normalized index for description pattern matching",
        critical=True,
    ),
    IndexSpec(
        "idx_documents_tags_lower",
        f"CREATE INDEX IF NOT EXISTS idx_documents_tags_lower ON {TABLE} USING btree (lower(tags))",
        "Case-normalized index for tag pattern matching",
        critical=True,
    ),
    IndexSpec(
        "idx_documents_original_file_name_lower",
        f"CREATE INDEX IF NOT EXISTS idx_documents_original_file_name_lower "
        f"ON {TABLE} USING btree (lower(original_file_name))",
        "Case-normalized index for filename pattern matching",
        critical=True,
    ),
    IndexSpec(
        "idx_documents_user_created",
        f"CREATE INDEX IF NOT EXISTS idx_documents_user_created ON {TABLE} (user_id, created_at DESC)",
        "Composite index for default-sorted listing",
        critical=True,
    ),
    IndexSpec(
        "idx_documents_status_type",
        f"CREATE INDEX IF NOT EXISTS idx_documents_status_type ON {TABLE} (status, file_type)",
        "Composite index for structural filters",
        critical=False,
    ),
)


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def search_vector_sql(text_config: str, row_prefix: str = "") -> str:
    """SQL expression building the weighted vector from the four source fields.

    >>> search_vector_sql("english", "NEW.").splitlines()[0]
    "setweight(to_tsvector('english', coalesce(NEW.title, '')), 'A') ||"
    """
    config = _check_identifier(text_config)
    parts = [
        f"setweight(to_tsvector('{config}', coalesce({row_prefix}{column}, '')), '{weight}')"
        for column, weight in VECTOR_FIELDS
    ]
    return " ||\n".join(parts)


def add_column_sql() -> str:
    return f"ALTER TABLE {TABLE} ADD COLUMN IF NOT EXISTS search_vector tsvector"


def trigger_function_sql(text_config: str) -> str:
    return f"""
        CREATE OR REPLACE FUNCTION {VECTOR_FUNCTION}() RETURNS trigger AS $$
        BEGIN
            NEW.search_vector :=
                {search_vector_sql(text_config, "NEW.")};
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """


def drop_trigger_sql() -> str:
    return f"DROP TRIGGER IF EXISTS {VECTOR_TRIGGER} ON {TABLE}"


def create_trigger_sql() -> str:
    source_columns = ", ".join(column for column, _ in VECTOR_FIELDS)
    return f"""
        CREATE TRIGGER {VECTOR_TRIGGER}
            BEFORE INSERT OR UPDATE OF {source_columns} ON {TABLE}
            FOR EACH ROW EXECUTE FUNCTION {VECTOR_FUNCTION}()
    """


def backfill_sql(text_config: str) -> str:
    return f"UPDATE {TABLE} SET search_vector =\n{search_vector_sql(text_config)}\nWHERE search_vector IS NULL"


def text_search_config_sql(name: str, language: str) -> list[str]:
    """Statements creating a stemming + simple fallback configuration."""
    name = _check_identifier(name)
    language = _check_identifier(language)
    return [
        f"CREATE TEXT SEARCH CONFIGURATION {name} (COPY = {language})",
        f"ALTER TEXT SEARCH CONFIGURATION {name} ALTER MAPPING FOR word, asciiword WITH {language}_stem, simple",
    ]


@dataclass
class SchemaSetupReport:
    """Outcome of ``SearchSchemaManager.apply``."""

    text_config: str = ""
    completed: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    backfilled: int = 0
    indexes_created: int = 0
    indexes_total: int = 0
    threshold_scope: str | None = None  # "database", "session" or None
    verification: dict[str, Any] = field(default_factory=dict)


class SearchSchemaManager:
    """Create and remove the search column, trigger, configuration and indexes.

    Args:
        settings: Optional settings override.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def apply(self, conn: AsyncConnection) -> SchemaSetupReport:
        """Run every setup step on ``conn``; safe to call repeatedly.

        Raises:
            SchemaSetupError: If a critical step fails.
        """
        language = _check_identifier(self._settings.SEARCH_LANGUAGE)
        report = SchemaSetupReport(text_config=language)

        await self._step(conn, report, "pg_trgm_extension", self._create_extension, critical=False)
        await self._step(conn, report, "search_vector_column", self._add_column, critical=True)

        created = await self._step(conn, report, "text_search_config", self._create_text_config, critical=False)
        if created:
            report.text_config = self._settings.SEARCH_TEXT_CONFIG
        else:
            logger.warning("Using built-in '%s' text search configuration", language)

        await self._step(
            conn,
            report,
            "search_vector_trigger",
            lambda c: self._install_trigger(c, report.text_config),
            critical=True,
        )

        backfilled = await self._step(
            conn,
            report,
            "backfill",
            lambda c: self._backfill(c, report.text_config),
            critical=False,
        )
        report.backfilled = backfilled or 0

        await self._create_indexes(conn, report)
        report.threshold_scope = await self._configure_trigram_threshold(conn, report)
        report.verification = await self.verify(conn, report.text_config)

        logger.info(
            "Search schema ready: config=%s, completed=%d, skipped=%s",
            report.text_config,
            len(report.completed),
            sorted(report.skipped),
        )
        return report

    async def rollback(self, conn: AsyncConnection) -> None:
        """Remove trigger, function, indexes, configuration and column.

        Objects that do not exist are ignored. Failing to drop the trigger,
        function or column raises ``SchemaSetupError``; index and
        configuration drops are best-effort.
        """
        logger.info("Starting full-text search rollback")

        await self._step(conn, None, "drop_trigger", lambda c: self._exec(c, drop_trigger_sql()), critical=True)
        await self._step(
            conn,
            None,
            "drop_function",
            lambda c: self._exec(c, f"DROP FUNCTION IF EXISTS {VECTOR_FUNCTION}()"),
            critical=True,
        )

        for index in reversed(SEARCH_INDEXES):
            await self._step(
                conn,
                None,
                f"drop_{index.name}",
                lambda c, name=index.name: self._exec(c, f"DROP INDEX IF EXISTS {name}"),
                critical=False,
            )

        config = _check_identifier(self._settings.SEARCH_TEXT_CONFIG)
        await self._step(
            conn,
            None,
            "drop_text_search_config",
            lambda c: self._exec(c, f"DROP TEXT SEARCH CONFIGURATION IF EXISTS {config}"),
            critical=False,
        )
        await self._step(
            conn,
            None,
            "drop_search_vector_column",
            lambda c: self._exec(c, f"ALTER TABLE {TABLE} DROP COLUMN IF EXISTS search_vector"),
            critical=True,
        )

        logger.info("Successfully completed full-text search rollback")

    async def verify(self, conn: AsyncConnection, text_config: str | None = None) -> dict[str, Any]:
        """Sample the setup and log findings. Never raises on findings."""
        text_config = text_config or self._settings.SEARCH_LANGUAGE
        findings: dict[str, Any] = {}

        try:
            async with conn.begin_nested():
                result = await conn.execute(
                    text("SELECT EXISTS(SELECT 1 FROM pg_extension WHERE extname = 'pg_trgm')")
                )
                findings["pg_trgm"] = bool(result.scalar())
            if not findings["pg_trgm"]:
                logger.warning("pg_trgm extension is not installed - fuzzy search features will be limited")
        except SQLAlchemyError as exc:
            logger.warning("Could not verify pg_trgm extension: %s", exc)

        try:
            async with conn.begin_nested():
                result = await conn.execute(
                    text(f"SELECT COUNT(*) AS total, COUNT(search_vector) AS with_vector FROM {TABLE}")
                )
                row = result.one()
            findings["total"] = int(row.total)
            findings["with_vector"] = int(row.with_vector)
            logger.info(
                "Document statistics: total=%d, with_search_vector=%d, without_search_vector=%d",
                row.total,
                row.with_vector,
                row.total - row.with_vector,
            )
        except SQLAlchemyError as exc:
            logger.warning("Could not verify document statistics: %s", exc)

        try:
            async with conn.begin_nested():
                result = await conn.execute(
                    text(
                        f"SELECT COUNT(*) FROM {TABLE} "
                        "WHERE search_vector @@ to_tsquery(CAST(:config AS regconfig), 'test:*')"
                    ),
                    {"config": text_config},
                )
                findings["smoke_test_matches"] = int(result.scalar() or 0)
            logger.info("FTS smoke test query returned %d results", findings["smoke_test_matches"])
        except SQLAlchemyError as exc:
            logger.warning("Could not run FTS smoke test: %s", exc)

        return findings

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _step(
        self,
        conn: AsyncConnection,
        report: SchemaSetupReport | None,
        name: str,
        action: Callable[[AsyncConnection], Awaitable[Any]],
        *,
        critical: bool,
    ) -> Any:
        try:
            if critical:
                result = await action(conn)
            else:
                async with conn.begin_nested():
                    result = await action(conn)
        except SQLAlchemyError as exc:
            if critical:
                logger.error("Critical search setup step %s failed: %s", name, exc)
                raise SchemaSetupError(name, str(exc)) from exc
            logger.warning("Skipping search setup step %s: %s", name, exc)
            if report is not None:
                report.skipped[name] = str(exc)
            return None

        if report is not None:
            report.completed.append(name)
        logger.debug("Search setup step %s done", name)
        return result

    @staticmethod
    async def _exec(conn: AsyncConnection, sql: str) -> None:
        await conn.execute(text(sql))

    async def _create_extension(self, conn: AsyncConnection) -> None:
        await self._exec(conn, 'CREATE EXTENSION IF NOT EXISTS "pg_trgm"')

    async def _add_column(self, conn: AsyncConnection) -> None:
        await self._exec(conn, add_column_sql())
        logger.info("Ensured %s.search_vector column", TABLE)

    async def _create_text_config(self, conn: AsyncConnection) -> bool:
        name = self._settings.SEARCH_TEXT_CONFIG
        result = await conn.execute(
            text("SELECT EXISTS(SELECT 1 FROM pg_ts_config WHERE cfgname = :name)"),
            {"name": name},
        )
        if result.scalar():
            return True

        for statement in text_search_config_sql(name, self._settings.SEARCH_LANGUAGE):
            await self._exec(conn, statement)
        logger.info("Created text search configuration %s", name)
        return True

    async def _install_trigger(self, conn: AsyncConnection, text_config: str) -> None:
        await self._exec(conn, trigger_function_sql(text_config))
        await self._exec(conn, drop_trigger_sql())
        await self._exec(conn, create_trigger_sql())
        logger.info("Installed %s trigger using '%s'", VECTOR_TRIGGER, text_config)

    async def _backfill(self, conn: AsyncConnection, text_config: str) -> int:
        result = await conn.execute(text(backfill_sql(text_config)))
        updated = max(result.rowcount or 0, 0)
        logger.info("Backfilled search_vector for %d existing documents", updated)
        return updated

    async def _create_indexes(self, conn: AsyncConnection, report: SchemaSetupReport) -> None:
        report.indexes_total = len(SEARCH_INDEXES)
        for index in SEARCH_INDEXES:
            await self._step(
                conn,
                report,
                index.name,
                lambda c, ddl=index.ddl: self._exec(c, ddl),
                critical=index.critical,
            )
            if index.name not in report.skipped:
                report.indexes_created += 1
            else:
                logger.warning("Index %s (%s) not created", index.name, index.description)
        logger.info("Created %d/%d search indexes", report.indexes_created, report.indexes_total)

    async def _configure_trigram_threshold(self, conn: AsyncConnection, report: SchemaSetupReport) -> str | None:
        threshold = float(self._settings.SEARCH_TRIGRAM_THRESHOLD)
        db_name = self._settings.database_name

        if db_name and _IDENTIFIER_RE.match(db_name):
            try:
                async with conn.begin_nested():
                    await self._exec(
                        conn, f'ALTER DATABASE "{db_name}" SET pg_trgm.similarity_threshold = {threshold}'
                    )
                logger.info("Set pg_trgm.similarity_threshold to %s for database '%s'", threshold, db_name)
                report.completed.append("trigram_threshold")
                return "database"
            except SQLAlchemyError as exc:
                logger.warning(
                    "Could not permanently set trigram similarity threshold for database '%s': %s", db_name, exc
                )
        else:
            logger.warning("Database name %r unusable, using session-scoped trigram threshold", db_name)

        try:
            async with conn.begin_nested():
                await conn.execute(text("SELECT set_limit(:threshold)"), {"threshold": threshold})
        except SQLAlchemyError as exc:
            logger.warning("Could not set session trigram similarity threshold: %s", exc)
            report.skipped["trigram_threshold"] = str(exc)
            return None

        report.completed.append("trigram_threshold")
        return "session"


async def setup_search_schema(engine: AsyncEngine, settings: Settings | None = None) -> SchemaSetupReport:
    """Apply the search schema in a single transaction on ``engine``."""
    async with engine.begin() as conn:
        return await SearchSchemaManager(settings).apply(conn)


async def rollback_search_schema(engine: AsyncEngine, settings: Settings | None = None) -> None:
    """Remove the search schema in a single transaction on ``engine``."""
    async with engine.begin() as conn:
        await SearchSchemaManager(settings).rollback(conn)
