# @TASK P0-T0.3 - Alembic async migration environment for the documents schema

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context
from app.config import get_settings
from app.database import Base
from app.search.schema import SEARCH_INDEXES

# Alembic Config object (provides access to alembic.ini values)
config = context.config

# Override sqlalchemy.url from application settings (environment variable)
settings = get_settings()
config.set_main_option("sqlalchemy.url", settings.async_database_url)

# Configure Python logging from alembic.ini
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Target metadata for autogenerate support.
# Import all models so that Base.metadata is fully populated.
import app.models  # noqa: F401, E402

target_metadata = Base.metadata

# Search indexes live outside the ORM metadata (see app.search.schema)
_SEARCH_INDEX_NAMES = {index.name for index in SEARCH_INDEXES}


def include_object(obj, name, type_, reflected, compare_to) -> bool:
    """Keep autogenerate from proposing drops of the search indexes."""
    return not (type_ == "index" and reflected and name in _SEARCH_INDEX_NAMES)


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Configures the context with just a URL and not an Engine.
    Calls to context.execute() emit the given string to the script output.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Run the actual migrations."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations in 'online' mode with an async engine."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (async wrapper)."""
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
