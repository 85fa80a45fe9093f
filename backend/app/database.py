# @TASK P0-T0.3 - Async engine and request sessions for the documents store

"""Engine, session factory and declarative base for the documents table.

One ``AsyncSession`` is opened per API request. Search strategies share it
and roll it back themselves after a failed or timed-out query, so the
commit in ``get_db`` only ever sees a usable session.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.async_database_url,
    echo=False,
    pool_pre_ping=True,
    # Shows up in pg_stat_activity next to the search queries
    connect_args={"server_settings": {"application_name": "docsearch"}},
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the document models."""


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding the request's session.

    Commits when the endpoint returns; on any exception the session is
    rolled back and the exception re-raised.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
