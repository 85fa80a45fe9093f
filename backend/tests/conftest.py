# @TASK P0-T0.3 - Test configuration
import os
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app modules
os.environ.setdefault("DATABASE_URL", "postgresql+asyncpg://docsearch:docsearch@db:5432/docsearch_test")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only")
os.environ.setdefault("SEARCH_SETUP_ON_STARTUP", "false")

TEST_USER_ID = uuid.UUID("6f1c2d4e-8a9b-4c3d-9e2f-1a2b3c4d5e6f")


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def user_id() -> uuid.UUID:
    return TEST_USER_ID


@pytest.fixture
def mock_session() -> AsyncMock:
    """AsyncSession stand-in; tests queue results on ``execute``."""
    session = AsyncMock()
    session.execute = AsyncMock()
    return session


@pytest_asyncio.fixture(scope="function")
async def test_app():
    """Provide the FastAPI app with a mocked database session."""
    from app.database import get_db
    from app.main import app

    async def override_get_db():
        yield AsyncMock()

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client bound to the test app."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def make_auth_headers(sub: str = "testuser", user_id: uuid.UUID | str = TEST_USER_ID) -> dict[str, str]:
    """Create Authorization headers with a valid access token."""
    from app.services.auth_service import create_access_token

    token = create_access_token(data={"sub": sub, "user_id": str(user_id)})
    return {"Authorization": f"Bearer {token}"}


def make_document(**overrides):
    """Build an unsaved Document with every summary field populated."""
    from app.models import Document

    now = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
    values = {
        "id": uuid.uuid4(),
        "title": "Quarterly Report",
        "description": "Revenue figures for Q3",
        "file_name": "a1b2c3.pdf",
        "original_file_name": "quarterly_report.pdf",
        "file_size": 2048,
        "file_type": "pdf",
        "mime_type": "application/pdf",
        "status": "ready",
        "tags": "finance,reports",
        "is_public": False,
        "view_count": 3,
        "download_count": 1,
        "user_id": TEST_USER_ID,
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    return Document(**values)


def scalar_result(value) -> MagicMock:
    """Result whose ``scalar_one()``/``scalar()`` return ``value``."""
    result = MagicMock()
    result.scalar_one.return_value = value
    result.scalar.return_value = value
    return result


def rows_result(rows: list) -> MagicMock:
    """Result whose ``all()`` returns ``rows`` and ``scalars().all()`` the first column."""
    result = MagicMock()
    result.all.return_value = rows
    result.scalars.return_value.all.return_value = [row[0] if isinstance(row, tuple) else row for row in rows]
    return result
