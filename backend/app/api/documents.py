# @TASK P4-T4.3 - Document listing and search API endpoint
# @TEST tests/test_api_documents.py

"""Document listing/search API.

Provides:
- ``GET /documents`` -- Ranked search when ``search`` has usable tokens,
  otherwise a filtered, sorted listing.
- ``GET /documents/suggestions`` -- Title suggestions (autocomplete).

All endpoints require JWT Bearer authentication and only ever see the
caller's own documents.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from app.database import get_db
from app.search.service import DocumentSearchService
from app.search.tokenizer import preprocess_query
from app.search.types import DocumentSummary, SearchRequest
from app.services.auth_service import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class DocumentListResponse(BaseModel):
    """A page of documents plus pagination metadata."""

    documents: list[DocumentSummary]
    total: int
    page: int
    limit: int
    total_pages: int


class SuggestionResponse(BaseModel):
    """Title suggestion (autocomplete) response."""

    suggestions: list[str]
    prefix: str


# ---------------------------------------------------------------------------
# Service factory (extracted for easy mocking in tests)
# ---------------------------------------------------------------------------


def _build_search_service(session: AsyncSession) -> DocumentSearchService:
    """Create a DocumentSearchService bound to the request session."""
    return DocumentSearchService(session=session)


def _clamp_pagination(page: int, limit: int) -> tuple[int, int]:
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    search: str | None = Query(None, description="Free-text search query"),  # noqa: B008
    page: int = Query(1, description="1-based page number"),  # noqa: B008
    limit: int = Query(DEFAULT_PAGE_SIZE, description="Page size (clamped to 1-100)"),  # noqa: B008
    file_type: str | None = Query(None, description="Exact file type, or 'all'"),  # noqa: B008
    status: str | None = Query(None, description="Exact status, or 'all'"),  # noqa: B008
    tags: str | None = Query(None, description="Comma-separated tag fragments"),  # noqa: B008
    sort_by: str = Query("date", description="date, title, size, views or downloads"),  # noqa: B008
    sort_dir: str = Query("desc", description="asc or desc"),  # noqa: B008
    current_user: dict = Depends(get_current_user),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> DocumentListResponse:
    """List or search the caller's documents.

    A query that cleans down to nothing (``"!!"``, ``"a"``) is treated as
    no query at all and served as a plain listing.
    """
    page, limit = _clamp_pagination(page, limit)
    clean_query, tokens = preprocess_query(search or "")

    request = SearchRequest(
        user_id=current_user["user_id"],
        query=clean_query,
        tokens=tuple(tokens),
        page=page,
        limit=limit,
        file_type=file_type,
        status=status,
        tags=tags,
        sort_by=sort_by,
        sort_dir=sort_dir,
    )

    service = _build_search_service(db)
    if clean_query:
        logger.info(
            "Document search: user=%s, query=%r, page=%d, limit=%d",
            current_user.get("username"),
            clean_query,
            page,
            limit,
        )
        result = await service.search(request)
    else:
        result = await service.list_documents(request)

    return DocumentListResponse(**result.model_dump())


@router.get("/suggestions", response_model=SuggestionResponse)
async def suggest_titles(
    q: str = Query(..., min_length=1, description="Partial title"),  # noqa: B008
    limit: int = Query(10, ge=1, le=50, description="Maximum number of suggestions"),  # noqa: B008
    current_user: dict = Depends(get_current_user),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> SuggestionResponse:
    """Suggest existing titles similar to ``q``."""
    service = _build_search_service(db)
    suggestions = await service.suggest_titles(current_user["user_id"], q, limit=limit)
    return SuggestionResponse(suggestions=suggestions, prefix=q)
