# @TASK P2-T2.6 - Document search service
# @TEST tests/test_search_service.py

"""Entry point used by the API layer for searching and listing documents."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.models import Document
from app.search.coordinator import StrategyCoordinator, build_coordinator, ensure_tokens
from app.search.filters import build_order_by, build_scope_filter
from app.search.types import DocumentSummary, SearchDiagnostics, SearchRequest, SearchResult

logger = logging.getLogger(__name__)

SUGGESTION_MIN_SIMILARITY = 0.1


class DocumentSearchService:
    """Search, list and suggest over one user's documents.

    Args:
        session: An async SQLAlchemy session for database queries.
        coordinator: Strategy coordinator; built from settings when omitted.
        settings: Optional settings override.
    """

    def __init__(
        self,
        session: AsyncSession,
        coordinator: StrategyCoordinator | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._coordinator = coordinator or build_coordinator(session, settings or get_settings())

    async def search(self, request: SearchRequest) -> SearchResult:
        """Ranked search. Degenerate input returns an empty result, never raises."""
        result, _ = await self.search_with_diagnostics(request)
        return result

    async def search_with_diagnostics(self, request: SearchRequest) -> tuple[SearchResult, SearchDiagnostics]:
        request = ensure_tokens(request)
        if not request.tokens:
            return SearchResult.empty(request), SearchDiagnostics()

        result, diagnostics = await self._coordinator.search_with_diagnostics(request, build_scope_filter(request))
        logger.info(
            "Search served: strategy=%s, query=%r, total=%d, timed_out=%s, failed=%s",
            diagnostics.strategy,
            request.query,
            result.total,
            diagnostics.timed_out,
            diagnostics.failed,
        )
        return result, diagnostics

    async def list_documents(self, request: SearchRequest) -> SearchResult:
        """Plain filtered listing ordered by the canonical sort mapping.

        Unlike ``search`` this is ordinary CRUD reading, so database errors
        propagate to the caller.
        """
        scope_filter = build_scope_filter(request)

        count_stmt = scope_filter(select(func.count()).select_from(Document))
        total = (await self._session.execute(count_stmt)).scalar_one()
        if not total:
            return SearchResult.empty(request)

        stmt = (
            scope_filter(select(Document))
            .order_by(*build_order_by(request.sort_by, request.sort_dir))
            .offset(request.offset)
            .limit(request.limit)
        )
        documents = (await self._session.execute(stmt)).scalars().all()
        return SearchResult.from_page(request, [DocumentSummary.from_document(doc) for doc in documents], total)

    async def suggest_titles(self, user_id: uuid.UUID, prefix: str, limit: int = 10) -> list[str]:
        """Titles similar to ``prefix`` by trigram similarity, best first."""
        prefix = prefix.strip()
        if not prefix:
            return []

        similarity = func.similarity(Document.title, prefix).label("score")
        stmt = (
            select(Document.title, similarity)
            .distinct()
            .where(
                Document.user_id == user_id,
                Document.deleted_at.is_(None),
                func.similarity(Document.title, prefix) > SUGGESTION_MIN_SIMILARITY,
            )
            .order_by(similarity.desc(), Document.title)
            .limit(limit)
        )

        try:
            rows = (await self._session.execute(stmt)).all()
        except SQLAlchemyError:
            logger.warning("Title suggestions failed for prefix: %r", prefix, exc_info=True)
            return []
        return [row.title for row in rows]
