# @TASK P2-T2.4 - Fuzzy-prefix and weighted-pattern search strategies
# @TEST tests/test_strategies.py

"""Ranking strategies for document search.

Two strategies are available and the set is intentionally closed:

- ``FuzzyPrefixStrategy``: OR-joined prefix tsquery against the
  precomputed, field-weighted ``search_vector``; ranked by ``ts_rank``.
- ``WeightedPatternStrategy``: every token must appear as a substring
  somewhere in title/description/tags/filename; ranked by an explicit
  per-field score (title 2, description 1, tags 1, filename 1).

Both count first and return an empty page when nothing matches, order by
score descending then ``created_at`` descending, and turn any database
error into an empty result.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence

from sqlalchemy import ColumnElement, and_, case, func, literal_column, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Document
from app.search.filters import ScopeFilter, relevance_order_by
from app.search.types import DocumentSummary, SearchDiagnostics, SearchRequest, SearchResult

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_LEXEME_RE = re.compile(r"[^\W_]+")

# ts_rank weights in {D, C, B, A} order: filename, tags, description, title
_RANK_WEIGHTS = literal_column("'{0.1, 0.2, 0.4, 1.0}'::float4[]")

# Field weights for the pattern score, highest tier first
PATTERN_FIELD_WEIGHTS: tuple[tuple[str, int], ...] = (
    ("title", 2),
    ("description", 1),
    ("tags", 1),
    ("original_file_name", 1),
)


class SearchStrategy(ABC):
    """Base class for a ranked, paginated search over the documents table.

    Subclasses implement ``can_handle`` (a cheap guard with no I/O) and
    ``_search``. ``search`` wraps ``_search`` so that query-time errors
    become an empty page instead of propagating.

    Args:
        session: An async SQLAlchemy session for database queries.
    """

    name: str = "strategy"

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @abstractmethod
    def can_handle(self, request: SearchRequest) -> bool:
        """Return True when this strategy should serve ``request``."""

    @abstractmethod
    async def _search(self, request: SearchRequest, scope_filter: ScopeFilter) -> SearchResult: ...

    async def search(
        self,
        request: SearchRequest,
        scope_filter: ScopeFilter,
        diagnostics: SearchDiagnostics | None = None,
    ) -> SearchResult:
        """Execute the strategy; database failures yield an empty result."""
        try:
            return await self._search(request, scope_filter)
        except SQLAlchemyError:
            logger.warning("%s strategy failed for query: %r", self.name, request.query, exc_info=True)
            if diagnostics is not None:
                diagnostics.failed = True
            await self.recover()
            return SearchResult.empty(request)

    async def recover(self) -> None:
        """Leave the session usable after a failed or interrupted query.

        Search only reads, so the whole open transaction is rolled back.
        This clears an aborted PostgreSQL transaction as well as a
        connection invalidated by cancellation mid-query; the next
        statement on the session starts a fresh transaction.
        """
        try:
            await self._session.rollback()
        except SQLAlchemyError:
            logger.warning("%s strategy could not roll back its session", self.name, exc_info=True)

    async def _count_and_fetch(
        self,
        request: SearchRequest,
        scope_filter: ScopeFilter,
        match: ColumnElement,
        score: ColumnElement,
    ) -> SearchResult:
        """Count matches under scope + match, then fetch one ranked page."""
        count_stmt = scope_filter(select(func.count()).select_from(Document)).where(match)
        total = (await self._session.execute(count_stmt)).scalar_one()
        if not total:
            return SearchResult.empty(request)

        stmt = (
            scope_filter(select(Document, score))
            .where(match)
            .order_by(*relevance_order_by(score))
            .offset(request.offset)
            .limit(request.limit)
        )
        rows = (await self._session.execute(stmt)).all()

        documents = [DocumentSummary.from_document(document, doc_score) for document, doc_score in rows]
        return SearchResult.from_page(request, documents, total)


def build_prefix_query(tokens: Sequence[str], min_token_length: int = 3) -> str:
    """Build an OR-joined prefix tsquery string from query tokens.

    Tokens shorter than ``min_token_length`` are ignored. Characters with
    tsquery meaning are dropped; a token that splits into several words
    (``o'brien``) becomes an AND group of prefixes.

    >>> build_prefix_query(["quarterly", "rep", "ai"])
    'quarterly:* | rep:*'
    """
    terms: list[str] = []
    for token in tokens:
        if len(token) < min_token_length:
            continue
        parts = _LEXEME_RE.findall(token)
        if not parts:
            continue
        group = " & ".join(f"{part}:*" for part in parts)
        terms.append(f"({group})" if len(parts) > 1 else group)
    return " | ".join(terms)


class FuzzyPrefixStrategy(SearchStrategy):
    """Prefix-matching full-text search ranked by the stored search vector.

    Tier weights baked into ``search_vector`` by the write trigger decide
    which field matches outrank which: title > description > tags > filename.

    Args:
        session: An async SQLAlchemy session for database queries.
        text_config: PostgreSQL text search configuration used for the query.
    """

    name = "fuzzy_prefix"
    MIN_QUERY_LENGTH = 3
    MIN_TOKEN_LENGTH = 3

    def __init__(self, session: AsyncSession, text_config: str = "english") -> None:
        super().__init__(session)
        if not _IDENTIFIER_RE.match(text_config):
            raise ValueError(f"Invalid text search configuration name: {text_config!r}")
        self._text_config = text_config

    def can_handle(self, request: SearchRequest) -> bool:
        return bool(request.tokens) and len(request.query.strip()) >= self.MIN_QUERY_LENGTH

    async def _search(self, request: SearchRequest, scope_filter: ScopeFilter) -> SearchResult:
        prefix_query = build_prefix_query(request.tokens, self.MIN_TOKEN_LENGTH)
        if not prefix_query:
            return SearchResult.empty(request)

        tsquery = func.to_tsquery(literal_column(f"'{self._text_config}'"), prefix_query)
        match = Document.search_vector.op("@@")(tsquery)
        score = func.ts_rank(_RANK_WEIGHTS, Document.search_vector, tsquery).label("search_score")

        return await self._count_and_fetch(request, scope_filter, match, score)


class WeightedPatternStrategy(SearchStrategy):
    """Case-insensitive substring search with an explicit per-field score.

    Each qualifying token must match at least one field (AND across tokens,
    OR across fields). The score is recomputed per query and never stored.
    Tokens reach the database only as bound parameters with LIKE wildcards
    escaped, so quotes and ``%``/``_`` in user input are matched literally.
    """

    name = "weighted_pattern"
    MIN_TOKEN_LENGTH = 2

    def can_handle(self, request: SearchRequest) -> bool:
        return bool(request.tokens)

    @staticmethod
    def _fields() -> list[tuple[ColumnElement, int]]:
        return [(getattr(Document, field), weight) for field, weight in PATTERN_FIELD_WEIGHTS]

    def build_match(self, tokens: Sequence[str]) -> ColumnElement:
        """AND over tokens of (OR over fields of substring match)."""
        fields = self._fields()
        return and_(
            *(or_(*(column.icontains(token, autoescape=True) for column, _ in fields)) for token in tokens)
        )

    def build_score(self, tokens: Sequence[str]) -> ColumnElement:
        """Sum of field weights for every (token, field) substring hit."""
        score: ColumnElement | None = None
        for token in tokens:
            for column, weight in self._fields():
                term = case((column.icontains(token, autoescape=True), weight), else_=0)
                score = term if score is None else score + term
        return score.label("search_score")

    async def _search(self, request: SearchRequest, scope_filter: ScopeFilter) -> SearchResult:
        tokens = [token for token in request.tokens if len(token) >= self.MIN_TOKEN_LENGTH]
        if not tokens:
            return SearchResult.empty(request)

        return await self._count_and_fetch(request, scope_filter, self.build_match(tokens), self.build_score(tokens))
