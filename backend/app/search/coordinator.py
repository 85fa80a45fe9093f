# @TASK P2-T2.5 - Strategy coordinator
# @TEST tests/test_coordinator.py

"""Pick the strategy that serves a search request.

Strategies are tried in registration order, so order encodes priority:
fuzzy-prefix first for stemmed, ranked matches, weighted-pattern after it
for short or exact-substring queries the fuzzy length guard rejects.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.search.filters import ScopeFilter, build_scope_filter
from app.search.strategies import FuzzyPrefixStrategy, SearchStrategy, WeightedPatternStrategy
from app.search.tokenizer import tokenize
from app.search.types import SearchDiagnostics, SearchRequest, SearchResult

logger = logging.getLogger(__name__)


def ensure_tokens(request: SearchRequest) -> SearchRequest:
    """Return ``request`` with tokens derived from its query when missing."""
    if request.tokens or not request.query:
        return request
    return request.model_copy(update={"tokens": tuple(tokenize(request.query))})


class StrategyCoordinator:
    """Delegate a request to the first strategy able to handle it.

    Each strategy call is bounded by ``timeout`` seconds; a timeout or an
    unexpected failure is logged and served as an empty page, never raised.

    Args:
        strategies: Strategies in priority order.
        timeout: Per-strategy deadline in seconds (None disables it).
        fall_through_on_empty: When True, a capable strategy that finds
            nothing hands the request to the next capable strategy.
    """

    def __init__(
        self,
        strategies: Sequence[SearchStrategy],
        timeout: float | None = None,
        fall_through_on_empty: bool = False,
    ) -> None:
        self._strategies = list(strategies)
        self._timeout = timeout
        self._fall_through_on_empty = fall_through_on_empty

    @property
    def strategies(self) -> list[SearchStrategy]:
        return list(self._strategies)

    async def search(self, request: SearchRequest, scope_filter: ScopeFilter | None = None) -> SearchResult:
        result, _ = await self.search_with_diagnostics(request, scope_filter)
        return result

    async def search_with_diagnostics(
        self,
        request: SearchRequest,
        scope_filter: ScopeFilter | None = None,
    ) -> tuple[SearchResult, SearchDiagnostics]:
        """Run the search and report which strategy answered and how.

        Args:
            request: The search request; tokens are derived from the query
                when not supplied.
            scope_filter: Predicate applied before counting and ranking.
                Defaults to ``build_scope_filter(request)``.

        Returns:
            Tuple of (result, diagnostics). ``result`` is empty when no
            strategy can handle the request.
        """
        request = ensure_tokens(request)
        if scope_filter is None:
            scope_filter = build_scope_filter(request)

        diagnostics = SearchDiagnostics()
        result = SearchResult.empty(request)

        for strategy in self._strategies:
            if not strategy.can_handle(request):
                continue

            diagnostics.considered.append(strategy.name)
            logger.debug("Strategy %s selected for query %r", strategy.name, request.query)
            result = await self._safe_search(strategy, request, scope_filter, diagnostics)
            diagnostics.strategy = strategy.name

            if result.total > 0 or not self._fall_through_on_empty:
                break

        return result, diagnostics

    async def _safe_search(
        self,
        strategy: SearchStrategy,
        request: SearchRequest,
        scope_filter: ScopeFilter,
        diagnostics: SearchDiagnostics,
    ) -> SearchResult:
        """Call strategy.search() with a deadline and error handling.

        A timeout cancels the strategy mid-query, which leaves the session's
        connection invalidated; the strategy is asked to recover before the
        next strategy or the request's commit touches the session.
        """
        try:
            return await asyncio.wait_for(
                strategy.search(request, scope_filter, diagnostics),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.warning("%s strategy timed out after %ss for query: %r", strategy.name, self._timeout, request.query)
            diagnostics.timed_out = True
        except Exception:
            logger.warning("%s strategy failed for query: %r", strategy.name, request.query, exc_info=True)
            diagnostics.failed = True
        await strategy.recover()
        return SearchResult.empty(request)


def build_coordinator(session: AsyncSession, settings: Settings | None = None) -> StrategyCoordinator:
    """Create the default coordinator: fuzzy-prefix, then weighted-pattern."""
    if settings is None:
        settings = get_settings()

    return StrategyCoordinator(
        strategies=[
            FuzzyPrefixStrategy(session, text_config=settings.SEARCH_LANGUAGE),
            WeightedPatternStrategy(session),
        ],
        timeout=settings.SEARCH_TIMEOUT_SECONDS,
        fall_through_on_empty=settings.SEARCH_FALLTHROUGH_ON_EMPTY,
    )
