# @TASK P2-T2.1 - Document search package

"""Multi-strategy document search over PostgreSQL full-text and pattern matching."""

from app.search.coordinator import StrategyCoordinator, build_coordinator
from app.search.schema import (
    SchemaSetupError,
    SchemaSetupReport,
    SearchSchemaManager,
    rollback_search_schema,
    setup_search_schema,
)
from app.search.service import DocumentSearchService
from app.search.strategies import FuzzyPrefixStrategy, SearchStrategy, WeightedPatternStrategy
from app.search.tokenizer import preprocess_query, tokenize
from app.search.types import DocumentSummary, SearchDiagnostics, SearchRequest, SearchResult

__all__ = [
    "DocumentSearchService",
    "DocumentSummary",
    "FuzzyPrefixStrategy",
    "SchemaSetupError",
    "SchemaSetupReport",
    "SearchDiagnostics",
    "SearchRequest",
    "SearchResult",
    "SearchSchemaManager",
    "SearchStrategy",
    "StrategyCoordinator",
    "WeightedPatternStrategy",
    "build_coordinator",
    "preprocess_query",
    "rollback_search_schema",
    "setup_search_schema",
    "tokenize",
]
