# @TASK P2-T2.1 - Search request/result models
# @TEST tests/test_search_types.py

"""Value objects passed between the search service, coordinator and strategies.

``SearchRequest`` is built once per call and never mutated; a copy with
derived tokens is produced with ``model_copy`` when needed.
``SearchResult`` is always constructed fresh and already sliced to the
requested page.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Sequence
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from app.models import Document


class SearchRequest(BaseModel):
    """Query intent for one search call, scoped to a single owner."""

    model_config = ConfigDict(frozen=True)

    user_id: uuid.UUID
    query: str = ""
    tokens: tuple[str, ...] = ()
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    file_type: str | None = None
    status: str | None = None
    tags: str | None = None
    sort_by: str = "date"
    sort_dir: str = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class DocumentSummary(BaseModel):
    """Searchable projection of a document returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: str | None = None
    original_file_name: str
    file_size: int = 0
    file_type: str
    mime_type: str | None = None
    status: str | None = None
    tags: str | None = None
    is_public: bool = False
    view_count: int = 0
    download_count: int = 0
    user_id: uuid.UUID
    created_at: datetime | None = None
    updated_at: datetime | None = None
    search_score: float | None = None

    @classmethod
    def from_document(cls, document: Document, score: float | None = None) -> DocumentSummary:
        summary = cls.model_validate(document)
        if score is not None:
            summary.search_score = float(score)
        return summary


class SearchResult(BaseModel):
    """A page of matched documents plus pagination metadata."""

    documents: list[DocumentSummary] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    total_pages: int = 0

    @classmethod
    def empty(cls, request: SearchRequest) -> SearchResult:
        """Zero-match result echoing the request's pagination."""
        return cls(documents=[], total=0, page=request.page, limit=request.limit, total_pages=0)

    @classmethod
    def from_page(
        cls,
        request: SearchRequest,
        documents: Sequence[DocumentSummary],
        total: int,
    ) -> SearchResult:
        return cls(
            documents=list(documents)[: request.limit],
            total=total,
            page=request.page,
            limit=request.limit,
            total_pages=math.ceil(total / request.limit),
        )


class SearchDiagnostics(BaseModel):
    """Out-of-band record of how a search was served.

    Lets callers tell "nothing matched" apart from "the search subsystem
    failed" without changing the shape of ``SearchResult``.
    """

    considered: list[str] = Field(default_factory=list)
    strategy: str | None = None
    timed_out: bool = False
    failed: bool = False
