# @TASK P2-T2.3 - Shared scope filter and sort builder
# @TEST tests/test_filters.py

"""Scope filtering and canonical ordering shared by every strategy.

The scope filter is a plain callable applied to a ``Select`` before any
count or ranking happens, so totals and pages always agree on the same
row set.
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import ColumnElement, Select, func

from app.constants import FILTER_ALL
from app.models import Document
from app.search.types import SearchRequest

ScopeFilter = Callable[[Select], Select]

SORTABLE_COLUMNS: dict[str, ColumnElement] = {
    "date": Document.created_at,
    "title": func.lower(Document.title),
    "size": Document.file_size,
    "views": Document.view_count,
    "downloads": Document.download_count,
}


def _is_restricted(value: str | None) -> bool:
    return bool(value) and value != FILTER_ALL


def split_tag_fragments(tags: str | None) -> list[str]:
    """Split a comma-separated tag filter into trimmed, non-empty fragments."""
    if not tags:
        return []
    return [fragment.strip() for fragment in tags.split(",") if fragment.strip()]


def build_scope_filter(request: SearchRequest) -> ScopeFilter:
    """Build the predicate restricting a statement to the caller's documents.

    Always scopes to ``request.user_id`` and excludes soft-deleted rows.
    ``file_type`` and ``status`` are exact matches unless empty or ``"all"``.
    Every tag fragment must independently appear in the tags column.
    """
    fragments = split_tag_fragments(request.tags)

    def apply(stmt: Select) -> Select:
        stmt = stmt.where(Document.user_id == request.user_id, Document.deleted_at.is_(None))
        if _is_restricted(request.file_type):
            stmt = stmt.where(Document.file_type == request.file_type)
        if _is_restricted(request.status):
            stmt = stmt.where(Document.status == request.status)
        for fragment in fragments:
            stmt = stmt.where(Document.tags.icontains(fragment, autoescape=True))
        return stmt

    return apply


def build_order_by(sort_by: str | None, sort_dir: str | None) -> list[ColumnElement]:
    """ORDER BY clauses for non-relevance listings.

    Unknown sort keys fall back to newest first rather than raising.
    ``id`` is appended so pages never overlap when sort values tie.
    """
    column = SORTABLE_COLUMNS.get((sort_by or "").lower())
    if column is None:
        return [Document.created_at.desc(), Document.id.asc()]

    ordered = column.asc() if (sort_dir or "").lower() == "asc" else column.desc()
    return [ordered, Document.id.asc()]


def relevance_order_by(score: ColumnElement) -> list[ColumnElement]:
    """Score descending, ties broken by recency."""
    return [score.desc(), Document.created_at.desc()]
