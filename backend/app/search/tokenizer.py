# @TASK P2-T2.2 - Query tokenizer
# @TEST tests/test_tokenizer.py

"""Turn raw query strings into normalized search tokens.

No stemming happens here; stemming is left to PostgreSQL's text search
configuration when the fuzzy strategy evaluates its tsquery.
"""

from __future__ import annotations

import re
import unicodedata

_CAMEL_BOUNDARY_RE = re.compile(r"([a-z])([A-Z])")
_SEPARATOR_RE = re.compile(r"[_\-.]")


def tokenize(query: str) -> list[str]:
    """Lower-case and whitespace-split a query, dropping empty tokens.

    >>> tokenize("  Quarterly   REPORT ")
    ['quarterly', 'report']
    """
    if not query:
        return []
    return query.lower().split()


def _strip_punctuation(text: str) -> str:
    # Apostrophes survive so names like O'Brien stay one token
    return "".join(
        " " if ch != "'" and unicodedata.category(ch).startswith("P") else ch
        for ch in text
    )


def preprocess_query(raw: str) -> tuple[str, list[str]]:
    """Normalize user input from the HTTP edge.

    Splits camelCase words, treats ``_``, ``-`` and ``.`` as separators,
    replaces punctuation other than the apostrophe with spaces and keeps
    only tokens of two or more characters.

    Args:
        raw: Query text exactly as the user typed it.

    Returns:
        Tuple of (clean query, tokens). The clean query is the tokens
        joined by single spaces, so an input without usable tokens
        yields ``("", [])``.
    """
    if not raw:
        return "", []

    text = _CAMEL_BOUNDARY_RE.sub(r"\1 \2", raw)
    text = _SEPARATOR_RE.sub(" ", text)
    text = _strip_punctuation(text)

    tokens = [token for token in tokenize(text) if len(token) >= 2]
    return " ".join(tokens), tokens
