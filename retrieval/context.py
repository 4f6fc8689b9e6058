"""Context assembly and citation derivation from search hits."""

from __future__ import annotations

import logging

from core.config import settings
from core.models import Citation, SearchHit

logger = logging.getLogger(__name__)

SOURCE_SEPARATOR = "\n\n---\n\n"


def format_source(index: int, hit: SearchHit) -> str:
    return f"[Source {index}: {hit.payload.title}]\n{hit.payload.text}"


def assemble_context(
    hits: list[SearchHit], char_budget: int | None = None
) -> tuple[str, list[SearchHit]]:
    """Join hits best-first into labeled blocks within `char_budget`.

    Lowest-scoring hits are dropped first when the budget is exceeded.
    Returns (context, hits_included).
    """
    if char_budget is None:
        char_budget = settings.context_char_budget

    ranked = sorted(hits, key=lambda h: h.score, reverse=True)
    included = list(ranked)
    while included and len(_join(included)) > char_budget:
        included.pop()

    dropped = len(ranked) - len(included)
    if dropped:
        logger.debug("Dropped %d lowest-scoring hits to fit context budget", dropped)
    return _join(included), included


def _join(hits: list[SearchHit]) -> str:
    return SOURCE_SEPARATOR.join(format_source(i, h) for i, h in enumerate(hits, start=1))


def derive_citations(hits: list[SearchHit]) -> list[Citation]:
    """One citation per document, in order of first appearance."""
    seen: set[str] = set()
    citations = []
    for hit in hits:
        doc_id = hit.payload.document_id
        if doc_id in seen:
            continue
        seen.add(doc_id)
        citations.append(Citation(title=hit.payload.title, document_id=doc_id))
    return citations
