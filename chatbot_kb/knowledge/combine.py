"""Merge internal and external search results."""

from typing import Sequence

from chatbot_kb.core.ai_constants import COMBINED_RESULT_LIMIT, INTERNAL_SOURCE
from chatbot_kb.knowledge.models import SearchResult


def combine_results(
    internal: Sequence[SearchResult],
    external: Sequence[SearchResult],
    limit: int = COMBINED_RESULT_LIMIT,
) -> list[SearchResult]:
    """Concatenate result lists, putting ``source == "internal"`` first.

    Only the source label reorders results; within each group the incoming
    order (already relevance-sorted) is kept.
    """
    combined = [*internal, *external]
    combined.sort(key=lambda result: 0 if result.source == INTERNAL_SOURCE else 1)
    return combined[:limit]
