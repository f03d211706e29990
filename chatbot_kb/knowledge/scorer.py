"""Lexical relevance scoring for knowledge items.

Additive point scoring against a fixed ceiling of MAX_RAW_SCORE raw points,
normalized into [0, 1]. Pure functions only: the same query and item always
produce the same score, and nothing here filters by threshold.
"""

from dataclasses import dataclass
from typing import Sequence

from chatbot_kb.core.ai_constants import (
    CONTENT_EXACT_POINTS,
    CONTENT_KEYWORD_POINTS,
    MAX_RAW_SCORE,
    TAG_POINTS,
    TAG_WHOLE_MATCH_UNITS,
    TAG_WORD_MATCH_UNITS,
    TITLE_EXACT_POINTS,
    TITLE_KEYWORD_POINTS,
    TYPE_BONUS_POINTS,
)
from chatbot_kb.knowledge.models import KnowledgeItem, Query


@dataclass(frozen=True)
class ScoreBreakdown:
    """Raw points earned by each signal."""

    title_exact: float = 0.0
    content_exact: float = 0.0
    title_keywords: float = 0.0
    content_keywords: float = 0.0
    tags: float = 0.0
    type_bonus: float = 0.0

    @property
    def raw(self) -> float:
        return (
            self.title_exact
            + self.content_exact
            + self.title_keywords
            + self.content_keywords
            + self.tags
            + self.type_bonus
        )

    @property
    def normalized(self) -> float:
        return min(max(self.raw, 0.0) / MAX_RAW_SCORE, 1.0)


def _keyword_coverage(words: Sequence[str], text_lower: str) -> float:
    """Fraction of distinct query words found as substrings of the text."""
    if not words:
        return 0.0
    matched = sum(1 for word in words if word in text_lower)
    return matched / len(words)


def _tag_points(query_lower: str, words: Sequence[str], tags_lower: Sequence[str]) -> float:
    if not tags_lower:
        return 0.0

    # A blank query would "contain" every tag; treat it as matching nothing.
    has_phrase = bool(query_lower.strip())

    units = 0.0
    for tag in tags_lower:
        if has_phrase and (tag in query_lower or query_lower in tag):
            units += TAG_WHOLE_MATCH_UNITS
        for word in words:
            if word in tag:
                units += TAG_WORD_MATCH_UNITS

    return min((units / len(tags_lower)) * TAG_POINTS, TAG_POINTS)


def score_breakdown(
    query_lower: str,
    query_words: Sequence[str],
    item: KnowledgeItem,
) -> ScoreBreakdown:
    """Compute the per-signal raw points for one item.

    Args:
        query_lower: Lowercased query string.
        query_words: Query words longer than two characters. Duplicates are
            counted once.
        item: Knowledge item to score.

    Returns:
        ScoreBreakdown with raw points for every signal.
    """
    words = tuple(dict.fromkeys(query_words))
    title_lower = item.title.lower()
    content_lower = item.content.lower()
    has_phrase = bool(query_lower.strip())

    return ScoreBreakdown(
        title_exact=TITLE_EXACT_POINTS if has_phrase and query_lower in title_lower else 0.0,
        content_exact=CONTENT_EXACT_POINTS if has_phrase and query_lower in content_lower else 0.0,
        title_keywords=_keyword_coverage(words, title_lower) * TITLE_KEYWORD_POINTS,
        content_keywords=_keyword_coverage(words, content_lower) * CONTENT_KEYWORD_POINTS,
        tags=_tag_points(query_lower, words, item.lowered_tags),
        type_bonus=TYPE_BONUS_POINTS.get(item.type.value, 0.0),
    )


def score(query_lower: str, query_words: Sequence[str], item: KnowledgeItem) -> float:
    """Relevance of an item to a query, in [0, 1]."""
    return score_breakdown(query_lower, query_words, item).normalized


def score_query(query: Query, item: KnowledgeItem) -> float:
    """Convenience wrapper taking a parsed Query."""
    return score(query.lower, query.words, item)
