"""Knowledge retrieval: score, filter, rank and truncate.

``search`` is the single implementation shared by the chat flow and the
standalone search endpoint. ``KnowledgeRetriever`` adds the one awaited
external call (fetching the chatbot's item snapshot) on top of it.
"""

import asyncio
import logging
import math
import time
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from pydantic import ValidationError

from chatbot_kb.core.ai_constants import SEARCH_DEFAULT_LIMIT, SEARCH_DEFAULT_THRESHOLD
from chatbot_kb.core.exceptions import RetrievalError
from chatbot_kb.knowledge.models import KnowledgeItem, Query, SearchResult
from chatbot_kb.knowledge.scorer import score

if TYPE_CHECKING:
    from chatbot_kb.knowledge.store import KnowledgeStore
    from chatbot_kb.observability import MetricsBackend

logger = logging.getLogger(__name__)

ScoredItem = tuple[KnowledgeItem, float]


def validate_bounds(limit: int, threshold: float) -> None:
    if limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must be within [0, 1], got {threshold}")


def _as_item(raw: KnowledgeItem | Mapping[str, Any]) -> KnowledgeItem:
    if isinstance(raw, KnowledgeItem):
        return raw
    return KnowledgeItem.model_validate(raw)


def score_items(
    query: Query,
    items: Iterable[KnowledgeItem | Mapping[str, Any]],
) -> list[ScoredItem]:
    """Score every item, skipping (and logging) any that cannot be read.

    Input order is preserved.
    """
    scored: list[ScoredItem] = []
    for raw in items:
        try:
            item = _as_item(raw)
            scored.append((item, score(query.lower, query.words, item)))
        except (ValidationError, TypeError, ValueError, AttributeError):
            item_id = raw.get("id") if isinstance(raw, Mapping) else getattr(raw, "id", None)
            logger.warning("Skipping malformed knowledge item id=%s", item_id, exc_info=True)
    return scored


def rank(scored: list[ScoredItem], limit: int, threshold: float) -> list[SearchResult]:
    """Keep scores strictly above threshold, sort descending, truncate.

    The sort is stable, so equal scores keep their input order.
    """
    kept = [pair for pair in scored if pair[1] > threshold]
    kept.sort(key=lambda pair: pair[1], reverse=True)
    return [SearchResult.from_item(item, item_score) for item, item_score in kept[:limit]]


def search(
    query: str,
    items: Iterable[KnowledgeItem | Mapping[str, Any]],
    limit: int = SEARCH_DEFAULT_LIMIT,
    threshold: float = SEARCH_DEFAULT_THRESHOLD,
) -> list[SearchResult]:
    """Rank knowledge items by relevance to a query.

    Args:
        query: Raw user query.
        items: Knowledge item snapshot (models or plain mappings).
        limit: Maximum number of results.
        threshold: Items must score strictly above this value.

    Returns:
        At most ``limit`` results sorted by relevance (highest first).

    Raises:
        ValueError: If limit is negative or threshold is outside [0, 1].
    """
    validate_bounds(limit, threshold)
    parsed = Query.parse(query)
    return rank(score_items(parsed, items), limit, threshold)


class KnowledgeRetriever:
    """Fetches a chatbot's knowledge items and ranks them for a query.

    Scoring runs in a thread pool when ``max_workers > 1`` and the snapshot
    has at least ``parallel_min_items`` items. Output is identical either way.
    """

    def __init__(
        self,
        store: "KnowledgeStore",
        max_workers: int = 1,
        parallel_min_items: int = 500,
        metrics: "MetricsBackend | None" = None,
        name: str = "search",
    ) -> None:
        self.store = store
        self.max_workers = max(1, max_workers)
        self.parallel_min_items = parallel_min_items
        self.metrics = metrics
        self.name = name

    async def fetch(self, chatbot_id: str) -> list[KnowledgeItem]:
        """Fetch the item snapshot, wrapping store failures in RetrievalError."""
        try:
            return list(await self.store.fetch_knowledge_items(chatbot_id))
        except RetrievalError:
            raise
        except Exception as e:
            logger.error("Knowledge store fetch failed for chatbot %s", chatbot_id, exc_info=True)
            raise RetrievalError(chatbot_id, e) from e

    async def retrieve(
        self,
        chatbot_id: str,
        query: str,
        limit: int = SEARCH_DEFAULT_LIMIT,
        threshold: float = SEARCH_DEFAULT_THRESHOLD,
    ) -> list[SearchResult]:
        """Search one chatbot's knowledge base.

        Raises:
            RetrievalError: If the knowledge store fails.
            ValueError: If limit or threshold are out of bounds.
        """
        validate_bounds(limit, threshold)
        start = time.perf_counter()

        items = await self.fetch(chatbot_id)
        parsed = Query.parse(query)

        if self.max_workers > 1 and len(items) >= self.parallel_min_items:
            scored = await self._score_parallel(parsed, items)
        else:
            scored = score_items(parsed, items)
        results = rank(scored, limit, threshold)

        duration_ms = (time.perf_counter() - start) * 1000
        if self.metrics:
            self.metrics.observe_retrieval(self.name, len(items), len(results), duration_ms)
        logger.debug(
            "Retrieval %s chatbot=%s candidates=%d returned=%d duration_ms=%.2f",
            self.name,
            chatbot_id,
            len(items),
            len(results),
            duration_ms,
        )
        return results

    async def _score_parallel(self, query: Query, items: list[KnowledgeItem]) -> list[ScoredItem]:
        chunk_size = math.ceil(len(items) / self.max_workers)
        chunks = [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]
        loop = asyncio.get_running_loop()
        partials = await asyncio.gather(
            *(loop.run_in_executor(None, score_items, query, chunk) for chunk in chunks)
        )
        # gather keeps chunk order, so the concatenation matches input order
        return [pair for partial in partials for pair in partial]
