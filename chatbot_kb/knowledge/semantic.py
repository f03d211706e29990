"""Embedding-based retrieval over a chatbot's knowledge items.

Optional alternative to lexical scoring, enabled with
``SEMANTIC_SEARCH_ENABLED``. The chat flow always uses lexical retrieval.
"""

import logging
import time
from typing import TYPE_CHECKING

from chatbot_kb.core.ai_constants import SEARCH_DEFAULT_LIMIT, SEARCH_DEFAULT_THRESHOLD
from chatbot_kb.core.exceptions import RetrievalError
from chatbot_kb.knowledge.models import KnowledgeItem, Query, SearchResult
from chatbot_kb.knowledge.retriever import KnowledgeRetriever, validate_bounds
from chatbot_kb.knowledge.vector_index import VectorIndex

if TYPE_CHECKING:
    from chatbot_kb.knowledge.embeddings import EmbeddingClient
    from chatbot_kb.knowledge.store import KnowledgeStore
    from chatbot_kb.observability import MetricsBackend

logger = logging.getLogger(__name__)


def document_text(item: KnowledgeItem) -> str:
    """Text embedded for an item: title, tags and content."""
    parts = [item.title]
    if item.tags:
        parts.append(", ".join(item.tags))
    parts.append(item.content)
    return "\n".join(part for part in parts if part)


class SemanticRetriever(KnowledgeRetriever):
    """Ranks knowledge items by cosine similarity of their embeddings.

    The index is built per call from the current item snapshot. Results
    follow the lexical contract: similarity strictly above ``threshold``,
    best first, at most ``limit``.
    """

    def __init__(
        self,
        store: "KnowledgeStore",
        embedder: "EmbeddingClient",
        metrics: "MetricsBackend | None" = None,
        name: str = "semantic",
    ) -> None:
        super().__init__(store, metrics=metrics, name=name)
        self.embedder = embedder

    async def retrieve(
        self,
        chatbot_id: str,
        query: str,
        limit: int = SEARCH_DEFAULT_LIMIT,
        threshold: float = SEARCH_DEFAULT_THRESHOLD,
    ) -> list[SearchResult]:
        """Search one chatbot's knowledge base by embedding similarity.

        Raises:
            RetrievalError: If the store or the embedding provider fails.
            ValueError: If limit or threshold are out of bounds.
        """
        validate_bounds(limit, threshold)
        start = time.perf_counter()

        items = await self.fetch(chatbot_id)
        results: list[SearchResult] = []
        if items and limit > 0 and not Query.parse(query).is_blank:
            results = await self._rank(chatbot_id, query, items, limit, threshold)

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

    async def _rank(
        self,
        chatbot_id: str,
        query: str,
        items: list[KnowledgeItem],
        limit: int,
        threshold: float,
    ) -> list[SearchResult]:
        try:
            embeddings = await self.embedder.embed_documents([document_text(item) for item in items])
            query_embedding = await self.embedder.embed_query(query)
        except Exception as e:
            logger.error("Embedding failed for chatbot %s", chatbot_id, exc_info=True)
            raise RetrievalError(chatbot_id, e) from e

        index = VectorIndex()
        index.add_many([item.id for item in items], embeddings)
        by_id = {item.id: item for item in items}

        hits = index.search(query_embedding, top_k=len(index), min_score=threshold)
        return [
            SearchResult.from_item(by_id[item_id], min(similarity, 1.0))
            for item_id, similarity in hits
            if similarity > threshold
        ][:limit]
