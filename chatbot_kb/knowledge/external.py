"""Client for an external knowledge search API.

Results from external sources are merged after the internal knowledge base
with :func:`chatbot_kb.knowledge.combine.combine_results`.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import httpx
from pydantic import BaseModel, ValidationError

from chatbot_kb.knowledge.models import KnowledgeItem, SearchResult

if TYPE_CHECKING:
    from chatbot_kb.core.config import Settings
    from chatbot_kb.observability import MetricsBackend

logger = logging.getLogger(__name__)


class ExternalSourceType(str, Enum):
    API = "api"
    WEBSITE = "website"
    DOCUMENT = "document"
    DATABASE = "database"


class ExternalKnowledgeSource(BaseModel):
    """One external source to query alongside the internal knowledge base."""

    type: ExternalSourceType
    url: str
    headers: Optional[dict[str, str]] = None
    query: Optional[str] = None


def parse_external_result(raw: Any, source: ExternalKnowledgeSource) -> SearchResult:
    """Project one external result into a SearchResult.

    Missing fields are coerced like internal items. The score is read from
    ``relevanceScore`` (or ``score``) and clamped to [0, 1]. Results without
    a source are labelled with the external source type.
    """
    if not isinstance(raw, dict):
        raise TypeError(f"Expected an object, got {type(raw).__name__}")
    item = KnowledgeItem.model_validate(raw)
    if item.source is None:
        item = item.model_copy(update={"source": source.type.value})

    raw_score = raw.get("relevanceScore", raw.get("score", 0.0))
    try:
        score = float(raw_score)
    except (TypeError, ValueError):
        score = 0.0
    return SearchResult.from_item(item, min(max(score, 0.0), 1.0))


class ExternalKnowledgeClient:
    """Searches external knowledge sources through a proxy search API.

    Each source is queried with ``POST {base_url}/search``. A failing source
    contributes no results; it never fails the whole search.
    """

    def __init__(
        self,
        base_url: str | None,
        api_key: str | None = None,
        timeout: float = 10.0,
        metrics: "MetricsBackend | None" = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.timeout = timeout
        self.metrics = metrics
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        metrics: "MetricsBackend | None" = None,
    ) -> "ExternalKnowledgeClient":
        return cls(
            settings.external_knowledge_api_url,
            api_key=settings.external_knowledge_api_key,
            timeout=settings.external_knowledge_timeout_seconds,
            metrics=metrics,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def search(self, query: str, source: ExternalKnowledgeSource) -> list[SearchResult]:
        """Query one external source."""
        if not self.enabled:
            logger.warning("External knowledge API is not configured; skipping %s", source.url)
            return []

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers.update(source.headers or {})

        payload: dict[str, Any] = {"query": query, "source": source.type.value, "url": source.url}
        if source.query:
            payload["customQuery"] = source.query

        start = time.perf_counter()
        status = "success"
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post("search", json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            status = "error"
            logger.warning("External knowledge search failed for %s: %s", source.url, e)
            return []
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            if self.metrics:
                self.metrics.observe_external_api("knowledge_api", "search", status, duration_ms)

        raw_results = data.get("results") if isinstance(data, dict) else None
        results: list[SearchResult] = []
        for raw in raw_results or []:
            try:
                results.append(parse_external_result(raw, source))
            except (ValidationError, TypeError) as e:
                logger.warning("Skipping malformed external result from %s: %s", source.url, e)
        return results

    async def search_all(
        self,
        query: str,
        sources: list[ExternalKnowledgeSource],
    ) -> list[SearchResult]:
        """Query every source concurrently; results keep source order."""
        if not sources:
            return []
        batches = await asyncio.gather(*(self.search(query, source) for source in sources))
        return [result for batch in batches for result in batch]
