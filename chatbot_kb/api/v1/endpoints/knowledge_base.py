"""Knowledge base endpoints: list, create and relevance search."""

import logging
from enum import Enum
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from chatbot_kb.core.config import get_settings
from chatbot_kb.core.database import get_db
from chatbot_kb.core.exceptions import RetrievalError
from chatbot_kb.knowledge.combine import combine_results
from chatbot_kb.knowledge.embeddings import EmbeddingClient
from chatbot_kb.knowledge.external import ExternalKnowledgeClient, ExternalKnowledgeSource
from chatbot_kb.knowledge.highlight import extract_relevant_context, highlight_relevant_terms
from chatbot_kb.knowledge.models import KnowledgeItem, KnowledgeType, SearchResult
from chatbot_kb.knowledge.retriever import KnowledgeRetriever
from chatbot_kb.knowledge.semantic import SemanticRetriever
from chatbot_kb.knowledge.store import KnowledgeStore, SqlKnowledgeStore
from chatbot_kb.models.chatbot import Chatbot
from chatbot_kb.models.knowledge import KnowledgeBaseEntry
from chatbot_kb.observability import MetricsBackend, get_metrics_backend

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------------


def get_knowledge_store(db: AsyncSession = Depends(get_db)) -> KnowledgeStore:
    """Knowledge store bound to the request's database session."""
    return SqlKnowledgeStore(db)


def get_metrics() -> MetricsBackend:
    return get_metrics_backend()


def get_embedding_client() -> Optional[EmbeddingClient]:
    """Embedding client for semantic search, or None when it is disabled."""
    if not settings.semantic_search_enabled:
        return None
    return EmbeddingClient.from_settings(settings)


def get_external_client(
    metrics: MetricsBackend = Depends(get_metrics),
) -> ExternalKnowledgeClient:
    return ExternalKnowledgeClient.from_settings(settings, metrics=metrics)


async def get_chatbot_or_404(db: AsyncSession, chatbot_id: str) -> Chatbot:
    chatbot = await db.get(Chatbot, chatbot_id)
    if chatbot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Chatbot not found",
        )
    return chatbot


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class SearchMode(str, Enum):
    LEXICAL = "lexical"
    SEMANTIC = "semantic"


class SearchRequest(BaseModel):
    """Knowledge base search request.

    ``limit`` and ``threshold`` default to the configured search defaults.
    """

    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    chatbot_id: Optional[str] = Field(default=None, alias="chatbotId")
    limit: Optional[int] = Field(default=None, ge=0)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    highlight: bool = False
    mode: SearchMode = SearchMode.LEXICAL
    external_sources: list[ExternalKnowledgeSource] = Field(
        default_factory=list, alias="externalSources"
    )


class SearchResponse(BaseModel):
    """Ranked search results."""

    model_config = ConfigDict(populate_by_name=True)

    results: list[SearchResult]
    total: int
    query: str
    chatbot_id: str = Field(alias="chatbotId")


class KnowledgeItemCreate(BaseModel):
    """Request to add an item to a chatbot's knowledge base."""

    model_config = ConfigDict(populate_by_name=True)

    chatbot_id: str = Field(alias="chatbotId", min_length=1)
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    type: KnowledgeType = KnowledgeType.TEXT
    source: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    tags: Optional[list[str]] = None


class KnowledgeItemResponse(BaseModel):
    """Single created item."""

    item: KnowledgeItem


class KnowledgeListResponse(BaseModel):
    """All items of one chatbot, newest first."""

    items: list[KnowledgeItem]
    count: int


# -------------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------------


@router.get("", response_model=KnowledgeListResponse)
async def list_knowledge_items(
    chatbot_id: Optional[str] = Query(None, alias="chatbotId"),
    db: AsyncSession = Depends(get_db),
    store: KnowledgeStore = Depends(get_knowledge_store),
) -> KnowledgeListResponse:
    """List a chatbot's knowledge items.

    Raises:
        HTTPException: 400 without chatbotId, 404 for an unknown chatbot.
    """
    if not chatbot_id or not chatbot_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Chatbot ID is required",
        )
    await get_chatbot_or_404(db, chatbot_id)

    items = list(await store.fetch_knowledge_items(chatbot_id))
    return KnowledgeListResponse(items=items, count=len(items))


@router.post("", response_model=KnowledgeItemResponse, status_code=status.HTTP_201_CREATED)
async def create_knowledge_item(
    request: KnowledgeItemCreate,
    db: AsyncSession = Depends(get_db),
) -> KnowledgeItemResponse:
    """Add a knowledge item. Top-level ``tags`` are stored in metadata."""
    await get_chatbot_or_404(db, request.chatbot_id)

    metadata = dict(request.metadata or {})
    if request.tags is not None:
        metadata["tags"] = request.tags

    entry = KnowledgeBaseEntry(
        chatbot_id=request.chatbot_id,
        title=request.title,
        content=request.content,
        type=request.type.value,
        source=request.source,
        meta=metadata,
    )
    db.add(entry)
    await db.commit()
    await db.refresh(entry)

    logger.info("Created knowledge item %s for chatbot %s", entry.id, entry.chatbot_id)
    return KnowledgeItemResponse(item=entry.to_item())


@router.post("/search", response_model=SearchResponse)
async def search_knowledge_base(
    request: SearchRequest,
    db: AsyncSession = Depends(get_db),
    store: KnowledgeStore = Depends(get_knowledge_store),
    metrics: MetricsBackend = Depends(get_metrics),
    embedder: Optional[EmbeddingClient] = Depends(get_embedding_client),
    external_client: ExternalKnowledgeClient = Depends(get_external_client),
) -> SearchResponse:
    """Rank a chatbot's knowledge items against a query.

    With ``externalSources`` the external results are merged after the
    internal ones.

    Raises:
        HTTPException: 400 on blank query or chatbotId, or semantic mode
            while it is disabled. 404 for an unknown chatbot, 503 when the
            knowledge store (or the embedding provider) fails.
    """
    query = request.query or ""
    chatbot_id = (request.chatbot_id or "").strip()
    if not query.strip() or not chatbot_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Query and chatbot ID are required",
        )
    if request.mode == SearchMode.SEMANTIC and embedder is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Semantic search is disabled",
        )
    await get_chatbot_or_404(db, chatbot_id)

    limit = request.limit if request.limit is not None else settings.search_default_limit
    threshold = (
        request.threshold if request.threshold is not None else settings.search_default_threshold
    )

    if request.mode == SearchMode.SEMANTIC:
        retriever: KnowledgeRetriever = SemanticRetriever(store, embedder, metrics=metrics)
    else:
        retriever = KnowledgeRetriever(
            store,
            max_workers=settings.scoring_max_workers,
            parallel_min_items=settings.scoring_parallel_min_items,
            metrics=metrics,
            name="search",
        )
    try:
        results = await retriever.retrieve(chatbot_id, query, limit=limit, threshold=threshold)
    except RetrievalError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Knowledge base unavailable",
        )

    if request.external_sources:
        external = await external_client.search_all(query, request.external_sources)
        results = combine_results(results, external)

    if request.highlight:
        results = [
            result.model_copy(
                update={
                    "highlighted_content": highlight_relevant_terms(
                        extract_relevant_context(result.content, query), query
                    )
                }
            )
            for result in results
        ]

    return SearchResponse(
        results=results,
        total=len(results),
        query=query,
        chatbot_id=chatbot_id,
    )
