"""Chat endpoint: knowledge-grounded replies for a chatbot."""

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from chatbot_kb.api.v1.endpoints.knowledge_base import (
    get_chatbot_or_404,
    get_knowledge_store,
    get_metrics,
)
from chatbot_kb.core.config import get_settings
from chatbot_kb.core.database import get_db
from chatbot_kb.knowledge.retriever import KnowledgeRetriever
from chatbot_kb.knowledge.store import KnowledgeStore
from chatbot_kb.models.chatbot import Chatbot
from chatbot_kb.observability import MetricsBackend
from chatbot_kb.services.chat_service import ChatService
from chatbot_kb.services.conversation_store import SqlConversationStore
from chatbot_kb.services.gemini_client import GeminiChatbot, ResponseGenerator

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)

GeneratorFactory = Callable[[Chatbot], ResponseGenerator]


def get_generator_factory(
    metrics: MetricsBackend = Depends(get_metrics),
) -> GeneratorFactory:
    """Build a Gemini client per chatbot from settings and stored overrides."""

    def factory(chatbot: Chatbot) -> ResponseGenerator:
        return GeminiChatbot.from_settings(
            settings,
            system_prompt=chatbot.prompt,
            overrides=chatbot.settings,
            metrics=metrics,
        )

    return factory


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class ChatRequest(BaseModel):
    """Visitor message for a chatbot."""

    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    user_id: Optional[str] = Field(default=None, alias="userId")


class ChatResponse(BaseModel):
    """Assistant reply."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    message_id: str = Field(alias="messageId")
    conversation_id: str = Field(alias="conversationId")
    knowledge_used: int = Field(alias="knowledgeUsed")


# -------------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------------


@router.post("/{chatbot_id}", response_model=ChatResponse)
async def chat(
    chatbot_id: str,
    request: ChatRequest,
    db: AsyncSession = Depends(get_db),
    store: KnowledgeStore = Depends(get_knowledge_store),
    generator_factory: GeneratorFactory = Depends(get_generator_factory),
    metrics: MetricsBackend = Depends(get_metrics),
) -> ChatResponse:
    """Answer a visitor message using the chatbot's knowledge base.

    Raises:
        HTTPException: 400 on missing fields or an inactive chatbot, 404
            for an unknown chatbot.
    """
    if not request.message or not request.message.strip() or not request.session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields",
        )

    chatbot = await get_chatbot_or_404(db, chatbot_id)
    if not chatbot.is_active:
        logger.info("Rejected message for inactive chatbot %s", chatbot_id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Chatbot is not active",
        )

    service = ChatService(
        retriever=KnowledgeRetriever(
            store,
            max_workers=settings.scoring_max_workers,
            parallel_min_items=settings.scoring_parallel_min_items,
            metrics=metrics,
            name="chat",
        ),
        conversations=SqlConversationStore(db),
        generator=generator_factory(chatbot),
        settings=settings,
    )
    reply = await service.handle_message(
        chatbot,
        request.message,
        session_id=request.session_id,
        user_id=request.user_id,
    )
    await db.commit()

    return ChatResponse(
        message=reply.message,
        message_id=reply.message_id,
        conversation_id=reply.conversation_id,
        knowledge_used=reply.knowledge_used,
    )
