"""Chat orchestration: history, retrieval, context assembly, generation."""

import logging
from dataclasses import dataclass
from typing import Optional

from chatbot_kb.core.config import Settings
from chatbot_kb.core.exceptions import GenerationError, RetrievalError
from chatbot_kb.knowledge.context import assemble
from chatbot_kb.knowledge.models import SearchResult
from chatbot_kb.knowledge.retriever import KnowledgeRetriever
from chatbot_kb.models.chatbot import Chatbot
from chatbot_kb.models.conversation import MessageRole
from chatbot_kb.services.conversation_store import ConversationHistoryStore
from chatbot_kb.services.gemini_client import ResponseGenerator

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    """Outcome of one chat turn."""

    message: str
    message_id: str
    conversation_id: str
    knowledge_used: int
    generated: bool = True  # False when the fallback message was used


class ChatService:
    """Runs one chat turn for a chatbot.

    Retrieval failure degrades to an empty knowledge context. Generation
    failure degrades to the chatbot's fallback message. The two are
    handled separately.
    """

    def __init__(
        self,
        retriever: KnowledgeRetriever,
        conversations: ConversationHistoryStore,
        generator: ResponseGenerator,
        settings: Settings,
    ) -> None:
        self.retriever = retriever
        self.conversations = conversations
        self.generator = generator
        self.settings = settings

    async def handle_message(
        self,
        chatbot: Chatbot,
        message: str,
        session_id: str,
        user_id: Optional[str] = None,
    ) -> ChatReply:
        conversation = await self.conversations.get_or_create_conversation(
            chatbot.id, session_id, user_id
        )

        # History excludes the message being answered
        history = await self.conversations.recent_messages(
            conversation.id, limit=self.settings.history_message_limit
        )
        await self.conversations.add_message(conversation.id, MessageRole.USER, message)

        knowledge = await self._retrieve(chatbot.id, message)
        blocks = assemble(knowledge)

        generated = True
        try:
            reply_text = await self.generator.generate_response(message, history, blocks)
        except GenerationError:
            logger.warning("Generation failed for chatbot %s; using fallback message", chatbot.id)
            reply_text = chatbot.fallback_message or self.settings.fallback_message
            generated = False

        assistant_message = await self.conversations.add_message(
            conversation.id, MessageRole.ASSISTANT, reply_text
        )

        logger.info(
            "Chat turn chatbot=%s conversation=%s knowledge_used=%d generated=%s",
            chatbot.id,
            conversation.id,
            len(knowledge),
            generated,
        )
        return ChatReply(
            message=reply_text,
            message_id=assistant_message.id,
            conversation_id=conversation.id,
            knowledge_used=len(knowledge),
            generated=generated,
        )

    async def _retrieve(self, chatbot_id: str, message: str) -> list[SearchResult]:
        try:
            return await self.retriever.retrieve(
                chatbot_id,
                message,
                limit=self.settings.chat_retrieval_limit,
                threshold=self.settings.chat_retrieval_threshold,
            )
        except RetrievalError as e:
            logger.warning("Continuing without knowledge context: %s", e)
            return []
