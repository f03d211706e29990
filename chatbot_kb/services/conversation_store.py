"""Conversation persistence for the chat flow."""

from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatbot_kb.core.ai_constants import HISTORY_MESSAGE_LIMIT
from chatbot_kb.models.conversation import Conversation, ConversationStatus, Message, MessageRole
from chatbot_kb.services.gemini_client import ChatMessage


class ConversationHistoryStore(Protocol):
    """Conversation persistence used by the chat flow."""

    async def get_or_create_conversation(
        self,
        chatbot_id: str,
        session_id: str,
        user_id: Optional[str] = None,
    ) -> Conversation:
        """Return the session's active conversation, creating it if needed."""
        ...

    async def add_message(self, conversation_id: str, role: MessageRole, content: str) -> Message:
        """Store one message in a conversation."""
        ...

    async def recent_messages(
        self,
        conversation_id: str,
        limit: int = HISTORY_MESSAGE_LIMIT,
    ) -> list[ChatMessage]:
        """Return the most recent ``limit`` messages, oldest first."""
        ...


class SqlConversationStore:
    """Conversation and message storage on an async SQLAlchemy session.

    Writes are flushed, not committed; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_or_create_conversation(
        self,
        chatbot_id: str,
        session_id: str,
        user_id: Optional[str] = None,
    ) -> Conversation:
        """Return the session's active conversation, creating it if needed."""
        result = await self.session.execute(
            select(Conversation)
            .where(
                Conversation.chatbot_id == chatbot_id,
                Conversation.session_id == session_id,
                Conversation.status == ConversationStatus.ACTIVE.value,
            )
            .order_by(Conversation.created_at.desc())
            .limit(1)
        )
        conversation = result.scalar_one_or_none()
        if conversation is not None:
            return conversation

        conversation = Conversation(
            chatbot_id=chatbot_id,
            session_id=session_id,
            user_id=user_id,
            status=ConversationStatus.ACTIVE.value,
        )
        self.session.add(conversation)
        await self.session.flush()
        return conversation

    async def add_message(self, conversation_id: str, role: MessageRole, content: str) -> Message:
        message = Message(conversation_id=conversation_id, role=role.value, content=content)
        self.session.add(message)
        await self.session.flush()
        return message

    async def recent_messages(
        self,
        conversation_id: str,
        limit: int = HISTORY_MESSAGE_LIMIT,
    ) -> list[ChatMessage]:
        result = await self.session.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        # Newest-first from the query; reverse to chronological order
        rows = list(reversed(result.scalars().all()))
        return [
            ChatMessage(role=row.role.lower(), content=row.content, timestamp=row.created_at)
            for row in rows
        ]
