"""Conversation and message models."""

from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatbot_kb.models.base import BaseModel

if TYPE_CHECKING:
    from chatbot_kb.models.chatbot import Chatbot


class ConversationStatus(str, Enum):
    """Conversation lifecycle state."""

    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class MessageRole(str, Enum):
    """Author of a message."""

    USER = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM = "SYSTEM"


class Conversation(BaseModel):
    """A chat session between one visitor and one chatbot."""

    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_chatbot_session", "chatbot_id", "session_id"),
    )

    chatbot_id: Mapped[str] = mapped_column(
        ForeignKey("chatbots.id", ondelete="CASCADE"),
        index=True,
    )
    session_id: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=ConversationStatus.ACTIVE.value,
        nullable=False,
    )

    # Relationships
    chatbot: Mapped["Chatbot"] = relationship("Chatbot", back_populates="conversations")
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, session_id={self.session_id})>"


class Message(BaseModel):
    """Individual message in a conversation."""

    __tablename__ = "messages"

    conversation_id: Mapped[str] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"),
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20))  # MessageRole value
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Relationship
    conversation: Mapped["Conversation"] = relationship(
        "Conversation",
        back_populates="messages",
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, role={self.role})>"
