"""Chatbot model."""

from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import Boolean, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatbot_kb.models.base import BaseModel

if TYPE_CHECKING:
    from chatbot_kb.models.conversation import Conversation
    from chatbot_kb.models.knowledge import KnowledgeBaseEntry


class Chatbot(BaseModel):
    """A configured chatbot with its prompt, settings and knowledge base."""

    __tablename__ = "chatbots"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # system prompt
    welcome_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fallback_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Generation overrides, e.g. {"temperature": 0.7, "maxTokens": 1000}
    settings: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    # Relationships
    knowledge_entries: Mapped[list["KnowledgeBaseEntry"]] = relationship(
        "KnowledgeBaseEntry",
        back_populates="chatbot",
        cascade="all, delete-orphan",
    )
    conversations: Mapped[list["Conversation"]] = relationship(
        "Conversation",
        back_populates="chatbot",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Chatbot(id={self.id}, name={self.name})>"
