"""Knowledge base entry model."""

from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatbot_kb.knowledge.models import KnowledgeItem, KnowledgeType
from chatbot_kb.models.base import BaseModel

if TYPE_CHECKING:
    from chatbot_kb.models.chatbot import Chatbot


class KnowledgeBaseEntry(BaseModel):
    """Stored knowledge item. Tags are kept in ``metadata["tags"]``."""

    __tablename__ = "knowledge_base"

    chatbot_id: Mapped[str] = mapped_column(
        ForeignKey("chatbots.id", ondelete="CASCADE"),
        index=True,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(20), default=KnowledgeType.TEXT.value, index=True)
    source: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONB, nullable=True)

    # Relationship
    chatbot: Mapped["Chatbot"] = relationship("Chatbot", back_populates="knowledge_entries")

    def to_item(self) -> KnowledgeItem:
        """Project the row into a transient KnowledgeItem."""
        return KnowledgeItem(
            id=self.id,
            title=self.title,
            content=self.content,
            type=self.type,
            source=self.source,
            metadata=self.meta,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<KnowledgeBaseEntry(id={self.id}, chatbot_id={self.chatbot_id})>"
