"""Knowledge item storage boundary.

The retriever only depends on the ``KnowledgeStore`` protocol; the
SQLAlchemy implementation below is what the API wires in.
"""

from typing import Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatbot_kb.knowledge.models import KnowledgeItem
from chatbot_kb.models.knowledge import KnowledgeBaseEntry


class KnowledgeStore(Protocol):
    """Source of a chatbot's knowledge item snapshot."""

    async def fetch_knowledge_items(self, chatbot_id: str) -> Sequence[KnowledgeItem]:
        """Return all items for a chatbot, newest first, unfiltered."""
        ...


class SqlKnowledgeStore:
    """KnowledgeStore backed by the ``knowledge_base`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def fetch_knowledge_items(self, chatbot_id: str) -> list[KnowledgeItem]:
        result = await self.session.execute(
            select(KnowledgeBaseEntry)
            .where(KnowledgeBaseEntry.chatbot_id == chatbot_id)
            .order_by(KnowledgeBaseEntry.created_at.desc(), KnowledgeBaseEntry.id.desc())
        )
        return [entry.to_item() for entry in result.scalars().all()]


class InMemoryKnowledgeStore:
    """KnowledgeStore over a fixed mapping of chatbot id to items."""

    def __init__(self, items_by_chatbot: dict[str, Sequence[KnowledgeItem]] | None = None) -> None:
        self._items = {key: list(value) for key, value in (items_by_chatbot or {}).items()}

    async def fetch_knowledge_items(self, chatbot_id: str) -> list[KnowledgeItem]:
        items = self._items.get(chatbot_id, [])
        return sorted(
            items,
            key=lambda item: item.created_at.timestamp() if item.created_at else float("-inf"),
            reverse=True,
        )
