"""Data models for knowledge items, queries and search results."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from chatbot_kb.core.ai_constants import MIN_QUERY_WORD_LENGTH


class KnowledgeType(str, Enum):
    """Kind of knowledge item. DOCUMENT and FAQ earn a small scoring bonus."""

    TEXT = "TEXT"
    FAQ = "FAQ"
    DOCUMENT = "DOCUMENT"
    URL = "URL"
    API = "API"

    @classmethod
    def coerce(cls, value: Any) -> "KnowledgeType":
        """Map a stored value to a type, falling back to TEXT."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.TEXT


def normalize_tags(raw: Any) -> list[str]:
    """Coerce a stored tags value into a list of strings.

    Non-list values become an empty list. ``None`` and blank entries are
    dropped; a blank tag would be a substring of every query.
    """
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(tag) for tag in raw if tag is not None and str(tag).strip()]


class KnowledgeItem(BaseModel):
    """A unit of retrievable content belonging to one chatbot.

    Tags live in ``metadata["tags"]``. A top-level ``tags`` key in the input
    is folded into metadata so that :attr:`tags` is the only accessor.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Opaque unique identifier")
    title: str = Field(default="", description="Short human-readable title")
    content: str = Field(default="", description="Free-text body")
    type: KnowledgeType = Field(default=KnowledgeType.TEXT)
    source: str | None = Field(default=None, description="Provenance label")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = Field(default=None, alias="createdAt")

    @model_validator(mode="before")
    @classmethod
    def _fold_tags_into_metadata(cls, data: Any) -> Any:
        if isinstance(data, dict) and "tags" in data:
            data = dict(data)
            tags = data.pop("tags")
            metadata = data.get("metadata")
            metadata = dict(metadata) if isinstance(metadata, dict) else {}
            metadata.setdefault("tags", tags)
            data["metadata"] = metadata
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("title", "content", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> KnowledgeType:
        return KnowledgeType.coerce(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _coerce_metadata(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def tags(self) -> list[str]:
        """Normalized tags, original case."""
        return normalize_tags(self.metadata.get("tags"))

    @property
    def lowered_tags(self) -> list[str]:
        return [tag.lower() for tag in self.tags]


class SearchResult(BaseModel):
    """A knowledge item projected with its relevance score.

    Built once per query and never persisted.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str
    content: str
    type: KnowledgeType
    source: str
    tags: list[str] = Field(default_factory=list)
    relevance_score: float = Field(..., ge=0.0, le=1.0, alias="relevanceScore")
    metadata: dict[str, Any] = Field(default_factory=dict)
    highlighted_content: str | None = Field(default=None, alias="highlightedContent")

    @classmethod
    def from_item(cls, item: KnowledgeItem, score: float) -> "SearchResult":
        return cls(
            id=item.id,
            title=item.title,
            content=item.content,
            type=item.type,
            source=item.source or "unknown",
            tags=item.tags,
            relevance_score=score,
            metadata=dict(item.metadata),
        )


def tokenize(text_lower: str) -> tuple[str, ...]:
    """Split on whitespace, keep distinct words longer than two characters."""
    seen: dict[str, None] = {}
    for word in text_lower.split():
        if len(word) >= MIN_QUERY_WORD_LENGTH:
            seen.setdefault(word, None)
    return tuple(seen)


@dataclass(frozen=True)
class Query:
    """A search query with its derived forms, computed once per search."""

    raw: str
    lower: str
    words: tuple[str, ...]

    @classmethod
    def parse(cls, raw: str | None) -> "Query":
        raw = raw or ""
        lower = raw.lower()
        return cls(raw=raw, lower=lower, words=tokenize(lower))

    @property
    def is_blank(self) -> bool:
        return not self.lower.strip()
