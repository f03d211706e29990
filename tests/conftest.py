"""Pytest configuration and fixtures for chatbot_kb tests."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import JSON, StaticPool, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chatbot_kb.api.v1.endpoints.chat import get_generator_factory
from chatbot_kb.api.v1.endpoints.knowledge_base import get_metrics
from chatbot_kb.core.database import Base, get_db
from chatbot_kb.knowledge.models import KnowledgeItem, KnowledgeType
from chatbot_kb.main import app as main_app
from chatbot_kb.observability import MetricsCollector


# -------------------------------------------------------------------------
# SQLite JSONB Compatibility - Convert JSONB to JSON for SQLite
# -------------------------------------------------------------------------

@event.listens_for(Base.metadata, "before_create")
def _convert_jsonb_to_json(target, connection, **kw):
    """Convert JSONB columns to JSON for SQLite compatibility."""
    if connection.dialect.name == "sqlite":
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, JSONB):
                    column.type = JSON()

# Import all models to ensure they're registered with Base
from chatbot_kb.models import Chatbot, Conversation, KnowledgeBaseEntry, Message  # noqa: E402,F401


# -------------------------------------------------------------------------
# Database Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        yield session
        await session.rollback()


# -------------------------------------------------------------------------
# App Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh in-memory metrics backend per test."""
    return MetricsCollector()


@pytest.fixture
def mock_generator() -> AsyncMock:
    """Response generator stub; replies with a fixed text."""
    generator = AsyncMock()
    generator.generate_response = AsyncMock(return_value="Resposta gerada")
    return generator


@pytest.fixture
def app(db_session: AsyncSession, metrics: MetricsCollector, mock_generator: AsyncMock) -> FastAPI:
    """Create a FastAPI app instance with test database and fake generator."""

    async def override_get_db():
        yield db_session

    main_app.dependency_overrides[get_db] = override_get_db
    main_app.dependency_overrides[get_metrics] = lambda: metrics
    main_app.dependency_overrides[get_generator_factory] = lambda: (lambda chatbot: mock_generator)
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# -------------------------------------------------------------------------
# Domain Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
async def test_chatbot(db_session: AsyncSession) -> Chatbot:
    """Create an active chatbot."""
    chatbot = Chatbot(
        name="Suporte TI",
        prompt="Você é um assistente de suporte técnico.",
        fallback_message="Estamos com instabilidade, tente novamente.",
        settings={"temperature": 0.5, "maxTokens": 500},
    )
    db_session.add(chatbot)
    await db_session.commit()
    await db_session.refresh(chatbot)
    return chatbot


@pytest.fixture
async def inactive_chatbot(db_session: AsyncSession) -> Chatbot:
    """Create a disabled chatbot."""
    chatbot = Chatbot(name="Desativado", is_active=False)
    db_session.add(chatbot)
    await db_session.commit()
    await db_session.refresh(chatbot)
    return chatbot


@pytest.fixture
async def knowledge_entries(
    db_session: AsyncSession,
    test_chatbot: Chatbot,
) -> list[KnowledgeBaseEntry]:
    """Store a small knowledge base for the test chatbot, oldest first."""
    base_time = datetime.now(timezone.utc) - timedelta(hours=1)
    rows = [
        ("Horário de Funcionamento", "segunda a sexta das 8h às 18h", "TEXT", []),
        ("Impressora atolada", "Abra a bandeja traseira e remova o papel.", "FAQ", ["hardware", "impressora"]),
        ("Política de férias", "Solicite férias com 30 dias de antecedência.", "DOCUMENT", ["rh"]),
    ]
    entries = []
    for i, (title, content, item_type, tags) in enumerate(rows):
        entry = KnowledgeBaseEntry(
            chatbot_id=test_chatbot.id,
            title=title,
            content=content,
            type=item_type,
            source="internal",
            meta={"tags": tags},
            created_at=base_time + timedelta(minutes=i),
        )
        db_session.add(entry)
        entries.append(entry)
    await db_session.commit()
    return entries


@pytest.fixture
def sample_items() -> list[KnowledgeItem]:
    """Plain knowledge items, no database."""
    return [
        KnowledgeItem(
            id="hours",
            title="Horário de Funcionamento",
            content="segunda a sexta das 8h às 18h",
        ),
        KnowledgeItem(
            id="printer",
            title="Impressora atolada",
            content="Abra a bandeja traseira e remova o papel.",
            type=KnowledgeType.FAQ,
            metadata={"tags": ["hardware", "impressora"]},
        ),
        KnowledgeItem(
            id="vacation",
            title="Política de férias",
            content="Solicite férias com 30 dias de antecedência.",
            type=KnowledgeType.DOCUMENT,
            metadata={"tags": ["rh"]},
        ),
    ]
