"""Tests for knowledge base API endpoints."""

import re
from unittest.mock import AsyncMock

import httpx
import numpy as np
import pytest
from httpx import AsyncClient

from chatbot_kb.api.v1.endpoints import knowledge_base
from chatbot_kb.api.v1.endpoints.knowledge_base import (
    get_embedding_client,
    get_external_client,
    get_knowledge_store,
)
from chatbot_kb.knowledge.external import ExternalKnowledgeClient
from chatbot_kb.models.chatbot import Chatbot
from chatbot_kb.models.knowledge import KnowledgeBaseEntry


class FailingStore:
    async def fetch_knowledge_items(self, chatbot_id: str):
        raise ConnectionError("database unreachable")


class KeywordEmbedder:
    """Embeds text as counts of a few domain keywords."""

    vocabulary = ("impressora", "papel", "férias", "horário")

    def _vector(self, text: str) -> list[float]:
        words = re.findall(r"\w+", text.lower())
        return [float(words.count(term)) for term in self.vocabulary]

    async def embed_documents(self, texts):
        return np.array([self._vector(text) for text in texts], dtype=np.float32)

    async def embed_query(self, query):
        return np.array(self._vector(query), dtype=np.float32)


class TestSearchEndpoint:
    """POST /api/v1/knowledge-base/search"""

    async def test_search_ranks_results(
        self,
        client: AsyncClient,
        test_chatbot: Chatbot,
        knowledge_entries: list[KnowledgeBaseEntry],
    ):
        """Matching items come back with camelCase fields and scores."""
        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={"query": "horário de funcionamento", "chatbotId": test_chatbot.id},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["query"] == "horário de funcionamento"
        assert data["chatbotId"] == test_chatbot.id
        [result] = data["results"]
        assert result["title"] == "Horário de Funcionamento"
        assert result["relevanceScore"] == pytest.approx(0.70)
        assert result["source"] == "internal"
        assert result["tags"] == []

    async def test_search_with_tags_and_low_threshold(
        self,
        client: AsyncClient,
        test_chatbot: Chatbot,
        knowledge_entries: list[KnowledgeBaseEntry],
    ):
        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={
                "query": "impressora atolando",
                "chatbotId": test_chatbot.id,
                "threshold": 0.1,
                "limit": 5,
            },
        )

        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["title"] for r in results] == ["Impressora atolada"]
        assert results[0]["tags"] == ["hardware", "impressora"]
        assert results[0]["type"] == "FAQ"

    async def test_search_highlight(
        self,
        client: AsyncClient,
        test_chatbot: Chatbot,
        knowledge_entries: list[KnowledgeBaseEntry],
    ):
        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={
                "query": "remova papel impressora",
                "chatbotId": test_chatbot.id,
                "threshold": 0.1,
                "highlight": True,
            },
        )

        assert response.status_code == 200
        [result] = response.json()["results"]
        assert "<mark>remova</mark>" in result["highlightedContent"]
        assert "<mark>papel</mark>" in result["highlightedContent"]
        assert "<mark>" not in result["content"]

    async def test_search_no_matches(
        self,
        client: AsyncClient,
        test_chatbot: Chatbot,
        knowledge_entries: list[KnowledgeBaseEntry],
    ):
        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={"query": "previsão do tempo", "chatbotId": test_chatbot.id},
        )

        assert response.status_code == 200
        assert response.json()["results"] == []
        assert response.json()["total"] == 0

    @pytest.mark.parametrize(
        "payload",
        [
            {"query": "", "chatbotId": "x"},
            {"query": "   ", "chatbotId": "x"},
            {"chatbotId": "x"},
            {"query": "senha"},
            {"query": "senha", "chatbotId": " "},
        ],
    )
    async def test_missing_fields_return_400(self, client: AsyncClient, payload):
        response = await client.post("/api/v1/knowledge-base/search", json=payload)
        assert response.status_code == 400

    @pytest.mark.parametrize(
        "extra",
        [{"limit": -1}, {"threshold": -0.1}, {"threshold": 1.1}],
    )
    async def test_invalid_bounds_return_422(
        self,
        client: AsyncClient,
        test_chatbot: Chatbot,
        extra,
    ):
        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={"query": "senha", "chatbotId": test_chatbot.id, **extra},
        )
        assert response.status_code == 422

    async def test_unknown_chatbot_returns_404(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={"query": "senha", "chatbotId": "does-not-exist"},
        )
        assert response.status_code == 404

    async def test_store_failure_returns_503(
        self,
        app,
        client: AsyncClient,
        test_chatbot: Chatbot,
    ):
        app.dependency_overrides[get_knowledge_store] = lambda: FailingStore()

        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={"query": "senha", "chatbotId": test_chatbot.id},
        )

        assert response.status_code == 503
        assert response.json()["detail"] == "Knowledge base unavailable"

    async def test_search_records_metrics(
        self,
        client: AsyncClient,
        metrics,
        test_chatbot: Chatbot,
        knowledge_entries: list[KnowledgeBaseEntry],
    ):
        await client.post(
            "/api/v1/knowledge-base/search",
            json={"query": "férias", "chatbotId": test_chatbot.id},
        )

        output = metrics.render_prometheus()
        assert 'knowledge_retrievals_total{endpoint="search"} 1' in output
        assert 'knowledge_retrieval_items_total{endpoint="search",type="candidates"} 3' in output


class TestKnowledgeItemsEndpoint:
    """GET/POST /api/v1/knowledge-base"""

    async def test_list_newest_first(
        self,
        client: AsyncClient,
        test_chatbot: Chatbot,
        knowledge_entries: list[KnowledgeBaseEntry],
    ):
        response = await client.get(
            "/api/v1/knowledge-base",
            params={"chatbotId": test_chatbot.id},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 3
        assert [item["title"] for item in data["items"]] == [
            "Política de férias",
            "Impressora atolada",
            "Horário de Funcionamento",
        ]
        assert data["items"][0]["createdAt"]
        assert "created_at" not in data["items"][0]

    async def test_list_requires_chatbot_id(self, client: AsyncClient):
        response = await client.get("/api/v1/knowledge-base")
        assert response.status_code == 400

    async def test_list_unknown_chatbot(self, client: AsyncClient):
        response = await client.get("/api/v1/knowledge-base", params={"chatbotId": "nope"})
        assert response.status_code == 404

    async def test_create_item_then_search(self, client: AsyncClient, test_chatbot: Chatbot):
        response = await client.post(
            "/api/v1/knowledge-base",
            json={
                "chatbotId": test_chatbot.id,
                "title": "Redefinir senha",
                "content": "Acesse o portal e clique em esqueci minha senha.",
                "type": "FAQ",
                "tags": ["senha", "portal"],
            },
        )

        assert response.status_code == 201
        item = response.json()["item"]
        assert item["tags"] == ["senha", "portal"]
        assert item["metadata"] == {"tags": ["senha", "portal"]}
        assert item["type"] == "FAQ"
        assert item["createdAt"]

        search = await client.post(
            "/api/v1/knowledge-base/search",
            json={"query": "redefinir senha", "chatbotId": test_chatbot.id},
        )
        assert [r["id"] for r in search.json()["results"]] == [item["id"]]

    async def test_create_item_validation(self, client: AsyncClient, test_chatbot: Chatbot):
        response = await client.post(
            "/api/v1/knowledge-base",
            json={"chatbotId": test_chatbot.id, "title": "", "content": "x"},
        )
        assert response.status_code == 422

    async def test_create_item_unknown_chatbot(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/knowledge-base",
            json={"chatbotId": "nope", "title": "t", "content": "c"},
        )
        assert response.status_code == 404


class TestSearchOptions:
    """Configured defaults, semantic mode and external sources."""

    async def test_defaults_come_from_settings(
        self,
        client: AsyncClient,
        monkeypatch,
        test_chatbot: Chatbot,
        knowledge_entries: list[KnowledgeBaseEntry],
    ):
        payload = {"query": "férias impressora", "chatbotId": test_chatbot.id, "threshold": 0.0}

        monkeypatch.setattr(knowledge_base.settings, "search_default_limit", 1)
        limited = await client.post("/api/v1/knowledge-base/search", json=payload)
        monkeypatch.setattr(knowledge_base.settings, "search_default_threshold", 0.9)
        strict = await client.post(
            "/api/v1/knowledge-base/search",
            json={"query": "férias impressora", "chatbotId": test_chatbot.id},
        )

        assert limited.json()["total"] == 1
        assert strict.json()["total"] == 0

    async def test_semantic_mode_disabled_by_default(self, client: AsyncClient, test_chatbot: Chatbot):
        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={"query": "senha", "chatbotId": test_chatbot.id, "mode": "semantic"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Semantic search is disabled"

    async def test_semantic_mode_uses_embeddings(
        self,
        app,
        client: AsyncClient,
        metrics,
        test_chatbot: Chatbot,
        knowledge_entries: list[KnowledgeBaseEntry],
    ):
        app.dependency_overrides[get_embedding_client] = lambda: KeywordEmbedder()

        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={
                "query": "papel preso na impressora",
                "chatbotId": test_chatbot.id,
                "mode": "semantic",
                "threshold": 0.5,
            },
        )

        assert response.status_code == 200
        assert [r["title"] for r in response.json()["results"]] == ["Impressora atolada"]
        assert 'knowledge_retrievals_total{endpoint="semantic"} 1' in metrics.render_prometheus()

    async def test_external_results_follow_internal(
        self,
        app,
        client: AsyncClient,
        test_chatbot: Chatbot,
        knowledge_entries: list[KnowledgeBaseEntry],
    ):
        external = ExternalKnowledgeClient(
            "https://kb.example.com",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(
                    200,
                    json={"results": [{"id": "ext-1", "title": "Férias coletivas", "relevanceScore": 0.95}]},
                )
            ),
        )
        app.dependency_overrides[get_external_client] = lambda: external

        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={
                "query": "férias",
                "chatbotId": test_chatbot.id,
                "externalSources": [{"type": "website", "url": "https://rh.example.com"}],
            },
        )

        assert response.status_code == 200
        results = response.json()["results"]
        assert [(r["title"], r["source"]) for r in results] == [
            ("Política de férias", "internal"),
            ("Férias coletivas", "website"),
        ]
        assert response.json()["total"] == 2

    async def test_no_external_sources_keeps_internal_ranking(
        self,
        app,
        client: AsyncClient,
        test_chatbot: Chatbot,
        knowledge_entries: list[KnowledgeBaseEntry],
    ):
        unused = AsyncMock()
        app.dependency_overrides[get_external_client] = lambda: unused

        response = await client.post(
            "/api/v1/knowledge-base/search",
            json={"query": "férias", "chatbotId": test_chatbot.id},
        )

        assert response.status_code == 200
        unused.search_all.assert_not_called()
