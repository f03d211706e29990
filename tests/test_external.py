"""Tests for the external knowledge search client (httpx mock transport)."""

import json

import httpx
import pytest

from chatbot_kb.core.config import Settings
from chatbot_kb.knowledge.external import (
    ExternalKnowledgeClient,
    ExternalKnowledgeSource,
    ExternalSourceType,
    parse_external_result,
)
from chatbot_kb.observability import MetricsCollector

WEBSITE = ExternalKnowledgeSource(type=ExternalSourceType.WEBSITE, url="https://docs.example.com")


def _client(handler, **kwargs) -> ExternalKnowledgeClient:
    return ExternalKnowledgeClient(
        "https://kb.example.com/api/",
        api_key="ext-key",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestParseExternalResult:
    def test_defaults_source_and_clamps_score(self):
        result = parse_external_result(
            {"id": 7, "title": "Manual", "content": "Passo a passo", "relevanceScore": 1.7},
            WEBSITE,
        )

        assert result.id == "7"
        assert result.source == "website"
        assert result.relevance_score == 1.0

    def test_keeps_own_source_and_reads_score_field(self):
        result = parse_external_result({"id": "a", "source": "wiki", "score": "0.4"}, WEBSITE)
        assert result.source == "wiki"
        assert result.relevance_score == pytest.approx(0.4)

    def test_rejects_non_objects(self):
        with pytest.raises(TypeError):
            parse_external_result(["not", "an", "object"], WEBSITE)


class TestExternalKnowledgeClient:
    """Request shape, error tolerance and metrics."""

    async def test_search_posts_query_and_parses_results(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["custom"] = request.headers.get("X-Tenant")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"results": [{"id": "e1", "title": "Guia", "content": "c", "relevanceScore": 0.8}]},
            )

        source = ExternalKnowledgeSource(
            type=ExternalSourceType.API,
            url="https://erp.example.com",
            headers={"X-Tenant": "acme"},
            query="faq",
        )
        results = await _client(handler).search("senha", source)

        assert seen["url"] == "https://kb.example.com/api/search"
        assert seen["auth"] == "Bearer ext-key"
        assert seen["custom"] == "acme"
        assert seen["body"] == {
            "query": "senha",
            "source": "api",
            "url": "https://erp.example.com",
            "customQuery": "faq",
        }
        assert [(r.id, r.source, r.relevance_score) for r in results] == [("e1", "api", 0.8)]

    async def test_http_error_yields_no_results(self):
        metrics = MetricsCollector()
        client = _client(lambda request: httpx.Response(500), metrics=metrics)

        assert await client.search("senha", WEBSITE) == []
        assert 'external_api_requests_total{provider="knowledge_api",operation="search",status="error"} 1' in (
            metrics.render_prometheus()
        )

    async def test_malformed_entries_skipped(self):
        def handler(request):
            return httpx.Response(200, json={"results": ["junk", {"id": "ok", "title": "Válido"}]})

        results = await _client(handler).search("senha", WEBSITE)

        assert [r.id for r in results] == ["ok"]

    async def test_search_all_keeps_source_order(self):
        def handler(request):
            url = json.loads(request.content)["url"]
            return httpx.Response(200, json={"results": [{"id": url, "title": url}]})

        sources = [
            ExternalKnowledgeSource(type=ExternalSourceType.WEBSITE, url="first"),
            ExternalKnowledgeSource(type=ExternalSourceType.DOCUMENT, url="second"),
        ]
        results = await _client(handler).search_all("senha", sources)

        assert [r.id for r in results] == ["first", "second"]

    async def test_unconfigured_client_returns_nothing(self):
        client = ExternalKnowledgeClient.from_settings(Settings(external_knowledge_api_url=None))

        assert client.enabled is False
        assert await client.search("senha", WEBSITE) == []
        assert await client.search_all("senha", []) == []
