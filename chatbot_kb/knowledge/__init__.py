"""Knowledge base relevance scoring and retrieval.

This module ranks a chatbot's knowledge items against a user query and
formats the best matches as context blocks for the response generator.
Embedding-based retrieval and external sources are optional additions
used only by the search endpoint.
"""

from chatbot_kb.knowledge.combine import combine_results
from chatbot_kb.knowledge.context import assemble, format_knowledge_prompt
from chatbot_kb.knowledge.embeddings import EmbeddingClient
from chatbot_kb.knowledge.external import ExternalKnowledgeClient, ExternalKnowledgeSource
from chatbot_kb.knowledge.models import KnowledgeItem, KnowledgeType, Query, SearchResult
from chatbot_kb.knowledge.retriever import KnowledgeRetriever, search
from chatbot_kb.knowledge.scorer import score, score_breakdown
from chatbot_kb.knowledge.semantic import SemanticRetriever
from chatbot_kb.knowledge.vector_index import VectorIndex

__all__ = [
    "KnowledgeItem",
    "KnowledgeType",
    "Query",
    "SearchResult",
    "KnowledgeRetriever",
    "SemanticRetriever",
    "search",
    "score",
    "score_breakdown",
    "assemble",
    "format_knowledge_prompt",
    "combine_results",
    "EmbeddingClient",
    "VectorIndex",
    "ExternalKnowledgeClient",
    "ExternalKnowledgeSource",
]
