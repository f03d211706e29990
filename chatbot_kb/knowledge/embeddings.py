"""Embedding generation for the optional vector search extension.

Supports Google (text-embedding-004) and OpenAI (text-embedding-3-small).
Used by semantic search; the chat flow never embeds.
"""

import logging
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from chatbot_kb.core.config import Settings

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("google", "openai")
DEFAULT_MODELS = {
    "google": "text-embedding-004",
    "openai": "text-embedding-3-small",
}
BATCH_SIZE = 100


class EmbeddingClient:
    """Generates embeddings with explicitly injected credentials.

    Args:
        provider: "google" or "openai".
        api_key: API key for the provider.
        model: Model name (defaults per provider).
    """

    def __init__(
        self,
        provider: str = "google",
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported embedding provider: {provider}")
        self.provider = provider
        self.api_key = api_key
        self.model = model or DEFAULT_MODELS[provider]

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EmbeddingClient":
        if settings.embedding_provider == "openai":
            return cls("openai", settings.openai_api_key, settings.openai_embedding_model)
        return cls(
            settings.embedding_provider,
            settings.gemini_api_key,
            settings.google_embedding_model,
        )

    async def embed_documents(self, texts: list[str]) -> "NDArray[np.float32]":
        """Embed knowledge item texts. Returns shape (len(texts), dim)."""
        if not texts:
            return np.empty((0, 0), dtype=np.float32)
        logger.debug("Embedding %d documents with %s/%s", len(texts), self.provider, self.model)
        if self.provider == "google":
            return self._embed_google(texts, task_type="retrieval_document")
        return await self._embed_openai(texts)

    async def embed_query(self, query: str) -> "NDArray[np.float32]":
        """Embed a search query. Returns shape (dim,)."""
        if self.provider == "google":
            return self._embed_google([query], task_type="retrieval_query")[0]
        return (await self._embed_openai([query]))[0]

    def _embed_google(self, texts: list[str], task_type: str) -> "NDArray[np.float32]":
        import google.generativeai as genai

        if self.api_key:
            genai.configure(api_key=self.api_key)

        embeddings: list[list[float]] = []
        for i in range(0, len(texts), BATCH_SIZE):
            batch = texts[i : i + BATCH_SIZE]
            result = genai.embed_content(
                model=f"models/{self.model}",
                content=batch,
                task_type=task_type,
            )
            embeddings.extend(result["embedding"])

        return np.array(embeddings, dtype=np.float32)

    async def _embed_openai(self, texts: list[str]) -> "NDArray[np.float32]":
        from openai import AsyncOpenAI

        client = AsyncOpenAI(api_key=self.api_key) if self.api_key else AsyncOpenAI()

        embeddings: list[list[float]] = []
        for i in range(0, len(texts), BATCH_SIZE):
            batch = texts[i : i + BATCH_SIZE]
            response = await client.embeddings.create(model=self.model, input=batch)
            embeddings.extend(item.embedding for item in response.data)

        return np.array(embeddings, dtype=np.float32)
