"""Response generation with Google Gemini."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol, Sequence

from chatbot_kb.core.ai_constants import ASSISTANT_LABEL, USER_LABEL
from chatbot_kb.core.config import Settings
from chatbot_kb.core.exceptions import GenerationError
from chatbot_kb.knowledge.context import format_knowledge_prompt
from chatbot_kb.observability import MetricsBackend

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """A prior conversation turn passed to the generator."""

    role: str  # "user" | "assistant" | "system"
    content: str
    timestamp: Optional[datetime] = None


class ResponseGenerator(Protocol):
    """Produces the assistant reply for one user message."""

    async def generate_response(
        self,
        message: str,
        context: Sequence[ChatMessage],
        knowledge: Sequence[str],
    ) -> str:
        ...


def build_prompt(
    message: str,
    context: Sequence[ChatMessage] = (),
    knowledge: Sequence[str] = (),
    system_prompt: str | None = None,
) -> str:
    """Build the single-turn prompt sent to the model.

    Layout: system prompt, prior turns as ``role: content`` lines, the
    knowledge context section, then the user message and assistant cue.
    """
    conversation = "\n".join(f"{msg.role}: {msg.content}" for msg in context)
    knowledge_context = format_knowledge_prompt(knowledge)
    return (
        f"\n{system_prompt or ''}\n\n"
        f"{conversation}\n\n"
        f"{knowledge_context}\n\n"
        f"{USER_LABEL}: {message}\n"
        f"{ASSISTANT_LABEL}:"
    )


class GeminiChatbot:
    """ResponseGenerator backed by ``google.generativeai``.

    Credentials and generation settings are injected; nothing is read
    from the environment here.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gemini-2.5-flash",
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        top_p: float = 0.8,
        top_k: int = 40,
        metrics: MetricsBackend | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.top_p = top_p
        self.top_k = top_k
        self.metrics = metrics

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        system_prompt: str | None = None,
        overrides: Mapping[str, Any] | None = None,
        metrics: MetricsBackend | None = None,
    ) -> "GeminiChatbot":
        """Build a client from app settings plus per-chatbot overrides.

        ``overrides`` uses the stored chatbot settings keys
        (``temperature``, ``maxTokens``); falsy values keep the defaults.
        """
        overrides = overrides or {}
        return cls(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            system_prompt=system_prompt,
            temperature=overrides.get("temperature") or settings.generation_temperature,
            max_tokens=overrides.get("maxTokens") or settings.generation_max_tokens,
            top_p=settings.generation_top_p,
            top_k=settings.generation_top_k,
            metrics=metrics,
        )

    @property
    def generation_config(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "max_output_tokens": self.max_tokens,
            "top_p": self.top_p,
            "top_k": self.top_k,
        }

    async def generate_response(
        self,
        message: str,
        context: Sequence[ChatMessage] = (),
        knowledge: Sequence[str] = (),
    ) -> str:
        """Generate the assistant reply.

        Raises:
            GenerationError: If the model call fails or returns no text.
        """
        import google.generativeai as genai

        if not self.api_key:
            raise GenerationError("Gemini API key is not configured")

        prompt = build_prompt(message, context, knowledge, self.system_prompt)

        start_time = time.perf_counter()
        status_code = 500
        try:
            genai.configure(api_key=self.api_key)
            model = genai.GenerativeModel(self.model, generation_config=self.generation_config)
            response = await model.generate_content_async(prompt)
            text = response.text
            status_code = 200
        except Exception as e:
            logger.error("Gemini generate_content failed: %s", e, exc_info=True)
            raise GenerationError("Failed to generate response") from e
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            if self.metrics:
                self.metrics.observe_external_api("gemini", "generate_content", status_code, duration_ms)
            logger.info(
                "Gemini API generate_content status=%s duration_ms=%.2f",
                status_code,
                duration_ms,
            )

        return text.strip()
