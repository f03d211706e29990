"""Format search results as prompt-ready knowledge blocks."""

from typing import Sequence

from chatbot_kb.core.ai_constants import KNOWLEDGE_CONTEXT_HEADER
from chatbot_kb.knowledge.models import SearchResult


def format_block(result: SearchResult) -> str:
    suffix = f" [Tags: {', '.join(result.tags)}]" if result.tags else ""
    return f"**{result.title}**{suffix}\n{result.content}"


def assemble(results: Sequence[SearchResult]) -> list[str]:
    """Turn ranked results into one text block each, order preserved.

    Blocks are never truncated.
    """
    return [format_block(result) for result in results]


def format_knowledge_prompt(blocks: Sequence[str]) -> str:
    """Join knowledge blocks into the prompt section handed to the model."""
    if not blocks:
        return ""
    return f"\n\n{KNOWLEDGE_CONTEXT_HEADER}\n" + "\n\n".join(blocks)
