"""Query term highlighting and snippet extraction for search results."""

import re

from chatbot_kb.knowledge.models import tokenize

SNIPPET_LEAD_CHARS = 50


def highlight_relevant_terms(text: str, query: str) -> str:
    """Wrap case-insensitive occurrences of each query word in <mark> tags."""
    words = tokenize(query.lower())
    if not words or not text:
        return text

    # Longest first so overlapping words mark the widest span.
    pattern = "|".join(re.escape(word) for word in sorted(words, key=len, reverse=True))
    return re.sub(f"({pattern})", r"<mark>\1</mark>", text, flags=re.IGNORECASE)


def extract_relevant_context(content: str, query: str, max_length: int = 200) -> str:
    """Return a snippet of ``content`` around the first query-word match.

    Falls back to the first ``max_length`` characters when no word matches.
    Truncated ends are marked with ``...``.
    """
    words = tokenize(query.lower())
    content_lower = content.lower()

    positions = [content_lower.find(word) for word in words]
    positions = [pos for pos in positions if pos != -1]

    if not positions:
        snippet = content[:max_length]
        return snippet + ("..." if len(content) > max_length else "")

    first_match = min(positions)
    start = max(0, first_match - SNIPPET_LEAD_CHARS)
    end = min(len(content), first_match + max_length - SNIPPET_LEAD_CHARS)

    snippet = content[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet
