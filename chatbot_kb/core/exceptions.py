"""Domain exceptions for retrieval and response generation.

Retrieval and generation fail independently: a caller that catches one
must not treat it as the other.
"""


class KnowledgeBaseError(Exception):
    """Base class for knowledge-base service errors."""


class RetrievalError(KnowledgeBaseError):
    """The knowledge item collection could not be fetched."""

    def __init__(self, chatbot_id: str, cause: BaseException | None = None) -> None:
        self.chatbot_id = chatbot_id
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to fetch knowledge items for chatbot {chatbot_id}{detail}")


class GenerationError(KnowledgeBaseError):
    """The generative model failed to produce a response."""
