"""Chat services: response generation, conversation storage, orchestration."""

from chatbot_kb.services.chat_service import ChatReply, ChatService
from chatbot_kb.services.conversation_store import ConversationHistoryStore, SqlConversationStore
from chatbot_kb.services.gemini_client import ChatMessage, GeminiChatbot, ResponseGenerator, build_prompt

__all__ = [
    "ChatMessage",
    "ChatReply",
    "ChatService",
    "ConversationHistoryStore",
    "GeminiChatbot",
    "ResponseGenerator",
    "SqlConversationStore",
    "build_prompt",
]
