"""Database models for ChatbotKB."""

from chatbot_kb.models.chatbot import Chatbot
from chatbot_kb.models.conversation import Conversation, ConversationStatus, Message, MessageRole
from chatbot_kb.models.knowledge import KnowledgeBaseEntry

__all__ = [
    # Chatbot
    "Chatbot",
    # Knowledge base
    "KnowledgeBaseEntry",
    # Conversations
    "Conversation",
    "ConversationStatus",
    "Message",
    "MessageRole",
]
