"""AI service constants and prompts.

Centralized configuration for retrieval scoring weights, default limits
and prompt fragments used by the chat flow.
"""

# Relevance scoring weights (raw points, ceiling MAX_RAW_SCORE)
MAX_RAW_SCORE = 100.0
TITLE_EXACT_POINTS = 40.0
CONTENT_EXACT_POINTS = 20.0
TITLE_KEYWORD_POINTS = 30.0
CONTENT_KEYWORD_POINTS = 20.0
TAG_POINTS = 25.0
TAG_WHOLE_MATCH_UNITS = 1.0
TAG_WORD_MATCH_UNITS = 0.5
TYPE_BONUS_POINTS = {
    "DOCUMENT": 5.0,
    "FAQ": 3.0,
}

# Query words shorter than this (after lowercasing) are ignored
MIN_QUERY_WORD_LENGTH = 3

# Retrieval defaults per call site
CHAT_RETRIEVAL_LIMIT = 5
CHAT_RETRIEVAL_THRESHOLD = 0.1  # recall-oriented: prompt stuffing
SEARCH_DEFAULT_LIMIT = 10
SEARCH_DEFAULT_THRESHOLD = 0.3  # precision-oriented: user-facing search

# Conversation history handed to the generator
HISTORY_MESSAGE_LIMIT = 10

# Combined (internal + external) result cap
COMBINED_RESULT_LIMIT = 10
INTERNAL_SOURCE = "internal"

# Prompt fragments
KNOWLEDGE_CONTEXT_HEADER = "Base de conhecimento:"
USER_LABEL = "Usuário"
ASSISTANT_LABEL = "Assistente"
