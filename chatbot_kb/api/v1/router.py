"""API v1 router aggregating all endpoint routers.

Knowledge Base:
  /api/v1/knowledge-base (list, create)
  /api/v1/knowledge-base/search

Chat:
  /api/v1/chat/{chatbot_id}
"""

from fastapi import APIRouter

from chatbot_kb.api.v1.endpoints import chat, knowledge_base

api_router = APIRouter()

# -------------------------------------------------------------------------
# Knowledge Base
# -------------------------------------------------------------------------
api_router.include_router(knowledge_base.router, prefix="/knowledge-base", tags=["knowledge-base"])

# -------------------------------------------------------------------------
# Chat
# -------------------------------------------------------------------------
api_router.include_router(chat.router, prefix="/chat", tags=["chat"])
