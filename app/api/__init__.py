"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import chat, knowledge_gaps

router = APIRouter()

# Chat turn: retrieval, cited sources, unanswered detection
router.include_router(chat.router)

# Admin: knowledge-gap review, dismissal and resolution
router.include_router(knowledge_gaps.router)
