"""
API v1 router aggregation.

All v1 endpoints are mounted under /api/v1 prefix.
"""

from __future__ import annotations

from fastapi import APIRouter

from helpdesk_chat.api.routes.v1 import chats, health, jobs, messages, turns, workers

router = APIRouter()

router.include_router(health.router, tags=["Health"])
router.include_router(chats.router, prefix="/chats", tags=["Chats"])
router.include_router(messages.router, prefix="/chats", tags=["Messages"])
router.include_router(jobs.router, tags=["Jobs"])
router.include_router(turns.router, prefix="/chat", tags=["Turns"])
router.include_router(workers.router, prefix="/workers", tags=["Workers"])

__all__ = ["router"]
