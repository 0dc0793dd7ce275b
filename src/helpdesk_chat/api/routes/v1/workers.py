"""
Worker trigger endpoints (v1).

Lets an external scheduler (cron) run one batch of the chat job worker
over HTTP, in addition to or instead of the in-process polling loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from helpdesk_chat.api.dependencies import Worker
from helpdesk_chat.api.middleware.auth import verify_cron_secret
from helpdesk_chat.models.chat_models import BatchSummary, utcnow
from helpdesk_chat.models.schemas.chats import WorkerStatusResponse

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.post(
    "/chat-processor",
    response_model=BatchSummary,
    summary="Run worker batch",
    description=(
        "Reap stale jobs, then claim and process pending jobs up to the batch size. "
        "Requires `Authorization: Bearer <CRON_SECRET>` when a secret is configured."
    ),
    responses={
        200: {
            "description": "Batch summary",
            "content": {
                "application/json": {
                    "example": {
                        "processed": 2,
                        "completed": 1,
                        "failed": 1,
                        "errors": ["Job job_8d1e: client_disconnected"],
                    }
                }
            },
        },
        401: {"description": "Invalid worker trigger secret"},
    },
)
async def run_chat_processor(worker: Worker) -> BatchSummary:
    return await worker.run_batch(trigger="http")


@router.get(
    "/chat-processor",
    response_model=WorkerStatusResponse,
    summary="Worker status",
)
async def chat_processor_status() -> WorkerStatusResponse:
    return WorkerStatusResponse(timestamp=utcnow().isoformat())
