"""
Turn stream endpoint (v1).

Submits a turn and streams it back as server-sent events. The job is claimed
for this stream with the same conditional pending -> processing transition
the worker uses, so a job is never processed twice. When the chat already
has an active job the stream carries a single ``job.active`` event and
closes; the client then polls the active-job endpoint.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from helpdesk_chat.api.dependencies import Jobs, Processor, Store, resolve_tenant
from helpdesk_chat.api.middleware.auth import CurrentUser
from helpdesk_chat.api.middleware.exception_handlers import InvalidRequestError
from helpdesk_chat.api.middleware.request_context import update_request_context
from helpdesk_chat.api.streaming.channel import SSE_HEADERS, StreamChannel, sse_stream
from helpdesk_chat.models.chat_models import Job
from helpdesk_chat.models.event_models import StreamEvent
from helpdesk_chat.models.schemas.chats import TurnRequest
from helpdesk_chat.utils.logger import logger

router = APIRouter()


async def _job_active_stream(job: Job) -> AsyncIterator[str]:
    yield StreamEvent.job_active(job.to_active_job()).to_sse()


@router.post(
    "/turn_response",
    summary="Stream a chat turn",
    description=(
        "Append the latest user message, run the turn and stream provider events as "
        '`data: {"event": <type>, "data": <payload>}` frames. Creates the chat when '
        "`chatId` is omitted. Ends with `assistant_message.saved` or `error`."
    ),
    response_class=StreamingResponse,
    responses={
        200: {
            "description": "Event stream",
            "content": {
                "text/event-stream": {
                    "example": 'data: {"event": "response.output_text.delta", "data": {"delta": "Hi"}}\n\n'
                }
            },
        },
        400: {"description": "No user message, or companyId/employeeId missing"},
        404: {"description": "Chat not found"},
    },
)
async def turn_response(
    request: TurnRequest,
    jobs: Jobs,
    store: Store,
    processor: Processor,
    user: CurrentUser,
) -> StreamingResponse:
    tenant = resolve_tenant(user, request.company_id, request.user_id)

    last_user = next((m for m in reversed(request.messages) if m.role == "user"), None)
    if last_user is None or not last_user.content.strip():
        raise InvalidRequestError("messages must include a non-empty user message")

    if request.chat_id:
        chat = await jobs.get_chat(tenant, request.chat_id)
    else:
        chat = await jobs.create_chat(tenant, request.employee_id, title=request.title)
    update_request_context(chat_id=chat.id)

    job, created = await jobs.submit_turn(
        tenant,
        chat.id,
        message=last_user.content,
        tools_state=request.tools_state,
        personality_level=request.personality_level,
    )
    update_request_context(job_id=job.id)
    headers = {**SSE_HEADERS, "X-Chat-Id": chat.id, "X-Job-Id": job.id}

    claimed = await store.claim_job(job.id) if created else None
    if claimed is None:
        current = await store.get_job(job.id) or job
        logger.info(f"Turn for chat {chat.id} joined active job {job.id} ({current.status})", job_id=job.id)
        return StreamingResponse(_job_active_stream(current), media_type="text/event-stream", headers=headers)

    channel = StreamChannel()
    channel.start(processor.process_turn(claimed, channel.token))
    return StreamingResponse(sse_stream(channel), media_type="text/event-stream", headers=headers)
