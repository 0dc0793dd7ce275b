"""
Job endpoints (v1).

Turns submitted here are queued for the background worker. A chat has at
most one pending or processing job; submitting while one is active returns
that job with ``created: false``. The worker records each queued turn's
stream events, which clients read back from ``/jobs/{jobId}/updates``.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from helpdesk_chat.api.dependencies import Jobs, resolve_tenant
from helpdesk_chat.api.middleware.auth import CurrentUser
from helpdesk_chat.api.middleware.request_context import update_request_context
from helpdesk_chat.core.constants import DEFAULT_JOB_UPDATES_LIMIT, MAX_JOB_UPDATES_LIMIT
from helpdesk_chat.models.schemas.chats import (
    ActiveJobResponse,
    JobResponse,
    JobUpdatesResponse,
    SubmitJobResponse,
    SubmitTurnRequest,
)

router = APIRouter()


ChatIdPath = Annotated[str, Path(..., alias="chatId", description="Chat identifier")]
JobIdPath = Annotated[str, Path(..., alias="jobId", description="Job identifier", examples=["job_8d1e"])]

CompanyIdQuery = Annotated[
    str | None,
    Query(alias="companyId", description="Company the chat belongs to", examples=["acme"]),
]

UserIdQuery = Annotated[
    str | None,
    Query(alias="userId", description="User id (localhost development only)"),
]


@router.post(
    "/chats/{chatId}/jobs",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit turn",
    description=(
        "Optionally append a user message and queue a turn for background processing. "
        "If the chat already has an active job, that job is returned and no message is appended."
    ),
    responses={
        202: {
            "description": "Turn queued (or coalesced into the active job)",
            "content": {
                "application/json": {
                    "example": {"job": {"id": "job_8d1e", "status": "pending", "chatId": "chat_3f2a9c"}, "created": True}
                }
            },
        },
        404: {"description": "Chat not found"},
    },
)
async def submit_turn(
    chat_id: ChatIdPath,
    request: SubmitTurnRequest,
    jobs: Jobs,
    user: CurrentUser,
) -> SubmitJobResponse:
    tenant = resolve_tenant(user, request.company_id, request.user_id)
    job, created = await jobs.submit_turn(
        tenant,
        chat_id,
        message=request.message,
        tools_state=request.tools_state,
        personality_level=request.personality_level,
    )
    update_request_context(job_id=job.id)
    return SubmitJobResponse(job=job, created=created)


@router.get(
    "/chats/{chatId}/active-job",
    response_model=ActiveJobResponse,
    summary="Active job",
    description=(
        "The chat's most recent pending or processing job, or null. "
        "Clients poll this to recover turn status after a dropped stream."
    ),
    responses={
        200: {
            "description": "Active job (or null)",
            "content": {
                "application/json": {
                    "example": {
                        "activeJob": {
                            "id": "job_8d1e",
                            "status": "processing",
                            "chatId": "chat_3f2a9c",
                            "createdAt": 1736937000000,
                            "startedAt": 1736937002000,
                        }
                    }
                }
            },
        },
        400: {"description": "companyId missing"},
        404: {"description": "Chat not found"},
    },
)
async def get_active_job(
    chat_id: ChatIdPath,
    jobs: Jobs,
    user: CurrentUser,
    company_id: CompanyIdQuery = None,
    user_id: UserIdQuery = None,
) -> ActiveJobResponse:
    tenant = resolve_tenant(user, company_id, user_id)
    job = await jobs.active_job(tenant, chat_id)
    return ActiveJobResponse(active_job=job.to_active_job() if job is not None else None)


@router.get(
    "/jobs/{jobId}",
    response_model=JobResponse,
    summary="Get job",
    responses={404: {"description": "Job not found"}},
)
async def get_job(
    job_id: JobIdPath,
    jobs: Jobs,
    user: CurrentUser,
    company_id: CompanyIdQuery = None,
    user_id: UserIdQuery = None,
) -> JobResponse:
    tenant = resolve_tenant(user, company_id, user_id)
    return JobResponse(job=await jobs.get_job(tenant, job_id))


@router.post(
    "/jobs/{jobId}/retry",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry job",
    description="Queue a new job superseding a failed one. A job can be retried at most three times.",
    responses={
        404: {"description": "Job not found"},
        409: {"description": "Job is not failed or has no retries left"},
    },
)
async def retry_job(
    job_id: JobIdPath,
    jobs: Jobs,
    user: CurrentUser,
    company_id: CompanyIdQuery = None,
    user_id: UserIdQuery = None,
) -> SubmitJobResponse:
    tenant = resolve_tenant(user, company_id, user_id)
    job, created = await jobs.retry_job(tenant, job_id)
    update_request_context(job_id=job.id)
    return SubmitJobResponse(job=job, created=created)


@router.get(
    "/jobs/{jobId}/updates",
    response_model=JobUpdatesResponse,
    summary="Job updates",
    description=(
        "Streamed events of a worker-processed turn (text deltas, finished tool calls, the saved "
        "assistant message, errors), oldest first. Pass the last seen ``seq`` as ``after`` to poll "
        "for newer updates until the job status is terminal."
    ),
    responses={
        200: {
            "description": "Updates after the given sequence number",
            "content": {
                "application/json": {
                    "example": {
                        "jobId": "job_8d1e",
                        "status": "processing",
                        "updates": [
                            {
                                "id": "upd_41c0",
                                "jobId": "job_8d1e",
                                "seq": 1,
                                "type": "response.output_text.delta",
                                "data": {"delta": "There are "},
                                "createdAt": "2025-01-15T10:30:02Z",
                            }
                        ],
                        "lastSeq": 1,
                    }
                }
            },
        },
        404: {"description": "Job not found"},
    },
)
async def list_job_updates(
    job_id: JobIdPath,
    jobs: Jobs,
    user: CurrentUser,
    company_id: CompanyIdQuery = None,
    user_id: UserIdQuery = None,
    after: Annotated[int, Query(ge=0, description="Only return updates with a greater seq")] = 0,
    limit: Annotated[
        int,
        Query(ge=1, le=MAX_JOB_UPDATES_LIMIT, description="Maximum updates to return"),
    ] = DEFAULT_JOB_UPDATES_LIMIT,
) -> JobUpdatesResponse:
    tenant = resolve_tenant(user, company_id, user_id)
    job, updates = await jobs.list_job_updates(tenant, job_id, after_seq=after, limit=limit)
    return JobUpdatesResponse(
        job_id=job.id,
        status=job.status,
        updates=updates,
        last_seq=updates[-1].seq if updates else after,
    )
