"""
Message endpoints (v1).

Provides paginated message retrieval, direct message appends, and the
StreamItem replay view of a chat's history.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from helpdesk_chat.api.dependencies import Jobs, resolve_tenant
from helpdesk_chat.api.middleware.auth import CurrentUser
from helpdesk_chat.core.constants import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from helpdesk_chat.models.schemas.base import PaginationMeta
from helpdesk_chat.models.schemas.chats import (
    CreateMessageRequest,
    MessageListResponse,
    MessageResponse,
    StreamItemsResponse,
)

router = APIRouter()


ChatIdPath = Annotated[
    str,
    Path(
        ...,
        alias="chatId",
        description="Chat identifier",
        examples=["chat_3f2a9c"],
    ),
]

CompanyIdQuery = Annotated[
    str | None,
    Query(alias="companyId", description="Company the chat belongs to", examples=["acme"]),
]

UserIdQuery = Annotated[
    str | None,
    Query(alias="userId", description="User id (localhost development only)"),
]


@router.get(
    "/{chatId}/messages",
    response_model=MessageListResponse,
    summary="List messages",
    description="Retrieve paginated messages for a chat, oldest first. Pages start at 1.",
    responses={
        200: {
            "description": "Messages retrieved successfully",
            "content": {
                "application/json": {
                    "example": {
                        "messages": [{"id": "msg_1", "role": "user", "content": "Hello"}],
                        "pagination": {
                            "page": 1,
                            "limit": 50,
                            "total": 24,
                            "hasMore": False,
                        },
                    }
                }
            },
        },
        400: {"description": "companyId missing or pagination out of range"},
        404: {"description": "Chat not found"},
    },
)
async def list_messages(
    chat_id: ChatIdPath,
    jobs: Jobs,
    user: CurrentUser,
    company_id: CompanyIdQuery = None,
    user_id: UserIdQuery = None,
    page: Annotated[int, Query(ge=1, description="Page number (1-based)", examples=[1])] = 1,
    limit: Annotated[
        int,
        Query(ge=1, le=MAX_PAGE_LIMIT, description="Maximum messages to return", examples=[50]),
    ] = DEFAULT_PAGE_LIMIT,
) -> MessageListResponse:
    """List messages with page/limit pagination."""
    tenant = resolve_tenant(user, company_id, user_id)
    messages, total = await jobs.list_messages(tenant, chat_id, page=page, limit=limit)
    return MessageListResponse(
        messages=messages,
        pagination=PaginationMeta.build(page=page, limit=limit, total=total),
    )


@router.post(
    "/{chatId}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Append message",
    description="Append a user or assistant message to a chat without starting a turn.",
    responses={404: {"description": "Chat not found"}},
)
async def create_message(
    chat_id: ChatIdPath,
    request: CreateMessageRequest,
    jobs: Jobs,
    user: CurrentUser,
) -> MessageResponse:
    tenant = resolve_tenant(user, request.company_id, request.user_id)
    message = await jobs.append_message(tenant, chat_id, request.role, request.content, request.tool_calls)
    return MessageResponse(message=message)


@router.get(
    "/{chatId}/items",
    response_model=StreamItemsResponse,
    summary="List stream items",
    description=(
        "The chat's history as StreamItems for client replay. Each assistant message "
        "is preceded by its tool calls in recorded order."
    ),
    responses={404: {"description": "Chat not found"}},
)
async def list_stream_items(
    chat_id: ChatIdPath,
    jobs: Jobs,
    user: CurrentUser,
    company_id: CompanyIdQuery = None,
    user_id: UserIdQuery = None,
) -> StreamItemsResponse:
    tenant = resolve_tenant(user, company_id, user_id)
    return StreamItemsResponse(items=await jobs.list_stream_items(tenant, chat_id))
