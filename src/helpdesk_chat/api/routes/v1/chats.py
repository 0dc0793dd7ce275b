"""
Chat management endpoints (v1).

Chats are scoped to the tenant formed by the authenticated user and the
``companyId`` named by the request; another tenant's chat is reported as
not found.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path, Query, Response, status

from helpdesk_chat.api.dependencies import Jobs, resolve_tenant
from helpdesk_chat.api.middleware.auth import CurrentUser
from helpdesk_chat.api.middleware.request_context import update_request_context
from helpdesk_chat.core.constants import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from helpdesk_chat.models.schemas.base import PaginationMeta
from helpdesk_chat.models.schemas.chats import (
    ChatListResponse,
    ChatResponse,
    CreateChatRequest,
    CreateChatResponse,
    UpdateChatRequest,
)

router = APIRouter()


# =============================================================================
# Parameter Types
# =============================================================================

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


# =============================================================================
# Endpoints
# =============================================================================


@router.post(
    "",
    response_model=CreateChatResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create chat",
    description="Create a chat with an employee persona. Returns the new chat id and record.",
    responses={
        201: {
            "description": "Chat created",
            "content": {
                "application/json": {
                    "example": {
                        "chatId": "chat_3f2a9c",
                        "chat": {"id": "chat_3f2a9c", "employeeId": "charlie", "title": "New Chat"},
                    }
                }
            },
        },
        400: {"description": "employeeId or companyId missing"},
    },
)
async def create_chat(request: CreateChatRequest, jobs: Jobs, user: CurrentUser) -> CreateChatResponse:
    """Create a new chat."""
    tenant = resolve_tenant(user, request.company_id, request.user_id)
    chat = await jobs.create_chat(tenant, request.employee_id, title=request.title, metadata=request.metadata)
    update_request_context(chat_id=chat.id)
    return CreateChatResponse(chat_id=chat.id, chat=chat)


@router.get(
    "",
    response_model=ChatListResponse,
    summary="List chats",
    description="List the tenant's chats, most recently updated first, optionally for one employee.",
    responses={400: {"description": "companyId missing or pagination out of range"}},
)
async def list_chats(
    jobs: Jobs,
    user: CurrentUser,
    company_id: CompanyIdQuery = None,
    user_id: UserIdQuery = None,
    employee_id: Annotated[str | None, Query(alias="employeeId", description="Only chats with this employee")] = None,
    page: Annotated[int, Query(ge=1, description="Page number (1-based)")] = 1,
    limit: Annotated[
        int,
        Query(ge=1, le=MAX_PAGE_LIMIT, description="Maximum chats per page"),
    ] = DEFAULT_PAGE_LIMIT,
) -> ChatListResponse:
    """List chats with page/limit pagination."""
    tenant = resolve_tenant(user, company_id, user_id)
    chats, total = await jobs.list_chats(tenant, employee_id=employee_id, page=page, limit=limit)
    return ChatListResponse(chats=chats, pagination=PaginationMeta.build(page=page, limit=limit, total=total))


@router.get(
    "/{chatId}",
    response_model=ChatResponse,
    summary="Get chat",
    responses={404: {"description": "Chat not found"}},
)
async def get_chat(
    chat_id: ChatIdPath,
    jobs: Jobs,
    user: CurrentUser,
    company_id: CompanyIdQuery = None,
    user_id: UserIdQuery = None,
) -> ChatResponse:
    tenant = resolve_tenant(user, company_id, user_id)
    return ChatResponse(chat=await jobs.get_chat(tenant, chat_id))


@router.patch(
    "/{chatId}",
    response_model=ChatResponse,
    summary="Update chat",
    description="Update the chat title and/or merge keys into its metadata.",
    responses={404: {"description": "Chat not found"}},
)
async def update_chat(chat_id: ChatIdPath, request: UpdateChatRequest, jobs: Jobs, user: CurrentUser) -> ChatResponse:
    tenant = resolve_tenant(user, request.company_id, request.user_id)
    chat = await jobs.update_chat(tenant, chat_id, title=request.title, metadata=request.metadata)
    return ChatResponse(chat=chat)


@router.delete(
    "/{chatId}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete chat",
    description="Delete the chat and its messages. Job records are kept for auditing.",
    responses={404: {"description": "Chat not found"}},
)
async def delete_chat(
    chat_id: ChatIdPath,
    jobs: Jobs,
    user: CurrentUser,
    company_id: CompanyIdQuery = None,
    user_id: UserIdQuery = None,
) -> Response:
    tenant = resolve_tenant(user, company_id, user_id)
    await jobs.delete_chat(tenant, chat_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
