"""
Chat, job and message API schemas.

Request bodies use the camelCase field names the helpdesk frontend sends
(``companyId``, ``employeeId``, ``toolsState``); ``selectedCompany`` is accepted
as an alias of ``companyId`` and ``uid`` as an alias of ``userId``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from helpdesk_chat.core.constants import DEFAULT_PERSONALITY_LEVEL
from helpdesk_chat.models.chat_models import Chat, Job, JobUpdate, Message, StreamItem, ToolCall, ToolsState
from helpdesk_chat.models.schemas.base import PaginationMeta

_COMPANY_ALIASES = AliasChoices("companyId", "selectedCompany", "company_id")
_USER_ALIASES = AliasChoices("userId", "uid", "user_id")


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Response(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Request Models
# =============================================================================


class CreateChatRequest(_Request):
    """Request body for creating a chat."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "employeeId": "charlie",
                "companyId": "acme",
                "title": "Refund questions",
            }
        },
    )

    employee_id: str = Field(..., min_length=1, description="Employee persona handling the chat")
    company_id: str = Field(..., min_length=1, validation_alias=_COMPANY_ALIASES)
    user_id: str | None = Field(default=None, validation_alias=_USER_ALIASES)
    title: str | None = Field(default=None, max_length=200)
    metadata: dict[str, Any] | None = None


class UpdateChatRequest(_Request):
    """Request body for updating chat title and/or metadata."""

    company_id: str = Field(..., min_length=1, validation_alias=_COMPANY_ALIASES)
    user_id: str | None = Field(default=None, validation_alias=_USER_ALIASES)
    title: str | None = Field(default=None, min_length=1, max_length=200)
    metadata: dict[str, Any] | None = None


class SubmitTurnRequest(_Request):
    """Request body for submitting a turn as a background job."""

    company_id: str = Field(..., min_length=1, validation_alias=_COMPANY_ALIASES)
    user_id: str | None = Field(default=None, validation_alias=_USER_ALIASES)
    message: str | None = Field(default=None, description="User message appended before the job is queued")
    tools_state: ToolsState = Field(default_factory=ToolsState)
    personality_level: int = DEFAULT_PERSONALITY_LEVEL


class CreateMessageRequest(_Request):
    """Request body for appending a message to a chat."""

    company_id: str = Field(..., min_length=1, validation_alias=_COMPANY_ALIASES)
    user_id: str | None = Field(default=None, validation_alias=_USER_ALIASES)
    role: Literal["user", "assistant"]
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)


class TurnMessage(BaseModel):
    """One message of the client-side transcript sent with a turn."""

    role: Literal["user", "assistant"]
    content: str

    @field_validator("content", mode="before")
    @classmethod
    def flatten_content(cls, v: Any) -> Any:
        """Accept provider-style content part lists and keep only their text."""
        if isinstance(v, list):
            return "".join(part.get("text", "") for part in v if isinstance(part, dict))
        return v


class TurnRequest(_Request):
    """Body of the streaming turn endpoint."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "messages": [{"role": "user", "content": "How many open tickets do we have?"}],
                "toolsState": {"functionsEnabled": True, "webSearchEnabled": False},
                "uid": "user_123",
                "companyId": "acme",
                "employeeId": "charlie",
                "personalityLevel": 2,
            }
        },
    )

    messages: list[TurnMessage] = Field(..., min_length=1)
    tools_state: ToolsState = Field(default_factory=ToolsState)
    user_id: str | None = Field(default=None, validation_alias=_USER_ALIASES)
    company_id: str = Field(..., min_length=1, validation_alias=_COMPANY_ALIASES)
    employee_id: str = Field(..., min_length=1)
    personality_level: int = DEFAULT_PERSONALITY_LEVEL
    chat_id: str | None = None
    title: str | None = Field(default=None, max_length=200)


# =============================================================================
# Response Models
# =============================================================================


class CreateChatResponse(_Response):
    chat_id: str
    chat: Chat


class ChatResponse(_Response):
    chat: Chat


class ChatListResponse(_Response):
    chats: list[Chat]
    pagination: PaginationMeta


class MessageListResponse(_Response):
    """Paginated message list (oldest first)."""

    messages: list[Message]
    pagination: PaginationMeta


class MessageResponse(_Response):
    message: Message


class StreamItemsResponse(_Response):
    items: list[StreamItem]


class SubmitJobResponse(_Response):
    job: Job
    created: bool = Field(..., description="False when an already-active job was returned instead")


class JobResponse(_Response):
    job: Job


class JobUpdatesResponse(_Response):
    """Streamed updates of a job; poll again with ``after=<lastSeq>`` while the job is active."""

    job_id: str
    status: str
    updates: list[JobUpdate]
    last_seq: int = Field(..., description="Highest seq returned, or the requested ``after`` when none")


class ActiveJobResponse(_Response):
    active_job: dict[str, Any] | None = Field(
        default=None,
        description="Most recent pending/processing job; timestamps in epoch milliseconds",
    )


class WorkerStatusResponse(BaseModel):
    status: Literal["ok"] = "ok"
    service: str = "chat-processor-worker"
    timestamp: str


__all__ = [
    "ActiveJobResponse",
    "ChatListResponse",
    "ChatResponse",
    "CreateChatRequest",
    "CreateChatResponse",
    "CreateMessageRequest",
    "JobResponse",
    "JobUpdatesResponse",
    "MessageListResponse",
    "MessageResponse",
    "StreamItemsResponse",
    "SubmitJobResponse",
    "SubmitTurnRequest",
    "TurnMessage",
    "TurnRequest",
    "UpdateChatRequest",
    "WorkerStatusResponse",
]
