"""
Chat, message and job records for the helpdesk chat pipeline.
Provides Pydantic models shared by the store adapters, the turn processor and the API boundary.

Records serialize with camelCase aliases (``chatId``, ``createdAt``) so the HTTP boundary
can return them directly; Python code always uses the snake_case attribute names.
"""

from __future__ import annotations

import uuid

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from helpdesk_chat.core.constants import (
    DEFAULT_CHAT_TITLE,
    DEFAULT_PERSONALITY_LEVEL,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
)

JobStatus = Literal["pending", "processing", "completed", "failed"]
ToolCallStatus = Literal["pending", "completed", "failed"]
MessageRole = Literal["user", "assistant"]


def utcnow() -> datetime:
    """Timezone-aware current time; all stored timestamps are UTC."""
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    """Generate a prefixed record id, e.g. ``chat_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def to_epoch_ms(value: datetime | None) -> int | None:
    """Convert a timestamp to epoch milliseconds (None passes through)."""
    if value is None:
        return None
    return int(value.timestamp() * 1000)


class _Record(BaseModel):
    """Base for persisted records: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict[str, Any]:
        """Serialize for HTTP responses."""
        return self.model_dump(mode="json", by_alias=True)


# ============================================================================
# Tenant / tools configuration
# ============================================================================


class TenantContext(_Record):
    """A (userId, companyId) pair scoping all tenant-specific data and tools."""

    user_id: str = Field(..., min_length=1)
    company_id: str = Field(..., min_length=1)


class UserLocation(BaseModel):
    """Approximate user location forwarded to hosted web search."""

    type: Literal["approximate"] = "approximate"
    country: str = ""
    city: str = ""
    region: str = ""

    def is_set(self) -> bool:
        return bool(self.country or self.region or self.city)


class WebSearchConfig(BaseModel):
    """Web search options (wire names are snake_case, as the provider expects)."""

    user_location: UserLocation | None = Field(default_factory=UserLocation)


class ToolsState(_Record):
    """Per-request tool toggles."""

    web_search_enabled: bool = False
    file_search_enabled: bool = False
    functions_enabled: bool = True
    code_interpreter_enabled: bool = False
    web_search_config: WebSearchConfig = Field(default_factory=WebSearchConfig)


# ============================================================================
# Chat / Message / ToolCall
# ============================================================================


class Chat(_Record):
    """A conversation owned by a tenant and bound to one employee persona."""

    id: str = Field(default_factory=lambda: new_id("chat"))
    company_id: str
    user_id: str
    employee_id: str
    title: str = DEFAULT_CHAT_TITLE
    thread_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    preview: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ToolCallFile(_Record):
    """A file produced by code execution and referenced by a tool call."""

    file_id: str
    filename: str | None = None
    mime_type: str | None = None
    container_id: str | None = None


class ToolCall(_Record):
    """One tool invocation recorded on the assistant message it informed.

    Status moves pending -> completed|failed exactly once (see ``finish``).
    """

    id: str = Field(default_factory=lambda: new_id("call"))
    type: str = "function_call"
    name: str | None = None
    arguments: str | None = None
    parsed_arguments: dict[str, Any] | None = None
    output: str | None = None
    status: ToolCallStatus = "pending"
    code: str | None = None
    files: list[ToolCallFile] = Field(default_factory=list)

    def finish(self, output: str, *, failed: bool = False) -> ToolCall:
        """Record the terminal status and output; a finished call cannot be finished again."""
        if self.status != "pending":
            raise ValueError(f"Tool call {self.id} already {self.status}")
        self.output = output
        self.status = "failed" if failed else "completed"
        return self


class Message(_Record):
    """An append-only chat message; replay order is ``created_at`` ascending."""

    id: str = Field(default_factory=lambda: new_id("msg"))
    chat_id: str
    role: MessageRole
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Stream items (display/replay form of messages)
# ============================================================================


class ContentPart(BaseModel):
    """A textual content part of a message item."""

    type: Literal["input_text", "output_text"]
    text: str


class MessageItem(_Record):
    """A ``message`` stream item."""

    type: Literal["message"] = "message"
    id: str
    role: MessageRole
    content: list[ContentPart] = Field(default_factory=list)


class ToolCallItem(_Record):
    """A ``tool_call`` stream item."""

    type: Literal["tool_call"] = "tool_call"
    id: str
    tool_type: str
    name: str | None = None
    status: ToolCallStatus
    arguments: str | None = None
    parsed_arguments: dict[str, Any] | None = None
    output: str | None = None
    code: str | None = None
    files: list[ToolCallFile] = Field(default_factory=list)


StreamItem = Annotated[MessageItem | ToolCallItem, Field(discriminator="type")]


# ============================================================================
# Jobs
# ============================================================================


class Job(_Record):
    """The asynchronous processing lifecycle of one turn.

    Status transitions are monotonic: pending -> processing -> completed|failed.
    """

    id: str = Field(default_factory=lambda: new_id("job"))
    chat_id: str
    company_id: str
    user_id: str
    employee_id: str | None = None
    status: JobStatus = JOB_STATUS_PENDING
    personality_level: int = DEFAULT_PERSONALITY_LEVEL
    tools_state: ToolsState = Field(default_factory=ToolsState)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    messages_saved: int = 0
    retry_count: int = 0
    supersedes_job_id: str | None = None

    @field_validator("tools_state", mode="before")
    @classmethod
    def default_tools_state(cls, v: Any) -> Any:
        return ToolsState() if v is None else v

    @property
    def is_active(self) -> bool:
        return self.status in (JOB_STATUS_PENDING, JOB_STATUS_PROCESSING)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JOB_STATUS_COMPLETED, JOB_STATUS_FAILED)

    @property
    def tenant(self) -> TenantContext:
        return TenantContext(user_id=self.user_id, company_id=self.company_id)

    def to_active_job(self) -> dict[str, Any]:
        """Active-job query payload; timestamps in epoch milliseconds."""
        return {
            "id": self.id,
            "status": self.status,
            "chatId": self.chat_id,
            "createdAt": to_epoch_ms(self.created_at),
            "startedAt": to_epoch_ms(self.started_at),
        }


class JobUpdate(_Record):
    """One streaming event of a worker-processed turn, kept so clients can follow the job.

    ``seq`` is assigned by the store and increases within a job.
    """

    id: str = Field(default_factory=lambda: new_id("upd"))
    job_id: str
    seq: int = 0
    type: str
    data: Any = None
    created_at: datetime = Field(default_factory=utcnow)


class BatchSummary(BaseModel):
    """Outcome of one scheduler batch, returned to the trigger endpoint."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)


__all__ = [
    "BatchSummary",
    "Chat",
    "ContentPart",
    "Job",
    "JobUpdate",
    "JobStatus",
    "Message",
    "MessageItem",
    "MessageRole",
    "StreamItem",
    "TenantContext",
    "ToolCall",
    "ToolCallFile",
    "ToolCallItem",
    "ToolCallStatus",
    "ToolsState",
    "UserLocation",
    "WebSearchConfig",
    "new_id",
    "to_epoch_ms",
    "utcnow",
]
