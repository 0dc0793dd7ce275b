"""
Stream event models for the helpdesk chat pipeline.
Every unit relayed to a turn-stream client is a StreamEvent serialized as one SSE ``data:`` frame.
"""

from __future__ import annotations

import json

from typing import Any

from pydantic import BaseModel, Field

from helpdesk_chat.core.constants import (
    EVENT_ASSISTANT_MESSAGE_SAVED,
    EVENT_ERROR,
    EVENT_JOB_ACTIVE,
    EVENT_TOOL_CALL_COMPLETED,
)


class StreamEvent(BaseModel):
    """``{event: <type>, data: <payload>}`` as produced by the turn processor."""

    event: str
    data: Any = Field(default=None)

    def to_sse(self) -> str:
        """Encode as a server-sent event frame."""
        payload = json.dumps(self.model_dump(mode="json"), ensure_ascii=False, default=str)
        return f"data: {payload}\n\n"

    @classmethod
    def error(cls, code: str, message: str, **extra: Any) -> StreamEvent:
        return cls(event=EVENT_ERROR, data={"code": code, "message": message, **extra})

    @classmethod
    def tool_call_completed(cls, tool_call: dict[str, Any]) -> StreamEvent:
        return cls(event=EVENT_TOOL_CALL_COMPLETED, data=tool_call)

    @classmethod
    def assistant_message_saved(cls, message: dict[str, Any], job_id: str) -> StreamEvent:
        return cls(event=EVENT_ASSISTANT_MESSAGE_SAVED, data={"message": message, "jobId": job_id})

    @classmethod
    def job_active(cls, job: dict[str, Any]) -> StreamEvent:
        return cls(event=EVENT_JOB_ACTIVE, data={"activeJob": job})


__all__ = ["StreamEvent"]
