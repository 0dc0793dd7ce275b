"""Message format conversion.

Maps persisted messages to the stream item form used for replay and display,
and to the provider-native input list used to rebuild model context.
All functions are pure.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from helpdesk_chat.models.chat_models import (
    ContentPart,
    Message,
    MessageItem,
    ToolCall,
    ToolCallItem,
    utcnow,
)

StreamItemT = MessageItem | ToolCallItem


def _content_type(role: str) -> str:
    return "input_text" if role == "user" else "output_text"


def tool_call_to_item(tool_call: ToolCall) -> ToolCallItem:
    return ToolCallItem(
        id=tool_call.id,
        tool_type=tool_call.type,
        name=tool_call.name,
        status=tool_call.status,
        arguments=tool_call.arguments,
        parsed_arguments=tool_call.parsed_arguments,
        output=tool_call.output,
        code=tool_call.code,
        files=[f.model_copy() for f in tool_call.files],
    )


def item_to_tool_call(item: ToolCallItem) -> ToolCall:
    return ToolCall(
        id=item.id,
        type=item.tool_type,
        name=item.name,
        arguments=item.arguments,
        parsed_arguments=item.parsed_arguments,
        output=item.output,
        status=item.status,
        code=item.code,
        files=[f.model_copy() for f in item.files],
    )


def to_stream_items(message: Message) -> list[StreamItemT]:
    """Tool call items in recorded order, then the message item they informed."""
    items: list[StreamItemT] = [tool_call_to_item(tc) for tc in message.tool_calls]
    items.append(
        MessageItem(
            id=message.id,
            role=message.role,
            content=[ContentPart(type=_content_type(message.role), text=message.content)],  # type: ignore[arg-type]
        )
    )
    return items


def chat_to_stream_items(messages: Iterable[Message]) -> list[StreamItemT]:
    """Flatten a chat transcript (already ordered by ``created_at``) into stream items."""
    items: list[StreamItemT] = []
    for message in messages:
        items.extend(to_stream_items(message))
    return items


def from_stream_items(
    items: Sequence[StreamItemT],
    *,
    chat_id: str,
    created_at: datetime | None = None,
) -> Message:
    """Rebuild one message from the items ``to_stream_items`` produced for it.

    Raises:
        ValueError: ``items`` does not end with exactly one message item.
    """
    if not items or not isinstance(items[-1], MessageItem):
        raise ValueError("Stream items must end with a message item")
    *tool_items, message_item = items
    if any(not isinstance(item, ToolCallItem) for item in tool_items):
        raise ValueError("Only tool call items may precede the message item")

    return Message(
        id=message_item.id,
        chat_id=chat_id,
        role=message_item.role,
        content="".join(part.text for part in message_item.content),
        tool_calls=[item_to_tool_call(item) for item in tool_items],  # type: ignore[arg-type]
        created_at=created_at or utcnow(),
    )


def to_provider_turn(role: str, content: str) -> dict[str, Any]:
    """One provider input turn: user text is plain, assistant text is an output_text part."""
    if role == "user":
        return {"role": "user", "content": content}
    return {"role": "assistant", "content": [{"type": "output_text", "text": content}]}


def to_conversation_history(messages: Iterable[Message]) -> list[dict[str, Any]]:
    """Provider-native turns carrying only role and text.

    Tool call detail is dropped; messages without text (tool-only turns) are skipped.
    """
    return [to_provider_turn(m.role, m.content) for m in messages if m.content]
