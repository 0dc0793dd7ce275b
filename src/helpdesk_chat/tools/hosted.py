"""
Provider-hosted tools (web search, file search, code interpreter) toggled per request.
"""

from __future__ import annotations

from typing import Any

from agents import CodeInterpreterTool, FileSearchTool, WebSearchTool
from openai.types.responses.web_search_tool import UserLocation as ProviderUserLocation

from helpdesk_chat.models.chat_models import ToolsState
from helpdesk_chat.utils.logger import logger


def build_hosted_tools(tools_state: ToolsState, vector_store_ids: list[str] | None = None) -> list[Any]:
    """Hosted tools enabled by ``tools_state``, in web / file / code order.

    Web search carries the user location only when one of its fields is set.
    File search is skipped when no vector store is configured.
    """
    tools: list[Any] = []

    if tools_state.web_search_enabled:
        location = tools_state.web_search_config.user_location
        if location is not None and location.is_set():
            fields = {key: value for key, value in location.model_dump().items() if value}
            tools.append(WebSearchTool(user_location=ProviderUserLocation(**fields)))
        else:
            tools.append(WebSearchTool())

    if tools_state.file_search_enabled:
        if vector_store_ids:
            tools.append(FileSearchTool(vector_store_ids=list(vector_store_ids)))
        else:
            logger.warning("File search requested but no vector stores are configured; skipping")

    if tools_state.code_interpreter_enabled:
        tools.append(CodeInterpreterTool(tool_config={"type": "code_interpreter", "container": {"type": "auto"}}))

    return tools


__all__ = ["build_hosted_tools"]
