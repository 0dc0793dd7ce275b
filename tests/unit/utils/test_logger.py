"""Tests for the chat logger."""

from __future__ import annotations

import logging

from collections.abc import Callable
from typing import Any
from unittest.mock import Mock, patch

import pytest

from helpdesk_chat.api.middleware.request_context import RequestContext, clear_request_context, set_request_context
from helpdesk_chat.utils.logger import ChatLogger, ColoredConsoleFormatter, ErrorFilter, InfoFilter


@pytest.fixture
def chat_logger() -> ChatLogger:
    instance = ChatLogger("helpdesk-chat-test")
    instance.logger = Mock(spec=logging.Logger)
    return instance


def _record(level: int, msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("helpdesk-chat", level, __file__, 1, msg, None, None)


class TestFilters:
    def test_info_filter(self) -> None:
        assert InfoFilter().filter(_record(logging.INFO))
        assert not InfoFilter().filter(_record(logging.DEBUG))

    def test_error_filter(self) -> None:
        assert ErrorFilter().filter(_record(logging.ERROR))
        assert not ErrorFilter().filter(_record(logging.WARNING))

    def test_console_format(self) -> None:
        line = ColoredConsoleFormatter().format(_record(logging.WARNING, "careful"))

        assert "[WARNING]" in line
        assert line.endswith("helpdesk-chat - careful")


class TestChatLogger:
    def test_kwargs_become_extra(self, chat_logger: ChatLogger) -> None:
        chat_logger.info("Job claimed", job_id="job_1")

        extra = chat_logger.logger.info.call_args.kwargs["extra"]  # type: ignore[attr-defined]
        assert extra["job_id"] == "job_1"
        assert extra["instance_id"] == chat_logger.instance_id

    def test_reserved_names_are_prefixed(self, chat_logger: ChatLogger) -> None:
        chat_logger.warning("x", name="charlie", message="m")

        assert chat_logger.logger.warning.call_args.args == ("x",)  # type: ignore[attr-defined]
        extra = chat_logger.logger.warning.call_args.kwargs["extra"]  # type: ignore[attr-defined]
        assert extra["ctx_name"] == "charlie"
        assert extra["ctx_message"] == "m"
        assert "name" not in extra

    def test_request_context_is_merged(self, chat_logger: ChatLogger) -> None:
        set_request_context(RequestContext(request_id="req-1", chat_id="chat_1"))
        try:
            chat_logger.info("hello", chat_id="chat_override")
        finally:
            clear_request_context()

        extra = chat_logger.logger.info.call_args.kwargs["extra"]  # type: ignore[attr-defined]
        assert extra["request_id"] == "req-1"
        assert extra["chat_id"] == "chat_override"

    def test_error_passes_exc_info(self, chat_logger: ChatLogger) -> None:
        chat_logger.error("boom", exc_info=True)

        assert chat_logger.logger.error.call_args.kwargs["exc_info"] is True  # type: ignore[attr-defined]

    def test_redaction(self, chat_logger: ChatLogger) -> None:
        text = "mail jane@example.com card 4111 1111 1111 1111 password: hunter2"

        redacted = chat_logger._redact_content(text)

        assert "[EMAIL]" in redacted
        assert "[CARD]" in redacted
        assert "hunter2" not in redacted


class TestTurnLogging:
    def test_content_hidden_by_default(self, chat_logger: ChatLogger) -> None:
        chat_logger.log_turn(job_id="job_1", chat_id="chat_1", response="Your email is a@b.co", tool_names=["get_joke"])

        call = chat_logger.logger.info.call_args  # type: ignore[attr-defined]
        assert "[HIDDEN]" in call.args[0]
        assert "[1 tools]" in call.args[0]
        assert call.kwargs["extra"]["tool_names"] == ["get_joke"]
        assert call.kwargs["extra"]["content_logging"] is False

    def test_content_preview_when_enabled(
        self, chat_logger: ChatLogger, settings_factory: Callable[..., Any]
    ) -> None:
        settings = settings_factory(enable_content_logging=True)

        with patch("helpdesk_chat.core.constants.get_settings", return_value=settings):
            chat_logger.log_turn(job_id="job_1", chat_id="chat_1", response="Write to a@b.co", duration_ms=12.3)

        message = chat_logger.logger.info.call_args.args[0]  # type: ignore[attr-defined]
        assert "[EMAIL]" in message
        assert "[12ms]" in message

    def test_tool_call_hidden(self, chat_logger: ChatLogger) -> None:
        chat_logger.log_tool_call("escalate_to_human", {"reason": "angry"}, '{"success": true}', "completed")

        call = chat_logger.logger.info.call_args  # type: ignore[attr-defined]
        assert call.args[0] == "Tool call: escalate_to_human(...) [completed] → [HIDDEN]"
        assert call.kwargs["extra"]["func"] == "escalate_to_human"
