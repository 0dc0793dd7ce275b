"""Tests for HTTP request/response logging utilities."""

from __future__ import annotations

import json

from unittest.mock import Mock, patch

import httpx
import pytest

from helpdesk_chat.utils.http_logger import HTTPLogger, create_logging_client, sanitize_headers


def _request(method: str = "POST", content: bytes = b"", headers: dict[str, str] | None = None) -> Mock:
    request = Mock(spec=httpx.Request)
    request.method = method
    request.url = httpx.URL("https://helpdesk.test/api/tickets")
    request.headers = headers or {}
    request.content = content
    return request


class TestHTTPLogger:
    @pytest.mark.asyncio
    async def test_disabled_logs_nothing(self) -> None:
        http_logger = HTTPLogger(enabled=False)

        with patch("helpdesk_chat.utils.http_logger.logger") as mock_logger:
            await http_logger.log_request(_request())

        mock_logger.info.assert_not_called()

    @pytest.mark.asyncio
    async def test_logs_request_with_sanitized_headers(self) -> None:
        http_logger = HTTPLogger()
        body = json.dumps({"uid": "user-1"}).encode("utf-8")
        request = _request(content=body, headers={"Authorization": "Bearer secret-token-1234"})

        with patch("helpdesk_chat.utils.http_logger.logger") as mock_logger:
            await http_logger.log_request(request)

        call = mock_logger.info.call_args
        assert call.args[0] == "HTTP Request: POST https://helpdesk.test/api/tickets"
        assert call.kwargs["method"] == "POST"
        assert call.kwargs["headers"]["Authorization"] == "***1234"
        mock_logger.debug.assert_called_once()

    @pytest.mark.asyncio
    async def test_unreadable_body_is_noted(self) -> None:
        http_logger = HTTPLogger()

        with patch("helpdesk_chat.utils.http_logger.logger") as mock_logger:
            await http_logger.log_request(_request(content=b"\xff\xfe"))

        assert "body not captured" in mock_logger.debug.call_args.args[0]

    @pytest.mark.asyncio
    async def test_response_pairs_with_request(self) -> None:
        http_logger = HTTPLogger()
        request = _request(method="GET")
        response = Mock(spec=httpx.Response)
        response.request = request
        response.status_code = 200

        with patch("helpdesk_chat.utils.http_logger.logger") as mock_logger:
            await http_logger.log_request(request)
            await http_logger.log_response(response)

        message = mock_logger.info.call_args.args[0]
        assert message == "HTTP Response: 200 GET https://helpdesk.test/api/tickets"
        assert http_logger._request_data == {}


def test_sanitize_headers() -> None:
    headers = {"api-key": "abcdefgh", "Cookie": "abc", "Content-Type": "application/json"}

    assert sanitize_headers(headers) == {"api-key": "***efgh", "Cookie": "***", "Content-Type": "application/json"}


@pytest.mark.asyncio
async def test_create_logging_client_installs_hooks() -> None:
    client = create_logging_client(base_url="https://helpdesk.test")

    try:
        assert len(client.event_hooks["request"]) == 1
        assert len(client.event_hooks["response"]) == 1
        assert str(client.base_url).rstrip("/") == "https://helpdesk.test"
    finally:
        await client.aclose()
