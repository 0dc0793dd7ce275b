"""
HTTP request/response logging for outbound provider and helpdesk API calls.

Captures method, URL, status and (sanitized) headers using httpx event hooks.
"""

from __future__ import annotations

import json

from typing import Any

import httpx

from helpdesk_chat.utils.logger import logger

SENSITIVE_HEADERS = ("authorization", "api-key", "x-api-key", "cookie")


class HTTPLogger:
    """Logs HTTP requests and responses for debugging."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._request_data: dict[int, dict[str, Any]] = {}

    async def log_request(self, request: httpx.Request) -> None:
        """Log outgoing HTTP request."""
        if not self.enabled:
            return

        try:
            body_str = request.content.decode("utf-8") if request.content else ""
            body_json = json.loads(body_str) if body_str else {}
        except (UnicodeDecodeError, json.JSONDecodeError, httpx.RequestNotRead):
            body_json = {"_note": "body not captured"}

        self._request_data[id(request)] = {"method": request.method, "url": str(request.url)}
        logger.info(
            f"HTTP Request: {request.method} {request.url}",
            http_request=True,
            method=request.method,
            url=str(request.url),
            headers=sanitize_headers(dict(request.headers)),
        )
        if body_json:
            logger.debug(f"Request Payload:\n{json.dumps(body_json, indent=2, default=str)}")

    async def log_response(self, response: httpx.Response) -> None:
        """Log HTTP response status; streaming bodies are never consumed here."""
        if not self.enabled:
            return

        request_data = self._request_data.pop(id(response.request), {})
        logger.info(
            f"HTTP Response: {response.status_code} {request_data.get('method', 'UNKNOWN')} "
            f"{request_data.get('url', 'UNKNOWN')}",
            http_response=True,
            status_code=response.status_code,
        )


def sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    """Redact credential headers, keeping the last 4 characters for correlation."""
    sanitized = headers.copy()
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            sanitized[key] = f"***{value[-4:]}" if len(value) > 4 else "***"
    return sanitized


def create_logging_client(
    enabled: bool = True,
    timeout: httpx.Timeout | None = None,
    base_url: str = "",
) -> httpx.AsyncClient:
    """Create an httpx client with request/response logging hooks."""
    http_logger = HTTPLogger(enabled=enabled)

    event_hooks: dict[str, list[Any]] = {
        "request": [http_logger.log_request],
        "response": [http_logger.log_response],
    }
    return httpx.AsyncClient(event_hooks=event_hooks, timeout=timeout, base_url=base_url)
