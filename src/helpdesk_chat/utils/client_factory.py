"""
HTTP and OpenAI client factory utilities.
Centralizes AsyncOpenAI and helpdesk API client creation with consistent configuration.
"""

from __future__ import annotations

from typing import Any

import httpx

from openai import AsyncOpenAI

from helpdesk_chat.core.constants import Settings
from helpdesk_chat.utils.http_logger import create_logging_client

# Streaming responses can pause while the model runs hosted tools,
# so the provider client needs a generous read timeout
DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_READ_TIMEOUT = 600.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0


def create_http_client(
    enable_logging: bool = False,
    read_timeout: float | None = None,
    base_url: str = "",
) -> httpx.AsyncClient:
    """Create HTTP client with proper timeouts for streaming.

    Args:
        enable_logging: Enable HTTP request/response logging
        read_timeout: Read timeout in seconds (default: 600s)
        base_url: Optional base URL prepended to relative request paths
    """
    effective_read_timeout = read_timeout if read_timeout is not None else DEFAULT_READ_TIMEOUT
    timeout = httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=effective_read_timeout,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )

    if enable_logging:
        return create_logging_client(enabled=True, timeout=timeout, base_url=base_url)

    return httpx.AsyncClient(timeout=timeout, base_url=base_url)


def create_helpdesk_client(settings: Settings) -> httpx.AsyncClient:
    """HTTP client for the helpdesk platform REST API used by named functions."""
    return create_http_client(
        enable_logging=settings.http_request_logging,
        read_timeout=settings.helpdesk_api_timeout,
        base_url=settings.helpdesk_api_base_url,
    )


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """Create AsyncOpenAI client with consistent configuration.

    Args:
        api_key: OpenAI or Azure OpenAI API key
        base_url: Optional base URL for Azure or custom endpoints
        http_client: Optional httpx client for request logging
    """
    kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client}
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)


def create_provider_client(settings: Settings, http_client: httpx.AsyncClient | None = None) -> AsyncOpenAI:
    """Create the LLM provider client for the configured ``api_provider``."""
    if settings.api_provider == "azure":
        return create_openai_client(
            settings.azure_openai_api_key or "",
            base_url=settings.azure_endpoint_str,
            http_client=http_client,
        )
    return create_openai_client(settings.openai_api_key or "", http_client=http_client)
