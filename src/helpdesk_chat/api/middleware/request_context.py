"""
Request context middleware for the helpdesk chat API.

Provides request ID tracking, timing, and context propagation
for REST and streaming endpoints.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Context variable for request-scoped data
_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)

# Request ID prefixes for easy identification in logs
REQUEST_ID_PREFIX = "req_"
WORKER_ID_PREFIX = "wrk_"


@dataclass
class RequestContext:
    """Request-scoped context for tracking and logging.

    Stores request metadata that can be accessed anywhere in the call stack
    without passing it explicitly through function arguments.
    """

    request_id: str
    start_time: float = field(default_factory=time.monotonic)
    path: str = ""
    method: str = ""
    client_ip: str | None = None
    user_id: str | None = None
    company_id: str | None = None
    chat_id: str | None = None
    job_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed time since request start in milliseconds."""
        return (time.monotonic() - self.start_time) * 1000

    def to_log_context(self) -> dict[str, Any]:
        """Get context dict for logging."""
        ctx: dict[str, Any] = {
            "request_id": self.request_id,
            "path": self.path,
            "method": self.method,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        for key in ("client_ip", "user_id", "company_id", "chat_id", "job_id"):
            value = getattr(self, key)
            if value:
                ctx[key] = value
        return ctx


def generate_request_id(prefix: str = REQUEST_ID_PREFIX) -> str:
    """Generate a unique request ID.

    Format: prefix + 16 hex characters (64 bits of entropy)
    Example: req_a1b2c3d4e5f6a7b8
    """
    return f"{prefix}{secrets.token_hex(8)}"


def get_request_context() -> RequestContext | None:
    """Get the current request context.

    Returns None if called outside of a request context.
    """
    return _request_context.get()


def get_request_id() -> str | None:
    """Get the current request ID."""
    ctx = get_request_context()
    return ctx.request_id if ctx else None


def set_request_context(context: RequestContext) -> None:
    """Set the request context for the current async context."""
    _request_context.set(context)


def clear_request_context() -> None:
    """Clear the request context."""
    _request_context.set(None)


def update_request_context(**kwargs: Any) -> None:
    """Update fields in the current request context.

    Common usage:
        update_request_context(user_id="user_123", chat_id="chat_456")
    """
    ctx = get_request_context()
    if ctx:
        for key, value in kwargs.items():
            if hasattr(ctx, key):
                setattr(ctx, key, value)
            else:
                ctx.extra[key] = value


def create_worker_context(job_id: str, chat_id: str | None = None) -> RequestContext:
    """Create a context for a job processed outside any HTTP request.

    Each worker job runs with its own context so log lines carry the job and chat ids.
    """
    context = RequestContext(
        request_id=generate_request_id(WORKER_ID_PREFIX),
        path="worker",
        method="JOB",
        chat_id=chat_id,
        job_id=job_id,
    )
    set_request_context(context)
    return context


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to initialize request context for each request.

    Adds request ID to response headers and initializes context vars.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # Honor an upstream request ID (distributed tracing)
        request_id = request.headers.get("X-Request-ID") or generate_request_id()

        client_ip = request.headers.get("X-Forwarded-For")
        if client_ip:
            client_ip = client_ip.split(",")[0].strip()
        elif request.client:
            client_ip = request.client.host

        chat_id = None
        path_parts = request.url.path.split("/")
        if "chats" in path_parts:
            idx = path_parts.index("chats")
            if idx + 1 < len(path_parts) and path_parts[idx + 1]:
                chat_id = path_parts[idx + 1]

        context = RequestContext(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
            client_ip=client_ip,
            chat_id=chat_id,
        )
        set_request_context(context)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{context.elapsed_ms:.2f}ms"
            return response
        finally:
            clear_request_context()


__all__ = [
    "REQUEST_ID_PREFIX",
    "WORKER_ID_PREFIX",
    "RequestContext",
    "RequestContextMiddleware",
    "clear_request_context",
    "create_worker_context",
    "generate_request_id",
    "get_request_context",
    "get_request_id",
    "set_request_context",
    "update_request_context",
]
