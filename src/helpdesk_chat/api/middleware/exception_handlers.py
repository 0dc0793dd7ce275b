"""
Global exception handlers for the helpdesk chat API.

Provides centralized error handling with consistent response formatting,
proper logging, and request context integration.
"""

from __future__ import annotations

import traceback

from typing import Any

import asyncpg

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from openai import APIError as OpenAIAPIError
from pydantic import ValidationError

from helpdesk_chat.api.middleware.request_context import get_request_context, get_request_id
from helpdesk_chat.core import constants
from helpdesk_chat.models.error_models import (
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    get_status_code,
)
from helpdesk_chat.utils.logger import logger


class AppException(Exception):
    """Base application exception with error code support.

    Example:
        raise AppException(
            code=ErrorCode.NOT_FOUND,
            message="Chat not found",
            details={"chat_id": chat_id}
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)


class InvalidRequestError(AppException):
    """Missing or malformed input."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=ErrorCode.INVALID_REQUEST, message=message, details=details)


class AuthenticationError(AppException):
    """Authentication-related errors."""

    def __init__(self, message: str = "Authentication required", details: dict[str, Any] | None = None):
        super().__init__(code=ErrorCode.AUTH_REQUIRED, message=message, details=details)


class ResourceNotFoundError(AppException):
    """Resource not found errors."""

    def __init__(self, resource: str, resource_id: str | None = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} '{resource_id}' not found"
        super().__init__(code=ErrorCode.NOT_FOUND, message=message, details={"resource": resource, "id": resource_id})


class ChatNotFoundError(ResourceNotFoundError):
    """Chat not found (or owned by another tenant)."""

    def __init__(self, chat_id: str):
        super().__init__(resource="Chat", resource_id=chat_id)


class JobNotFoundError(ResourceNotFoundError):
    """Job not found (or owned by another tenant)."""

    def __init__(self, job_id: str):
        super().__init__(resource="Job", resource_id=job_id)


class ConflictError(AppException):
    """Request conflicts with the current state of a resource."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=ErrorCode.CONFLICT, message=message, details=details)


class ToolError(AppException):
    """Tool resolution or execution failure.

    Raised by the dispatcher for unknown tools and for tenant-scoped tools
    invoked without tenant context.
    """

    def __init__(
        self,
        tool_name: str,
        message: str,
        code: ErrorCode = ErrorCode.TOOL_FAILED,
        cause: Exception | None = None,
    ):
        super().__init__(code=code, message=message, details={"tool": tool_name}, cause=cause)
        self.tool_name = tool_name


class StoreError(AppException):
    """Chat store read/write failure. The message keeps the underlying error verbatim."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(code=ErrorCode.STORE_ERROR, message=message, cause=cause)


def _create_error_response(
    code: ErrorCode,
    message: str,
    request: Request | None = None,
    details: list[ErrorDetail] | None = None,
    debug_info: dict[str, Any] | None = None,
) -> ErrorResponse:
    """Create a standardized error response."""
    return ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path if request else None,
        details=details,
        debug=debug_info,
    )


def _log_error(error: Exception, code: ErrorCode, status_code: int) -> None:
    """Log error with appropriate level and context."""
    ctx = get_request_context()
    log_context = ctx.to_log_context() if ctx else {}
    log_context["error_code"] = code.value
    log_context["status_code"] = status_code

    if status_code >= 500:
        logger.error(f"Server error: {code.value} - {error}", exc_info=True, **log_context)
    elif status_code >= 400:
        logger.warning(f"Client error: {code.value} - {error}", **log_context)


def _validation_details(errors: list[Any]) -> list[ErrorDetail]:
    return [
        ErrorDetail(
            field=".".join(str(loc) for loc in error["loc"]),
            message=error["msg"],
            code=error["type"],
        )
        for error in errors
    ]


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application-specific exceptions."""
    status_code = get_status_code(exc.code)
    settings = constants.get_settings()

    debug_info = None
    if settings.debug:
        debug_info = {
            "exception_type": type(exc).__name__,
            "cause": str(exc.cause) if exc.cause else None,
        }

    details = None
    if exc.details:
        details = [ErrorDetail(field=k, message=str(v)) for k, v in exc.details.items() if v is not None]

    error_response = _create_error_response(
        code=exc.code,
        message=exc.message,
        request=request,
        details=details or None,
        debug_info=debug_info,
    )

    _log_error(exc, exc.code, status_code)

    return JSONResponse(
        status_code=status_code,
        content=error_response.to_dict(include_debug=settings.debug),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException with consistent formatting."""
    status_to_code = {
        400: ErrorCode.INVALID_REQUEST,
        401: ErrorCode.AUTH_REQUIRED,
        403: ErrorCode.AUTH_REQUIRED,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.CONFLICT,
        422: ErrorCode.INVALID_REQUEST,
        502: ErrorCode.PROVIDER_ERROR,
    }

    code = status_to_code.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    error_response = _create_error_response(code=code, message=message, request=request)
    _log_error(exc, code, exc.status_code)

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response.to_dict(),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request parsing errors as INVALID_REQUEST (400)."""
    error_response = _create_error_response(
        code=ErrorCode.INVALID_REQUEST,
        message="Request validation failed",
        request=request,
        details=_validation_details(exc.errors()),
    )

    _log_error(exc, ErrorCode.INVALID_REQUEST, 400)

    return JSONResponse(status_code=400, content=error_response.to_dict())


async def pydantic_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle Pydantic ValidationError from model validation."""
    error_response = _create_error_response(
        code=ErrorCode.INVALID_REQUEST,
        message="Data validation failed",
        request=request,
        details=_validation_details(exc.errors()),
    )

    _log_error(exc, ErrorCode.INVALID_REQUEST, 400)

    return JSONResponse(status_code=400, content=error_response.to_dict())


async def openai_exception_handler(request: Request, exc: OpenAIAPIError) -> JSONResponse:
    """Handle OpenAI API errors without echoing provider credentials."""
    settings = constants.get_settings()
    debug_info = None
    if settings.debug:
        debug_info = {
            "openai_error_type": type(exc).__name__,
            "openai_error_code": getattr(exc, "code", None),
        }

    error_response = _create_error_response(
        code=ErrorCode.PROVIDER_ERROR,
        message=f"LLM provider error: {type(exc).__name__}",
        request=request,
        debug_info=debug_info,
    )

    _log_error(exc, ErrorCode.PROVIDER_ERROR, 502)

    return JSONResponse(
        status_code=502,
        content=error_response.to_dict(include_debug=settings.debug),
    )


async def asyncpg_exception_handler(request: Request, exc: asyncpg.PostgresError) -> JSONResponse:
    """Handle PostgreSQL database errors."""
    settings = constants.get_settings()
    debug_info = None
    if settings.debug:
        debug_info = {
            "pg_error_code": getattr(exc, "sqlstate", None),
            "pg_error_class": type(exc).__name__,
        }

    error_response = _create_error_response(
        code=ErrorCode.STORE_ERROR,
        message="Database operation failed",
        request=request,
        debug_info=debug_info,
    )

    _log_error(exc, ErrorCode.STORE_ERROR, 500)

    return JSONResponse(
        status_code=500,
        content=error_response.to_dict(include_debug=settings.debug),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions; the detail names the failure without leaking configuration."""
    settings = constants.get_settings()

    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
        request_id=get_request_id(),
        path=request.url.path,
    )

    debug_info = None
    if settings.debug:
        debug_info = {
            "exception_message": str(exc),
            "traceback": traceback.format_exc(),
        }

    error_response = _create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message=f"An unexpected error occurred ({type(exc).__name__})",
        request=request,
        debug_info=debug_info,
    )

    return JSONResponse(
        status_code=500,
        content=error_response.to_dict(include_debug=settings.debug),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application.

    Call this in main.py after creating the FastAPI app:
        register_exception_handlers(app)
    """
    # Starlette's signature expects Exception; covariant handlers are safe at runtime
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValidationError, pydantic_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(OpenAIAPIError, openai_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(asyncpg.PostgresError, asyncpg_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "AppException",
    "AuthenticationError",
    "ChatNotFoundError",
    "ConflictError",
    "InvalidRequestError",
    "JobNotFoundError",
    "ResourceNotFoundError",
    "StoreError",
    "ToolError",
    "app_exception_handler",
    "asyncpg_exception_handler",
    "generic_exception_handler",
    "http_exception_handler",
    "openai_exception_handler",
    "pydantic_exception_handler",
    "register_exception_handlers",
    "validation_exception_handler",
]
