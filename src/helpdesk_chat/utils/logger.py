"""
Logging setup for the helpdesk chat pipeline using Python's standard logging
with JSON formatting for structured logs.

Log destinations:
- Console (stderr): Human-readable format for debugging
- logs/chat.jsonl: JSON format for turn and job history
- logs/errors.jsonl: JSON format for error tracking
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from typing import Any, cast

from pythonjsonlogger import json as jsonlogger

from helpdesk_chat.api.middleware.request_context import get_request_context
from helpdesk_chat.core import constants
from helpdesk_chat.core.constants import (
    INSTANCE_ID_LENGTH,
    LOG_BACKUP_COUNT_CHAT,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    PROJECT_ROOT,
)

# PII Redaction patterns
REDACTION_PATTERNS = [
    (r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b", "[EMAIL]"),
    (r"\b(?:\d{4}[- ]?){3}\d{4}\b", "[CARD]"),
    (r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b", "[API_KEY]"),
    (r"\b(password|secret|token)\s*[:=]\s*\S+", "[REDACTED]"),
]


class InfoFilter(logging.Filter):
    """Allow INFO and above (not DEBUG)."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO


class ErrorFilter(logging.Filter):
    """Only allow ERROR and CRITICAL logs"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that adds colors to log levels.
    Format: HH:MM:SS [LEVEL] logger_name - message
    """

    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        level_fmt = f"{color}[{record.levelname}]{self.RESET}" if color else f"[{record.levelname}]"
        record.asctime = self.formatTime(record, "%H:%M:%S")

        # uvicorn access records: (client_addr, method, full_path, http_version, status_code)
        if record.name == "uvicorn.access" and record.args and len(record.args) == 5:
            client_addr, method, full_path, http_version, status_code = record.args
            status_code_num = int(cast(Any, status_code))
            if status_code_num < 400:
                status_fmt = f"{self.GREEN}{status_code}{self.RESET}"
            elif status_code_num < 500:
                status_fmt = f"{self.YELLOW}{status_code}{self.RESET}"
            else:
                status_fmt = f"{self.RED}{status_code}{self.RESET}"
            message = f'{client_addr} - "\x1b[1m{method}\x1b[0m {full_path} HTTP/{http_version}" {status_fmt}'
            return f"{record.asctime} {level_fmt} {record.name} - {message}"

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"{record.asctime} {level_fmt} {record.name} - {message}"


def configure_uvicorn_logging() -> None:
    """Route uvicorn's access and error loggers through the colored console format."""
    formatter = ColoredConsoleFormatter()

    main_logger = logging.getLogger("uvicorn")
    main_logger.handlers = []
    main_logger.setLevel(logging.INFO)

    for name in ("uvicorn.access", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        uv_logger.addHandler(handler)
        uv_logger.propagate = False


def setup_logging(name: str = "helpdesk-chat", debug: bool | None = None) -> logging.Logger:
    """
    Set up logging with console and rotating JSON file handlers.

    Args:
        name: Logger name
        debug: Enable debug logging (overrides DEBUG env var)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    logger.handlers = []
    logger.propagate = False

    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    # --- Console Handler (Human-readable) ---
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    logger.addHandler(console_handler)

    # --- File Handlers (JSON) ---
    log_dir = PROJECT_ROOT / "logs"
    try:
        log_dir.mkdir(exist_ok=True)
    except OSError:
        # Read-only filesystems (containers) keep console logging only
        return logger

    chat_handler = logging.handlers.RotatingFileHandler(
        log_dir / "chat.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_CHAT,
        encoding="utf-8",
    )
    chat_handler.setLevel(logging.INFO)
    chat_handler.addFilter(InfoFilter())
    chat_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(message)s %(request_id)s %(chat_id)s %(job_id)s",
            timestamp=True,
        )
    )
    logger.addHandler(chat_handler)

    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "errors.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_ERRORS,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.addFilter(ErrorFilter())
    error_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(error_handler)

    return logger


class ChatLogger:
    """
    High-level logging interface for the chat pipeline.
    Wraps standard Python logging; keyword arguments become structured fields.
    """

    def __init__(self, name: str = "helpdesk-chat"):
        self.logger = setup_logging(name)
        self.instance_id = str(uuid.uuid4())[:INSTANCE_ID_LENGTH]

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Enrich log arguments with request context and the instance ID."""
        kwargs.setdefault("instance_id", self.instance_id)

        if ctx := get_request_context():
            for key, value in ctx.to_log_context().items():
                kwargs.setdefault(key, value)

        # LogRecord reserves some attribute names
        for reserved in ("message", "asctime", "args", "name"):
            if reserved in kwargs:
                kwargs[f"ctx_{reserved}"] = kwargs.pop(reserved)
        return kwargs

    def debug(self, message: str, /, **kwargs: Any) -> None:
        """Debug level logging"""
        self.logger.debug(message, extra=self._enrich_context(kwargs))

    def info(self, message: str, /, **kwargs: Any) -> None:
        """Info level logging"""
        self.logger.info(message, extra=self._enrich_context(kwargs))

    def warning(self, message: str, /, **kwargs: Any) -> None:
        """Warning level logging"""
        self.logger.warning(message, extra=self._enrich_context(kwargs))

    def error(self, message: str, /, exc_info: bool = False, **kwargs: Any) -> None:
        """Error level logging with optional exception info"""
        self.logger.error(message, extra=self._enrich_context(kwargs), exc_info=exc_info)

    def _should_log_content(self) -> bool:
        """Check if content logging is enabled via settings."""
        try:
            return bool(constants.get_settings().enable_content_logging)
        except Exception:
            # Settings may be unavailable (e.g. missing credentials at import time)
            return False

    def _redact_content(self, text: str) -> str:
        """Redact PII from text using defined patterns."""
        if not text:
            return text

        redacted = text
        for pattern, replacement in REDACTION_PATTERNS:
            redacted = re.sub(pattern, replacement, redacted)
        return redacted

    def _preview(self, text: str) -> str:
        preview = self._redact_content(text[:LOG_PREVIEW_LENGTH].replace("\n", " "))
        if len(text) > LOG_PREVIEW_LENGTH:
            preview += "..."
        return preview

    def log_turn(
        self,
        *,
        job_id: str,
        chat_id: str,
        response: str,
        tool_names: list[str] | None = None,
        duration_ms: float | None = None,
        success: bool = True,
    ) -> None:
        """Log a finished chat turn with metadata and an optional redacted preview."""
        should_log_content = self._should_log_content()
        response_preview = self._preview(response) if should_log_content else "[HIDDEN]"

        msg_parts = [f"Turn {job_id} ({'ok' if success else 'failed'}) → AI: {response_preview}"]
        if tool_names:
            msg_parts.append(f"[{len(tool_names)} tools]")
        if duration_ms is not None:
            msg_parts.append(f"[{duration_ms:.0f}ms]")

        extra_data: dict[str, Any] = {
            "chat_turn": True,
            "job_id": job_id,
            "chat_id": chat_id,
            "chars_response": len(response),
            "tools": len(tool_names or []),
            "content_logging": should_log_content,
        }
        if tool_names:
            extra_data["tool_names"] = tool_names
        if duration_ms is not None:
            extra_data["ms"] = int(duration_ms)

        self.logger.info(" ".join(msg_parts), extra=self._enrich_context(extra_data))

    def log_tool_call(self, tool_name: str, args: dict[str, Any], output: str, status: str) -> None:
        """Log a tool invocation; arguments and output only when content logging is on."""
        should_log_content = self._should_log_content()

        if should_log_content:
            redacted_args = self._redact_content(str(args))
            message = f"Tool call: {tool_name}({redacted_args}) [{status}] → {self._preview(output)}"
        else:
            message = f"Tool call: {tool_name}(...) [{status}] → [HIDDEN]"

        extra_data = {"func": tool_name, "tool_status": status, "content_logging": should_log_content}
        self.logger.info(message, extra=self._enrich_context(extra_data))


# Global logger instance
logger = ChatLogger()
