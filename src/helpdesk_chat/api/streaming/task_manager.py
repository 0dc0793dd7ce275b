"""
Cancellation token for cooperative task cancellation.

Provides:
- Cancellation signaling via asyncio.Event, with a reason
- Synchronous cancel, usable from cleanup paths that cannot await
- A scope that turns token cancellation into asyncio.CancelledError in the owning task
"""

from __future__ import annotations

import asyncio
import contextlib

from collections.abc import AsyncIterator, Callable

from helpdesk_chat.utils.logger import logger


class CancellationToken:
    """Cooperative cancellation token for async task cancellation.

    Usage:
        token = CancellationToken()

        # In the consumer/controller:
        token.cancel_nowait("client_disconnected")

        # In the producer:
        async with token.cancellation_scope():
            async for event in stream:
                ...
    """

    __slots__ = ("_callbacks", "_cancel_reason", "_cancelled")

    def __init__(self) -> None:
        self._cancelled = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._cancel_reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._cancelled.is_set()

    @property
    def cancel_reason(self) -> str | None:
        """Get the reason for cancellation, if any."""
        return self._cancel_reason

    def cancel_nowait(self, reason: str | None = None) -> bool:
        """Request cancellation and notify callbacks. The first reason wins.

        Returns:
            True if this call cancelled the token, False if it was already cancelled.
        """
        if self._cancelled.is_set():
            return False

        self._cancel_reason = reason
        self._cancelled.set()
        for callback in list(self._callbacks):
            self._invoke_callback(callback)
        return True

    def _invoke_callback(self, callback: Callable[[], None]) -> None:
        """Safely invoke a callback, logging any errors."""
        try:
            callback()
        except Exception as e:
            logger.warning(f"Cancellation callback error: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to be called when cancelled (immediately if already cancelled)."""
        if self._cancelled.is_set():
            self._invoke_callback(callback)
            return callback

        self._callbacks.append(callback)
        return callback

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Remove a previously registered callback."""
        with contextlib.suppress(ValueError):
            self._callbacks.remove(callback)

    @contextlib.asynccontextmanager
    async def cancellation_scope(self) -> AsyncIterator[None]:
        """Cancel the current task when the token is cancelled inside the scope.

        Raises:
            asyncio.CancelledError: If the token is cancelled before or during the scope
        """
        if self.is_cancelled:
            raise asyncio.CancelledError(self._cancel_reason or "Cancelled before scope entry")

        current_task = asyncio.current_task()

        def cancel_task() -> None:
            if current_task and not current_task.done():
                current_task.cancel(self._cancel_reason)

        self.on_cancel(cancel_task)
        try:
            yield
        finally:
            self.remove_callback(cancel_task)

        if self.is_cancelled:
            raise asyncio.CancelledError(self._cancel_reason or "Cancelled during scope")


__all__ = ["CancellationToken"]
