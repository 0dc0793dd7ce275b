"""
Single-producer, single-consumer channel between a turn and its HTTP stream.

The producer task drains the turn processor into the channel; the response
body iterates the channel. Closing from the consumer side (client gone)
cancels the channel's token, which cancels the producer task and with it the
upstream provider exchange.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator
from typing import Any, ClassVar

from helpdesk_chat.api.streaming.task_manager import CancellationToken
from helpdesk_chat.core.constants import ERROR_CLIENT_DISCONNECTED
from helpdesk_chat.models.error_models import ErrorCode
from helpdesk_chat.models.event_models import StreamEvent
from helpdesk_chat.utils import metrics
from helpdesk_chat.utils.logger import logger

_CLOSED = object()


class StreamChannel:
    """Ordered, unbatched relay of StreamEvents from one producer to one consumer."""

    # Producer tasks outlive the response that started them (they still record
    # the job outcome after a disconnect), so keep strong references here
    _producers: ClassVar[set[asyncio.Task[Any]]] = set()

    def __init__(self, token: CancellationToken | None = None):
        self.token = token or CancellationToken()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._producer_done = False
        self._task: asyncio.Task[None] | None = None

    @property
    def producer_task(self) -> asyncio.Task[None] | None:
        return self._task

    async def send(self, event: StreamEvent) -> bool:
        """Enqueue an event; returns False once the consumer has gone away."""
        if self.token.is_cancelled or self._producer_done:
            return False
        await self._queue.put(event)
        return True

    def close(self) -> None:
        """Producer side: no more events."""
        if not self._producer_done:
            self._producer_done = True
            self._queue.put_nowait(_CLOSED)

    def cancel(self, reason: str = ERROR_CLIENT_DISCONNECTED) -> None:
        """Consumer side: stop the producer."""
        if self.token.cancel_nowait(reason):
            logger.info(f"Stream channel cancelled: {reason}")

    def start(self, source: AsyncIterator[StreamEvent]) -> asyncio.Task[None]:
        """Run ``source`` into this channel on a background task."""
        task = asyncio.create_task(self._produce(source))
        self._task = task
        self._producers.add(task)
        task.add_done_callback(self._producers.discard)
        return task

    async def _produce(self, source: AsyncIterator[StreamEvent]) -> None:
        metrics.turn_streams_active.inc()
        try:
            async with self.token.cancellation_scope():
                async for event in source:
                    if not await self.send(event):
                        break
        except asyncio.CancelledError:
            if not self.token.is_cancelled:
                raise
            # Cancelled through our own token: the source has already recorded the outcome
        except Exception as exc:
            logger.error(f"Stream producer failed: {exc}", exc_info=True)
            await self.send(StreamEvent.error(ErrorCode.INTERNAL_ERROR.value, f"Stream failed ({type(exc).__name__})"))
        finally:
            # Close the source here so its cleanup runs in this task, not at garbage collection
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()
            metrics.turn_streams_active.dec()
            self.close()

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._events()

    async def _events(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


async def sse_stream(channel: StreamChannel) -> AsyncIterator[str]:
    """Response body for a turn stream: one ``data:`` frame per event.

    If the body stops before the producer finishes (client disconnect, server
    shutdown), the channel is cancelled so the upstream exchange is aborted.
    """
    finished = False
    try:
        async for event in channel:
            yield event.to_sse()
        finished = True
    finally:
        if not finished:
            channel.cancel(ERROR_CLIENT_DISCONNECTED)


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


__all__ = ["SSE_HEADERS", "StreamChannel", "sse_stream"]
