"""
Chat job background worker.

Async polling loop that, on every tick:
1. Reaps jobs stuck in processing past the stale timeout (-> failed, "stale_timeout")
2. Claims pending jobs one at a time and runs each turn to completion, writing
   its text deltas, tool calls, saved message and errors to the job update log

Runs on a loop with configurable interval; the same batch can be triggered over HTTP.
"""

from __future__ import annotations

import asyncio
import contextlib

from datetime import timedelta

from helpdesk_chat.api.middleware.request_context import (
    clear_request_context,
    create_worker_context,
    get_request_context,
    set_request_context,
)
from helpdesk_chat.api.services.chat_store import ChatStore
from helpdesk_chat.api.streaming.task_manager import CancellationToken
from helpdesk_chat.core.constants import (
    ERROR_STALE_TIMEOUT,
    ERROR_WORKER_SHUTDOWN,
    EVENT_ERROR,
    JOB_STATUS_COMPLETED,
    JOB_UPDATE_EVENTS,
    Settings,
    get_settings,
)
from helpdesk_chat.core.turn_processor import TurnProcessor
from helpdesk_chat.models.chat_models import BatchSummary, Job, JobUpdate, utcnow
from helpdesk_chat.models.error_models import ErrorCode
from helpdesk_chat.models.event_models import StreamEvent
from helpdesk_chat.utils import metrics
from helpdesk_chat.utils.logger import logger


class ChatJobWorker:
    """Background worker for queued chat turns.

    One worker runs one turn at a time; several worker processes may share a
    store because claiming is a conditional pending -> processing transition.
    """

    def __init__(
        self,
        store: ChatStore,
        processor: TurnProcessor,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.processor = processor
        self.interval_seconds = settings.worker_interval_seconds
        self.batch_size = settings.worker_batch_size
        self.stale_timeout = timedelta(seconds=settings.stale_job_timeout_seconds)
        self.last_batch: BatchSummary | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._batch_lock = asyncio.Lock()
        self._current_token: CancellationToken | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background polling loop."""
        if self._running:
            logger.warning("Chat job worker already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Chat job worker started (interval {self.interval_seconds}s, batch {self.batch_size})")

    async def stop(self) -> None:
        """Stop the loop; an in-flight turn is failed with ``worker_shutdown``."""
        self._running = False
        if self._current_token is not None:
            self._current_token.cancel_nowait(ERROR_WORKER_SHUTDOWN)
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Chat job worker stopped")

    async def _run_loop(self) -> None:
        """Main worker loop; a failed cycle is logged and the loop continues."""
        while self._running:
            try:
                await self.run_batch(trigger="loop")
            except Exception as e:
                logger.error(f"Chat job worker cycle failed: {e}", exc_info=True)

            await asyncio.sleep(self.interval_seconds)

    async def reap_stale_jobs(self) -> list[Job]:
        """Fail jobs that have been processing longer than the stale timeout."""
        reaped = await self.store.reap_stale_jobs(utcnow() - self.stale_timeout)
        for job in reaped:
            metrics.jobs_reaped_total.inc()
            metrics.jobs_total.labels(status="failed").inc()
            logger.warning(
                f"Reaped stale job {job.id} ({ERROR_STALE_TIMEOUT})",
                job_id=job.id,
                chat_id=job.chat_id,
            )
        return reaped

    async def run_batch(self, trigger: str = "loop") -> BatchSummary:
        """Reap stale jobs, then claim and process up to ``batch_size`` pending jobs.

        Concurrent calls on the same worker run one after the other.
        """
        async with self._batch_lock:
            metrics.worker_batches_total.labels(trigger=trigger).inc()
            summary = BatchSummary()

            await self.reap_stale_jobs()

            for _ in range(self.batch_size):
                job = await self.store.claim_next_job()
                if job is None:
                    break
                await self._process_job(job, summary)

            if summary.processed:
                logger.info(
                    f"Chat job batch complete - {summary.processed} processed, "
                    f"{summary.completed} completed, {summary.failed} failed",
                    trigger=trigger,
                )
            self.last_batch = summary
            return summary

    async def _write_update(self, job: Job, event: StreamEvent) -> None:
        """Append a turn event to the job's update log; a failed write never fails the job."""
        if event.event not in JOB_UPDATE_EVENTS or event.data is None:
            return
        try:
            await self.store.append_job_update(JobUpdate(job_id=job.id, type=event.event, data=event.data))
        except Exception as e:
            logger.error(f"Failed to write update for job {job.id}: {e}", job_id=job.id, update_type=event.event)

    async def _process_job(self, job: Job, summary: BatchSummary) -> None:
        """Run one claimed job; failures are recorded and never abort the batch."""
        previous_context = get_request_context()
        create_worker_context(job.id, job.chat_id)
        logger.info(f"Processing job {job.id} for chat {job.chat_id}", job_id=job.id, chat_id=job.chat_id)
        summary.processed += 1
        token = CancellationToken()
        self._current_token = token
        error: str | None = None

        try:
            async with token.cancellation_scope():
                async for event in self.processor.process_turn(job, token):
                    await self._write_update(job, event)
                    if event.event == EVENT_ERROR and isinstance(event.data, dict):
                        error = event.data.get("message")
        except asyncio.CancelledError:
            if not token.is_cancelled:
                raise
            # Worker shutdown: the processor has already failed the job with the token's reason
            error = token.cancel_reason
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"Job {job.id} raised: {error}", exc_info=True, job_id=job.id)
            if await self.store.fail_job(job.id, error) is not None:
                metrics.jobs_total.labels(status="failed").inc()
            await self._write_update(job, StreamEvent.error(ErrorCode.INTERNAL_ERROR.value, error, jobId=job.id))
        finally:
            self._current_token = None
            if previous_context is not None:
                set_request_context(previous_context)
            else:
                clear_request_context()

        final = await self.store.get_job(job.id)
        if final is not None and final.status == JOB_STATUS_COMPLETED:
            summary.completed += 1
            return

        summary.failed += 1
        reason = (final.error if final is not None else None) or error or "Unknown error"
        summary.errors.append(f"Job {job.id}: {reason}")

        if token.is_cancelled:
            raise asyncio.CancelledError(token.cancel_reason)


__all__ = ["ChatJobWorker"]
