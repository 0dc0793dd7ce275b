"""
Turn processor: drives one claimed job through a streaming model exchange.

``process_turn`` is an async generator of StreamEvents. It relays every raw
provider event as it arrives, runs named tools through the ToolDispatcher one
at a time while the exchange is suspended, and finishes by persisting the
assistant message and moving the job to a terminal status.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from agents import AgentsException, FunctionTool, RunConfig, Runner
from agents.models.openai_provider import OpenAIProvider
from openai import AsyncOpenAI, OpenAIError

from helpdesk_chat.api.services.chat_store import ChatStore
from helpdesk_chat.api.services.message_converter import tool_call_to_item, to_conversation_history
from helpdesk_chat.core.agent import create_agent
from helpdesk_chat.core.constants import (
    ERROR_CLIENT_DISCONNECTED,
    HOSTED_TOOL_ITEM_TYPES,
    JOB_STATUS_PROCESSING,
    OUTPUT_ITEM_DONE,
    OUTPUT_TEXT_DELTA,
    RAW_RESPONSE_EVENT,
    RESPONSE_FAILED,
    Settings,
    get_settings,
)
from helpdesk_chat.core.prompts import build_instructions
from helpdesk_chat.models.chat_models import Job, Message, ToolCall, new_id
from helpdesk_chat.models.error_models import ErrorCode
from helpdesk_chat.models.event_models import StreamEvent
from helpdesk_chat.tools.hosted import build_hosted_tools
from helpdesk_chat.tools.registry import ToolDispatcher, ToolSpec
from helpdesk_chat.utils import metrics
from helpdesk_chat.utils.logger import logger

if TYPE_CHECKING:
    from agents.result import RunResultStreaming

    from helpdesk_chat.api.streaming.task_manager import CancellationToken


class ProviderStreamError(Exception):
    """The provider reported a failed response inside the stream."""


def _payload(data: Any) -> Any:
    """JSON-ready payload of a provider event."""
    if hasattr(data, "model_dump"):
        return data.model_dump(mode="json", exclude_none=True)
    return data


def hosted_tool_call(item: Any) -> ToolCall | None:
    """Record a finished hosted tool item (web/file search, code interpreter) as a ToolCall."""
    item_type = getattr(item, "type", None)
    if item_type not in HOSTED_TOOL_ITEM_TYPES:
        return None

    payload = _payload(item)
    arguments = {key: payload[key] for key in ("action", "queries") if payload.get(key) is not None}
    output = {key: payload[key] for key in ("results", "outputs") if payload.get(key) is not None}

    call = ToolCall(
        id=payload.get("id") or new_id("call"),
        type=HOSTED_TOOL_ITEM_TYPES[item_type],
        name=item_type.removesuffix("_call"),
        arguments=json.dumps(arguments) if arguments else None,
        parsed_arguments=arguments or None,
        code=payload.get("code"),
    )
    return call.finish(json.dumps(output), failed=payload.get("status") == "failed")


class TurnProcessor:
    """Runs chat turns for claimed jobs.

    One instance is shared by the worker and the turn-stream endpoint; all
    per-turn state lives inside ``process_turn``.
    """

    def __init__(
        self,
        store: ChatStore,
        dispatcher: ToolDispatcher,
        openai_client: AsyncOpenAI,
        settings: Settings | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.openai_client = openai_client
        self.settings = settings or get_settings()

    def _function_tool(self, spec: ToolSpec, job: Job, recorded: list[ToolCall], completed: list[ToolCall]) -> Any:
        """Expose a registry tool to the agent; every call goes through the dispatcher."""

        async def on_invoke_tool(ctx: Any, input: str) -> str:
            call = await self.dispatcher.dispatch(
                spec.name,
                input,
                job.tenant,
                call_id=getattr(ctx, "tool_call_id", None),
                chat_id=job.chat_id,
            )
            recorded.append(call)
            completed.append(call)
            return call.output or ""

        return FunctionTool(
            name=spec.name,
            description=spec.description,
            params_json_schema=spec.params_json_schema(),
            on_invoke_tool=on_invoke_tool,
            strict_json_schema=spec.strict,
        )

    def _build_tools(self, job: Job, recorded: list[ToolCall], completed: list[ToolCall]) -> list[Any]:
        tools = build_hosted_tools(job.tools_state, self.settings.vector_store_ids)
        if job.tools_state.functions_enabled:
            tools.extend(
                self._function_tool(spec, job, recorded, completed)
                for spec in self.dispatcher.registry.for_employee(job.employee_id)
            )
        return tools

    async def _save_message(self, message: Message) -> Message:
        """Persist the assistant message, retrying once."""
        try:
            return await self.store.create_message(message)
        except Exception as e:
            logger.warning(f"Saving assistant message failed, retrying once: {e}", chat_id=message.chat_id)
            return await self.store.create_message(message)

    async def _complete(self, job: Job, started: float) -> None:
        if await self.store.complete_job(job.id, messages_saved=1) is None:
            logger.warning(f"Job {job.id} was no longer processing when its turn finished", job_id=job.id)
            return
        metrics.jobs_total.labels(status="completed").inc()
        metrics.job_duration_seconds.observe(time.perf_counter() - started)

    async def _fail(self, job: Job, error: str, started: float) -> None:
        failed = await self.store.fail_job(job.id, error)
        if failed is None:
            logger.warning(f"Job {job.id} was no longer processing; failure '{error}' not recorded", job_id=job.id)
            return
        metrics.jobs_total.labels(status="failed").inc()
        metrics.job_duration_seconds.observe(time.perf_counter() - started)
        logger.info(f"Job {job.id} failed: {error}", job_id=job.id, chat_id=job.chat_id)

    async def _settle_interrupted(
        self,
        job: Job,
        reason: str,
        saving: asyncio.Future[Message] | None,
        completion: asyncio.Future[None] | None,
        started: float,
    ) -> None:
        """Record the outcome of a turn whose consumer went away.

        A turn whose assistant message reached the store is completed; anything
        earlier is failed with ``reason``.
        """
        if completion is None and saving is not None:
            try:
                await saving
            except Exception as e:
                logger.warning(f"Saving assistant message failed after cancellation: {e}", job_id=job.id)
            else:
                completion = asyncio.ensure_future(self._complete(job, started))

        if completion is not None:
            await completion
            logger.info(f"Turn for job {job.id} completed after {reason}", job_id=job.id)
            return

        logger.info(f"Turn for job {job.id} cancelled: {reason}", job_id=job.id)
        await self._fail(job, reason, started)

    async def process_turn(self, job: Job, token: CancellationToken | None = None) -> AsyncIterator[StreamEvent]:
        """Run one turn for a job already claimed into ``processing``.

        Yields relayed provider events plus ``tool_call.completed``,
        ``assistant_message.saved`` and ``error`` events. Cancelling the
        consuming task aborts the provider exchange and fails the job with the
        token's reason (``client_disconnected`` by default), unless the
        assistant message was already saved, in which case the job completes.

        Raises:
            ValueError: The job has not been claimed.
        """
        if job.status != JOB_STATUS_PROCESSING:
            raise ValueError(f"Job {job.id} must be processing to run a turn (is {job.status})")

        started = time.perf_counter()
        recorded: list[ToolCall] = []
        completed: list[ToolCall] = []
        text_parts: list[str] = []
        stream: RunResultStreaming | None = None
        saving: asyncio.Future[Message] | None = None
        completion: asyncio.Future[None] | None = None
        finished = False

        try:
            history = to_conversation_history(await self.store.list_all_messages(job.chat_id))
            agent = create_agent(
                deployment=self.settings.openai_model,
                instructions=build_instructions(job.employee_id, job.personality_level),
                tools=self._build_tools(job, recorded, completed),
                employee_id=job.employee_id,
            )
            run_config = RunConfig(model_provider=OpenAIProvider(openai_client=self.openai_client))

            logger.info(f"Starting turn for job {job.id}", job_id=job.id, chat_id=job.chat_id, turns=len(history))
            stream_candidate = Runner.run_streamed(
                agent,
                input=history,  # type: ignore[arg-type]
                run_config=run_config,
                max_turns=self.settings.max_turns,
            )
            stream = await stream_candidate if inspect.isawaitable(stream_candidate) else stream_candidate

            async for event in stream.stream_events():
                if event.type == RAW_RESPONSE_EVENT:
                    data = event.data
                    data_type = getattr(data, "type", "")
                    if data_type == OUTPUT_TEXT_DELTA:
                        text_parts.append(getattr(data, "delta", "") or "")
                    elif data_type == OUTPUT_ITEM_DONE:
                        hosted = hosted_tool_call(getattr(data, "item", None))
                        if hosted is not None:
                            recorded.append(hosted)
                            completed.append(hosted)
                    elif data_type == RESPONSE_FAILED:
                        error = getattr(getattr(data, "response", None), "error", None)
                        raise ProviderStreamError(getattr(error, "message", None) or "Provider response failed")
                    yield StreamEvent(event=data_type, data=_payload(data))

                while completed:
                    yield StreamEvent.tool_call_completed(tool_call_to_item(completed.pop(0)).to_api())

            content = "".join(text_parts)
            if not content and isinstance(stream.final_output, str):
                content = stream.final_output

            message = Message(chat_id=job.chat_id, role="assistant", content=content, tool_calls=recorded)
            saving = asyncio.ensure_future(self._save_message(message))
            try:
                message = await asyncio.shield(saving)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                finished = True
                await self._fail(job, str(e) or type(e).__name__, started)
                yield StreamEvent.error(ErrorCode.STORE_ERROR.value, "Failed to save assistant message", jobId=job.id)
                return

            # The message is persisted: from here on the job can only complete
            completion = asyncio.ensure_future(self._complete(job, started))
            await asyncio.shield(completion)
            finished = True

            logger.log_turn(
                job_id=job.id,
                chat_id=job.chat_id,
                response=content,
                tool_names=[call.name or call.type for call in recorded],
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            yield StreamEvent.assistant_message_saved(message.to_api(), job.id)

        except asyncio.CancelledError:
            if stream is not None:
                stream.cancel()
            if not finished:
                finished = True
                reason = (token.cancel_reason if token is not None else None) or ERROR_CLIENT_DISCONNECTED
                await asyncio.shield(self._settle_interrupted(job, reason, saving, completion, started))
            raise

        except GeneratorExit:
            # Consumer closed the generator without cancelling the task
            if stream is not None:
                stream.cancel()
            if not finished:
                finished = True
                reason = (token.cancel_reason if token is not None else None) or ERROR_CLIENT_DISCONNECTED
                await asyncio.shield(self._settle_interrupted(job, reason, saving, completion, started))
            raise

        except Exception as e:
            if stream is not None:
                stream.cancel()
            provider_failure = isinstance(e, (OpenAIError, AgentsException, ProviderStreamError))
            code = ErrorCode.PROVIDER_ERROR if provider_failure else ErrorCode.INTERNAL_ERROR
            error = str(e) or type(e).__name__
            logger.error(f"Turn for job {job.id} failed: {error}", exc_info=not provider_failure, job_id=job.id)
            if not finished:
                finished = True
                await self._fail(job, error, started)
            logger.log_turn(
                job_id=job.id,
                chat_id=job.chat_id,
                response="".join(text_parts),
                tool_names=[call.name or call.type for call in recorded],
                duration_ms=(time.perf_counter() - started) * 1000,
                success=False,
            )
            message_text = error if provider_failure else f"Turn failed ({type(e).__name__})"
            yield StreamEvent.error(code.value, message_text, jobId=job.id)


__all__ = ["ProviderStreamError", "TurnProcessor", "hosted_tool_call"]
