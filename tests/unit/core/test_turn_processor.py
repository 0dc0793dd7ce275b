"""Tests for TurnProcessor.

The agents Runner is replaced by the ``fake_stream`` fixture, which replays a
scripted provider stream and lets the script invoke the agent's function tools.
"""

from __future__ import annotations

import asyncio
import json

from collections.abc import AsyncIterator, Callable
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from agents import FunctionTool, WebSearchTool
from fakes import FakeOutputItemDone, FakeRawEvent, FakeTextDelta, find_tool, text_events
from openai import AsyncOpenAI
from pydantic import BaseModel

from helpdesk_chat.api.services.chat_store import InMemoryChatStore
from helpdesk_chat.api.services.job_service import JobService
from helpdesk_chat.api.streaming.channel import StreamChannel
from helpdesk_chat.core.turn_processor import TurnProcessor, hosted_tool_call
from helpdesk_chat.models.chat_models import Chat, Job, TenantContext, ToolsState
from helpdesk_chat.models.event_models import StreamEvent
from helpdesk_chat.tools.registry import ToolContext, ToolDispatcher, ToolRegistry, ToolSpec


async def _lookup(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    return {"ticket": arguments["ticketId"], "status": "open", "company": context.tenant.company_id}  # type: ignore[union-attr]


async def _explode(arguments: dict[str, Any], context: ToolContext) -> Any:
    raise RuntimeError("helpdesk unavailable")


@pytest.fixture
def dispatcher() -> ToolDispatcher:
    registry = ToolRegistry(
        employee_tools={
            "charlie": [
                ToolSpec(
                    name="lookup_ticket",
                    description="Look up a ticket",
                    handler=_lookup,
                    parameters={"ticketId": {"type": "string"}},
                    tenant_scoped=True,
                ),
                ToolSpec(name="explode", description="Always fails", handler=_explode),
            ]
        }
    )
    return ToolDispatcher(registry)


@pytest.fixture
def processor(store: InMemoryChatStore, dispatcher: ToolDispatcher, test_settings: Any) -> TurnProcessor:
    return TurnProcessor(store, dispatcher, AsyncOpenAI(api_key="sk-test"), settings=test_settings)


async def _collect(events: AsyncIterator[StreamEvent]) -> list[StreamEvent]:
    return [event async for event in events]


class WebSearchItem(BaseModel):
    type: str = "web_search_call"
    id: str = "ws_1"
    status: str = "completed"
    action: dict[str, Any] = {"type": "search", "query": "refund policy"}


class TestTextTurn:
    @pytest.mark.asyncio
    async def test_streams_deltas_and_saves_message(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
        test_settings: Any,
    ) -> None:
        runs = fake_stream(text_events("Hel", "lo"))

        events = await _collect(processor.process_turn(claimed_job))

        assert [e.event for e in events] == [
            "response.output_text.delta",
            "response.output_text.delta",
            "assistant_message.saved",
        ]
        assert events[0].data["delta"] == "Hel"
        saved = events[-1].data
        assert saved["jobId"] == claimed_job.id
        assert saved["message"]["content"] == "Hello"
        assert saved["message"]["role"] == "assistant"

        job = await store.get_job(claimed_job.id)
        assert job is not None
        assert job.status == "completed"
        assert job.messages_saved == 1
        messages = await store.list_all_messages(claimed_job.chat_id)
        assert [(m.role, m.content) for m in messages] == [
            ("user", "How many open tickets do we have?"),
            ("assistant", "Hello"),
        ]

        run = runs[0]
        assert run.kwargs["input"] == [{"role": "user", "content": "How many open tickets do we have?"}]
        assert run.kwargs["max_turns"] == test_settings.max_turns
        assert "Your name is Charlie" in run.agent.instructions
        assert [t.name for t in run.agent.tools] == ["lookup_ticket", "explode"]
        assert all(isinstance(t, FunctionTool) for t in run.agent.tools)

    @pytest.mark.asyncio
    async def test_falls_back_to_final_output(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        fake_stream(text_events(), final_output="Final answer")

        events = await _collect(processor.process_turn(claimed_job))

        assert events[-1].data["message"]["content"] == "Final answer"

    @pytest.mark.asyncio
    async def test_history_spans_previous_turns(
        self,
        processor: TurnProcessor,
        job_service: JobService,
        store: InMemoryChatStore,
        tenant: TenantContext,
        chat: Chat,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        runs = fake_stream(text_events("First"))
        job, _ = await job_service.submit_turn(tenant, chat.id, message="one")
        await _collect(processor.process_turn(await store.claim_job(job.id)))  # type: ignore[arg-type]

        job, _ = await job_service.submit_turn(tenant, chat.id, message="two")
        await _collect(processor.process_turn(await store.claim_job(job.id)))  # type: ignore[arg-type]

        assert runs[1].kwargs["input"] == [
            {"role": "user", "content": "one"},
            {"role": "assistant", "content": [{"type": "output_text", "text": "First"}]},
            {"role": "user", "content": "two"},
        ]

    @pytest.mark.asyncio
    async def test_functions_disabled_leaves_hosted_tools_only(
        self,
        processor: TurnProcessor,
        job_service: JobService,
        store: InMemoryChatStore,
        tenant: TenantContext,
        chat: Chat,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        runs = fake_stream(text_events("ok"))
        state = ToolsState(functions_enabled=False, web_search_enabled=True)
        job, _ = await job_service.submit_turn(tenant, chat.id, message="news?", tools_state=state)

        await _collect(processor.process_turn(await store.claim_job(job.id)))  # type: ignore[arg-type]

        assert [type(t) for t in runs[0].agent.tools] == [WebSearchTool]


class TestToolCalls:
    @pytest.mark.asyncio
    async def test_function_tool_result_recorded(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        outputs: list[str] = []

        async def script(agent: Any) -> AsyncIterator[Any]:
            tool = find_tool(agent, "lookup_ticket")
            outputs.append(await tool.on_invoke_tool(SimpleNamespace(tool_call_id="call_1"), '{"ticketId": "t-1"}'))
            yield FakeRawEvent(FakeTextDelta(delta="Ticket t-1 is open."))

        fake_stream(script)

        events = await _collect(processor.process_turn(claimed_job))

        assert [e.event for e in events] == [
            "response.output_text.delta",
            "tool_call.completed",
            "assistant_message.saved",
        ]
        assert json.loads(outputs[0])["data"] == {"ticket": "t-1", "status": "open", "company": "acme"}
        completed = events[1].data
        assert completed["id"] == "call_1"
        assert completed["status"] == "completed"
        assert completed["name"] == "lookup_ticket"

        messages = await store.list_all_messages(claimed_job.chat_id)
        tool_call = messages[-1].tool_calls[0]
        assert tool_call.id == "call_1"
        assert tool_call.parsed_arguments == {"ticketId": "t-1"}

    @pytest.mark.asyncio
    async def test_failing_tool_does_not_fail_turn(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        async def script(agent: Any) -> AsyncIterator[Any]:
            await find_tool(agent, "explode").on_invoke_tool(SimpleNamespace(tool_call_id="call_1"), "{}")
            yield FakeRawEvent(FakeTextDelta(delta="Sorry, that did not work."))

        fake_stream(script)

        events = await _collect(processor.process_turn(claimed_job))

        failed = events[1].data
        assert failed["status"] == "failed"
        assert json.loads(failed["output"]) == {
            "success": False,
            "error": "helpdesk unavailable",
            "code": "TOOL_FAILED",
        }
        job = await store.get_job(claimed_job.id)
        assert job is not None
        assert job.status == "completed"
        messages = await store.list_all_messages(claimed_job.chat_id)
        assert messages[-1].tool_calls[0].status == "failed"

    @pytest.mark.asyncio
    async def test_hosted_tool_item_recorded(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        async def script(agent: Any) -> AsyncIterator[Any]:
            yield FakeRawEvent(FakeOutputItemDone(item=WebSearchItem()))
            yield FakeRawEvent(FakeTextDelta(delta="Refunds take 5 days."))

        fake_stream(script)

        events = await _collect(processor.process_turn(claimed_job))

        assert [e.event for e in events] == [
            "response.output_item.done",
            "tool_call.completed",
            "response.output_text.delta",
            "assistant_message.saved",
        ]
        assert events[1].data["toolType"] == "web_search_call"
        messages = await store.list_all_messages(claimed_job.chat_id)
        assert messages[-1].tool_calls[0].id == "ws_1"


class TestHostedToolCall:
    def test_ignores_other_items(self) -> None:
        assert hosted_tool_call(SimpleNamespace(type="message")) is None
        assert hosted_tool_call(None) is None

    def test_failed_status(self) -> None:
        call = hosted_tool_call(WebSearchItem(status="failed"))

        assert call is not None
        assert call.status == "failed"
        assert call.name == "web_search"
        assert call.parsed_arguments == {"action": {"type": "search", "query": "refund policy"}}


class TestFailures:
    @pytest.mark.asyncio
    async def test_provider_failure_event(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        async def script(agent: Any) -> AsyncIterator[Any]:
            yield FakeRawEvent(FakeTextDelta(delta="Partial"))
            failure = SimpleNamespace(
                type="response.failed",
                response=SimpleNamespace(error=SimpleNamespace(message="rate limited")),
            )
            yield FakeRawEvent(failure)

        runs = fake_stream(script)

        events = await _collect(processor.process_turn(claimed_job))

        assert [e.event for e in events] == ["response.output_text.delta", "error"]
        assert events[-1].data == {"code": "PROVIDER_ERROR", "message": "rate limited", "jobId": claimed_job.id}
        assert runs[0].cancelled is True
        job = await store.get_job(claimed_job.id)
        assert job is not None
        assert job.status == "failed"
        assert job.error == "rate limited"
        # No assistant message for a failed turn
        assert len(await store.list_all_messages(claimed_job.chat_id)) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        async def script(agent: Any) -> AsyncIterator[Any]:
            raise KeyError("boom")
            yield  # pragma: no cover

        fake_stream(script)

        events = await _collect(processor.process_turn(claimed_job))

        assert events[-1].data["code"] == "INTERNAL_ERROR"
        assert events[-1].data["message"] == "Turn failed (KeyError)"
        job = await store.get_job(claimed_job.id)
        assert job is not None
        assert job.status == "failed"

    @pytest.mark.asyncio
    async def test_store_failure_after_retry(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        fake_stream(text_events("Hello"))

        with patch.object(store, "create_message", AsyncMock(side_effect=RuntimeError("disk full"))) as create:
            events = await _collect(processor.process_turn(claimed_job))

        assert create.await_count == 2
        assert events[-1].event == "error"
        assert events[-1].data["code"] == "STORE_ERROR"
        job = await store.get_job(claimed_job.id)
        assert job is not None
        assert job.status == "failed"
        assert job.error == "disk full"

    @pytest.mark.asyncio
    async def test_store_failure_recovered_by_retry(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        fake_stream(text_events("Hello"))
        real_create = store.create_message
        create = AsyncMock(side_effect=[RuntimeError("connection reset"), None])

        async def flaky(message: Any) -> Any:
            await create(message)
            return await real_create(message)

        with patch.object(store, "create_message", side_effect=flaky):
            events = await _collect(processor.process_turn(claimed_job))

        assert events[-1].event == "assistant_message.saved"
        job = await store.get_job(claimed_job.id)
        assert job is not None
        assert job.status == "completed"

    @pytest.mark.asyncio
    async def test_rejects_unclaimed_job(
        self, processor: TurnProcessor, job_service: JobService, tenant: TenantContext, chat: Chat
    ) -> None:
        job, _ = await job_service.submit_turn(tenant, chat.id, message="hi")

        with pytest.raises(ValueError, match="must be processing"):
            await processor.process_turn(job).__anext__()


class TestCancellation:
    @pytest.mark.asyncio
    async def test_client_disconnect_fails_job(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        async def script(agent: Any) -> AsyncIterator[Any]:
            yield FakeRawEvent(FakeTextDelta(delta="Thinking"))
            await asyncio.Event().wait()
            yield FakeRawEvent(FakeTextDelta(delta="never"))  # pragma: no cover

        runs = fake_stream(script)
        channel = StreamChannel()
        task = channel.start(processor.process_turn(claimed_job, channel.token))

        events = channel.__aiter__()
        first = await events.__anext__()
        channel.cancel()
        await asyncio.wait_for(task, timeout=5)

        assert first.data["delta"] == "Thinking"
        assert runs[0].cancelled is True
        job = await store.get_job(claimed_job.id)
        assert job is not None
        assert job.status == "failed"
        assert job.error == "client_disconnected"
        assert len(await store.list_all_messages(claimed_job.chat_id)) == 1

    @pytest.mark.asyncio
    async def test_cancel_reason_from_token(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        started = asyncio.Event()

        async def script(agent: Any) -> AsyncIterator[Any]:
            started.set()
            await asyncio.Event().wait()
            yield  # pragma: no cover

        fake_stream(script)
        channel = StreamChannel()
        task = channel.start(processor.process_turn(claimed_job, channel.token))
        await started.wait()

        channel.cancel("worker_shutdown")
        await asyncio.wait_for(task, timeout=5)

        job = await store.get_job(claimed_job.id)
        assert job is not None
        assert job.error == "worker_shutdown"

    @pytest.mark.asyncio
    async def test_disconnect_after_save_completes_job(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        fake_stream(text_events("Hello there"))
        entered = asyncio.Event()
        release = asyncio.Event()
        complete_job = store.complete_job

        async def slow_complete(job_id: str, messages_saved: int = 0) -> Job | None:
            entered.set()
            await release.wait()
            return await complete_job(job_id, messages_saved=messages_saved)

        channel = StreamChannel()
        with patch.object(store, "complete_job", side_effect=slow_complete):
            task = channel.start(processor.process_turn(claimed_job, channel.token))
            await asyncio.wait_for(entered.wait(), timeout=5)
            channel.cancel()
            await asyncio.sleep(0)
            release.set()
            await asyncio.wait_for(task, timeout=5)

        job = await store.get_job(claimed_job.id)
        assert job is not None
        assert job.status == "completed"
        assert job.error is None
        assert job.messages_saved == 1
        messages = await store.list_all_messages(claimed_job.chat_id)
        assert [m.role for m in messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_disconnect_during_save_completes_job(
        self,
        processor: TurnProcessor,
        store: InMemoryChatStore,
        claimed_job: Job,
        fake_stream: Callable[..., list[Any]],
    ) -> None:
        fake_stream(text_events("Hello there"))
        entered = asyncio.Event()
        release = asyncio.Event()
        create_message = store.create_message

        async def slow_save(message: Any) -> Any:
            entered.set()
            await release.wait()
            return await create_message(message)

        channel = StreamChannel()
        with patch.object(store, "create_message", side_effect=slow_save):
            task = channel.start(processor.process_turn(claimed_job, channel.token))
            await asyncio.wait_for(entered.wait(), timeout=5)
            channel.cancel()
            await asyncio.sleep(0)
            release.set()
            await asyncio.wait_for(task, timeout=5)

        job = await store.get_job(claimed_job.id)
        assert job is not None
        assert job.status == "completed"
        assert [m.content for m in await store.list_all_messages(claimed_job.chat_id)][-1] == "Hello there"
