from __future__ import annotations

import asyncio

from datetime import timedelta

import pytest

from helpdesk_chat.api.services.chat_store import InMemoryChatStore, message_preview, page_slice
from helpdesk_chat.core.constants import CHAT_PREVIEW_LENGTH, ERROR_STALE_TIMEOUT
from helpdesk_chat.models.chat_models import Chat, Job, JobUpdate, Message, TenantContext, utcnow


def _chat(tenant: TenantContext, employee_id: str = "charlie", **kwargs: object) -> Chat:
    return Chat(company_id=tenant.company_id, user_id=tenant.user_id, employee_id=employee_id, **kwargs)  # type: ignore[arg-type]


def _job(chat: Chat) -> Job:
    return Job(chat_id=chat.id, company_id=chat.company_id, user_id=chat.user_id, employee_id=chat.employee_id)


class TestHelpers:
    def test_message_preview_truncates(self) -> None:
        assert message_preview("x" * 250) == "x" * CHAT_PREVIEW_LENGTH
        assert message_preview("short") == "short"

    def test_page_slice(self) -> None:
        items = list(range(7))
        assert page_slice(items, 1, 3) == [0, 1, 2]
        assert page_slice(items, 3, 3) == [6]
        assert page_slice(items, 4, 3) == []


class TestChats:
    @pytest.mark.asyncio
    async def test_get_chat_is_tenant_scoped(
        self, store: InMemoryChatStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        chat = await store.create_chat(_chat(tenant))

        assert (await store.get_chat(tenant, chat.id)) == chat
        assert await store.get_chat(other_tenant, chat.id) is None

    @pytest.mark.asyncio
    async def test_list_chats_orders_by_updated_and_filters_employee(
        self, store: InMemoryChatStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        first = await store.create_chat(_chat(tenant, "charlie"))
        second = await store.create_chat(_chat(tenant, "emma"))
        await store.create_chat(_chat(other_tenant, "charlie"))

        # A new message bumps the chat to the top
        await store.create_message(Message(chat_id=first.id, role="user", content="bump"))

        chats, total = await store.list_chats(tenant)
        assert total == 2
        assert [c.id for c in chats] == [first.id, second.id]

        emma_chats, emma_total = await store.list_chats(tenant, employee_id="emma")
        assert emma_total == 1
        assert emma_chats[0].id == second.id

    @pytest.mark.asyncio
    async def test_update_chat_merges_metadata(self, store: InMemoryChatStore, tenant: TenantContext) -> None:
        chat = await store.create_chat(_chat(tenant, metadata={"source": "widget"}))

        updated = await store.update_chat(tenant, chat.id, title="Renamed", metadata={"priority": "high"})

        assert updated is not None
        assert updated.title == "Renamed"
        assert updated.metadata == {"source": "widget", "priority": "high"}

    @pytest.mark.asyncio
    async def test_delete_chat_removes_messages_and_keeps_jobs(
        self, store: InMemoryChatStore, tenant: TenantContext, other_tenant: TenantContext
    ) -> None:
        chat = await store.create_chat(_chat(tenant))
        await store.create_message(Message(chat_id=chat.id, role="user", content="hello"))
        job, _ = await store.create_job(_job(chat))

        assert await store.delete_chat(other_tenant, chat.id) is False
        assert await store.delete_chat(tenant, chat.id) is True

        assert await store.get_chat(tenant, chat.id) is None
        assert await store.list_all_messages(chat.id) == []
        assert await store.get_job(job.id) is not None


class TestMessages:
    @pytest.mark.asyncio
    async def test_create_message_updates_preview(self, store: InMemoryChatStore, tenant: TenantContext) -> None:
        chat = await store.create_chat(_chat(tenant))

        await store.create_message(Message(chat_id=chat.id, role="user", content="y" * 150))

        refreshed = await store.get_chat(tenant, chat.id)
        assert refreshed is not None
        assert refreshed.preview == "y" * CHAT_PREVIEW_LENGTH
        assert refreshed.updated_at >= chat.updated_at

    @pytest.mark.asyncio
    async def test_list_messages_oldest_first_with_pagination(
        self, store: InMemoryChatStore, tenant: TenantContext
    ) -> None:
        chat = await store.create_chat(_chat(tenant))
        base = utcnow()
        # Inserted out of order; listing follows created_at
        for offset in (2, 0, 1):
            await store.create_message(
                Message(
                    chat_id=chat.id,
                    role="user",
                    content=f"m{offset}",
                    created_at=base + timedelta(seconds=offset),
                )
            )

        page1, total = await store.list_messages(chat.id, page=1, limit=2)
        page2, _ = await store.list_messages(chat.id, page=2, limit=2)

        assert total == 3
        assert [m.content for m in page1] == ["m0", "m1"]
        assert [m.content for m in page2] == ["m2"]


class TestJobs:
    @pytest.mark.asyncio
    async def test_create_job_returns_existing_active_job(
        self, store: InMemoryChatStore, tenant: TenantContext
    ) -> None:
        chat = await store.create_chat(_chat(tenant))

        first, created_first = await store.create_job(_job(chat))
        second, created_second = await store.create_job(_job(chat))

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert len(await store.list_jobs_for_chat(chat.id)) == 1

    @pytest.mark.asyncio
    async def test_new_job_allowed_after_terminal(self, store: InMemoryChatStore, tenant: TenantContext) -> None:
        chat = await store.create_chat(_chat(tenant))
        first, _ = await store.create_job(_job(chat))
        await store.claim_job(first.id)
        await store.complete_job(first.id, messages_saved=1)

        second, created = await store.create_job(_job(chat))

        assert created is True
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_claim_next_job_takes_oldest_pending(self, store: InMemoryChatStore, tenant: TenantContext) -> None:
        chat_a = await store.create_chat(_chat(tenant))
        chat_b = await store.create_chat(_chat(tenant))
        older = _job(chat_a)
        newer = _job(chat_b)
        newer.created_at = older.created_at + timedelta(seconds=1)
        await store.create_job(newer)
        await store.create_job(older)

        claimed = await store.claim_next_job()

        assert claimed is not None
        assert claimed.id == older.id
        assert claimed.status == "processing"
        assert claimed.started_at is not None

    @pytest.mark.asyncio
    async def test_concurrent_claims_never_double_claim(self, store: InMemoryChatStore, tenant: TenantContext) -> None:
        chat = await store.create_chat(_chat(tenant))
        job, _ = await store.create_job(_job(chat))

        results = await asyncio.gather(*(store.claim_job(job.id) for _ in range(5)))
        next_results = await asyncio.gather(*(store.claim_next_job() for _ in range(5)))

        assert sum(r is not None for r in results) == 1
        assert all(r is None for r in next_results)

    @pytest.mark.asyncio
    async def test_terminal_transitions_only_from_processing(
        self, store: InMemoryChatStore, tenant: TenantContext
    ) -> None:
        chat = await store.create_chat(_chat(tenant))
        job, _ = await store.create_job(_job(chat))

        # pending jobs cannot skip processing
        assert await store.complete_job(job.id) is None
        assert await store.fail_job(job.id, "boom") is None

        await store.claim_job(job.id)
        completed = await store.complete_job(job.id, messages_saved=1)
        assert completed is not None
        assert completed.status == "completed"
        assert completed.messages_saved == 1

        # completed jobs never move again
        assert await store.fail_job(job.id, "late") is None
        assert await store.claim_job(job.id) is None
        final = await store.get_job(job.id)
        assert final is not None
        assert final.status == "completed"

    @pytest.mark.asyncio
    async def test_find_active_job(self, store: InMemoryChatStore, tenant: TenantContext) -> None:
        chat = await store.create_chat(_chat(tenant))
        assert await store.find_active_job(chat.id) is None

        job, _ = await store.create_job(_job(chat))
        active = await store.find_active_job(chat.id)
        assert active is not None
        assert active.id == job.id

        await store.claim_job(job.id)
        await store.fail_job(job.id, "boom")
        assert await store.find_active_job(chat.id) is None

    @pytest.mark.asyncio
    async def test_reap_stale_jobs(self, store: InMemoryChatStore, tenant: TenantContext) -> None:
        stale_chat = await store.create_chat(_chat(tenant))
        fresh_chat = await store.create_chat(_chat(tenant))
        pending_chat = await store.create_chat(_chat(tenant))
        stale, _ = await store.create_job(_job(stale_chat))
        fresh, _ = await store.create_job(_job(fresh_chat))
        pending, _ = await store.create_job(_job(pending_chat))
        await store.claim_job(stale.id)
        cutoff = utcnow() + timedelta(milliseconds=1)
        await asyncio.sleep(0.01)
        await store.claim_job(fresh.id)

        reaped = await store.reap_stale_jobs(cutoff)

        assert [j.id for j in reaped] == [stale.id]
        assert reaped[0].status == "failed"
        assert reaped[0].error == ERROR_STALE_TIMEOUT
        fresh_after = await store.get_job(fresh.id)
        pending_after = await store.get_job(pending.id)
        assert fresh_after is not None and fresh_after.status == "processing"
        assert pending_after is not None and pending_after.status == "pending"

    @pytest.mark.asyncio
    async def test_check_health(self, store: InMemoryChatStore) -> None:
        assert await store.check_health() == {"healthy": True, "backend": "memory"}


class TestJobUpdates:
    @pytest.mark.asyncio
    async def test_append_assigns_seq_per_job(self, store: InMemoryChatStore) -> None:
        first = await store.append_job_update(JobUpdate(job_id="job_a", type="tool_call.completed", data={"id": "c1"}))
        other = await store.append_job_update(JobUpdate(job_id="job_b", type="error", data={"message": "boom"}))
        second = await store.append_job_update(JobUpdate(job_id="job_a", type="assistant_message.saved", data={}))

        assert (first.seq, second.seq) == (1, 2)
        assert other.seq == 1

    @pytest.mark.asyncio
    async def test_list_after_seq_with_limit(self, store: InMemoryChatStore) -> None:
        for text in ("a", "b", "c", "d"):
            update = JobUpdate(job_id="job_a", type="response.output_text.delta", data={"delta": text})
            await store.append_job_update(update)

        page = await store.list_job_updates("job_a", after_seq=1, limit=2)

        assert [u.data["delta"] for u in page] == ["b", "c"]
        assert await store.list_job_updates("job_missing") == []

    @pytest.mark.asyncio
    async def test_returned_updates_are_copies(self, store: InMemoryChatStore) -> None:
        await store.append_job_update(JobUpdate(job_id="job_a", type="error", data={"message": "boom"}))

        (listed,) = await store.list_job_updates("job_a")
        listed.data["message"] = "changed"

        (again,) = await store.list_job_updates("job_a")
        assert again.data == {"message": "boom"}
