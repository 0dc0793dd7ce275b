from __future__ import annotations

import asyncio

from datetime import datetime
from typing import Any, Protocol

from helpdesk_chat.core.constants import (
    CHAT_PREVIEW_LENGTH,
    ERROR_STALE_TIMEOUT,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
)
from helpdesk_chat.models.chat_models import Chat, Job, JobUpdate, Message, TenantContext, utcnow


class ChatStore(Protocol):
    """Typed access to chat, message and job records.

    Chat reads are scoped by tenant; a chat owned by another tenant is
    indistinguishable from a missing one. Job status writes are conditional
    so transitions stay monotonic under concurrent writers.
    """

    backend: str

    # Chats
    async def create_chat(self, chat: Chat) -> Chat: ...

    async def get_chat(self, tenant: TenantContext, chat_id: str) -> Chat | None: ...

    async def list_chats(
        self,
        tenant: TenantContext,
        employee_id: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Chat], int]: ...

    async def update_chat(
        self,
        tenant: TenantContext,
        chat_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Chat | None: ...

    async def delete_chat(self, tenant: TenantContext, chat_id: str) -> bool: ...

    # Messages
    async def create_message(self, message: Message) -> Message: ...

    async def list_messages(self, chat_id: str, page: int = 1, limit: int = 50) -> tuple[list[Message], int]: ...

    async def list_all_messages(self, chat_id: str) -> list[Message]: ...

    # Jobs
    async def create_job(self, job: Job) -> tuple[Job, bool]: ...

    async def get_job(self, job_id: str) -> Job | None: ...

    async def find_active_job(self, chat_id: str) -> Job | None: ...

    async def claim_next_job(self) -> Job | None: ...

    async def claim_job(self, job_id: str) -> Job | None: ...

    async def complete_job(self, job_id: str, messages_saved: int = 0) -> Job | None: ...

    async def fail_job(self, job_id: str, error: str) -> Job | None: ...

    async def reap_stale_jobs(self, older_than: datetime) -> list[Job]: ...

    async def list_jobs_for_chat(self, chat_id: str) -> list[Job]: ...

    # Job updates
    async def append_job_update(self, update: JobUpdate) -> JobUpdate: ...

    async def list_job_updates(self, job_id: str, after_seq: int = 0, limit: int = 100) -> list[JobUpdate]: ...

    async def check_health(self) -> dict[str, Any]: ...


def message_preview(content: str) -> str:
    """Chat preview text: the first characters of the latest message."""
    return content[:CHAT_PREVIEW_LENGTH]


def page_slice(items: list[Any], page: int, limit: int) -> list[Any]:
    start = (page - 1) * limit
    return items[start : start + limit]


class InMemoryChatStore:
    """Process-local chat store for development and tests.

    Every write runs under one asyncio.Lock, which makes each check-and-write
    (job creation, claim, terminal transitions) atomic with respect to other
    coroutines. Records are copied on the way in and out, so callers never
    mutate stored state directly.
    """

    backend = "memory"

    def __init__(self) -> None:
        self._chats: dict[str, Chat] = {}
        self._messages: dict[str, list[Message]] = {}
        self._jobs: dict[str, Job] = {}
        self._job_updates: dict[str, list[JobUpdate]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------ chats

    def _owned_chat(self, tenant: TenantContext, chat_id: str) -> Chat | None:
        chat = self._chats.get(chat_id)
        if chat is None or chat.company_id != tenant.company_id or chat.user_id != tenant.user_id:
            return None
        return chat

    async def create_chat(self, chat: Chat) -> Chat:
        async with self._lock:
            self._chats[chat.id] = chat.model_copy(deep=True)
            self._messages.setdefault(chat.id, [])
        return chat.model_copy(deep=True)

    async def get_chat(self, tenant: TenantContext, chat_id: str) -> Chat | None:
        chat = self._owned_chat(tenant, chat_id)
        return chat.model_copy(deep=True) if chat else None

    async def list_chats(
        self,
        tenant: TenantContext,
        employee_id: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Chat], int]:
        chats = [
            c
            for c in self._chats.values()
            if c.company_id == tenant.company_id
            and c.user_id == tenant.user_id
            and (employee_id is None or c.employee_id == employee_id)
        ]
        chats.sort(key=lambda c: c.updated_at, reverse=True)
        return [c.model_copy(deep=True) for c in page_slice(chats, page, limit)], len(chats)

    async def update_chat(
        self,
        tenant: TenantContext,
        chat_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Chat | None:
        async with self._lock:
            chat = self._owned_chat(tenant, chat_id)
            if chat is None:
                return None
            if title is not None:
                chat.title = title
            if metadata is not None:
                chat.metadata = {**chat.metadata, **metadata}
            chat.updated_at = utcnow()
            return chat.model_copy(deep=True)

    async def delete_chat(self, tenant: TenantContext, chat_id: str) -> bool:
        async with self._lock:
            if self._owned_chat(tenant, chat_id) is None:
                return False
            del self._chats[chat_id]
            self._messages.pop(chat_id, None)
            return True

    # --------------------------------------------------------------- messages

    async def create_message(self, message: Message) -> Message:
        async with self._lock:
            self._messages.setdefault(message.chat_id, []).append(message.model_copy(deep=True))
            chat = self._chats.get(message.chat_id)
            if chat is not None:
                chat.updated_at = utcnow()
                chat.preview = message_preview(message.content)
        return message.model_copy(deep=True)

    def _ordered_messages(self, chat_id: str) -> list[Message]:
        # sorted() is stable, so messages sharing a timestamp keep insertion order
        return sorted(self._messages.get(chat_id, []), key=lambda m: m.created_at)

    async def list_messages(self, chat_id: str, page: int = 1, limit: int = 50) -> tuple[list[Message], int]:
        messages = self._ordered_messages(chat_id)
        return [m.model_copy(deep=True) for m in page_slice(messages, page, limit)], len(messages)

    async def list_all_messages(self, chat_id: str) -> list[Message]:
        return [m.model_copy(deep=True) for m in self._ordered_messages(chat_id)]

    # ------------------------------------------------------------------- jobs

    def _active_job(self, chat_id: str) -> Job | None:
        active = [j for j in self._jobs.values() if j.chat_id == chat_id and j.is_active]
        if not active:
            return None
        return max(active, key=lambda j: j.created_at)

    def _transition(self, job_id: str, expected: str, **changes: Any) -> Job | None:
        """Compare-and-set: apply ``changes`` only if the job is in ``expected`` status."""
        job = self._jobs.get(job_id)
        if job is None or job.status != expected:
            return None
        for key, value in changes.items():
            setattr(job, key, value)
        job.updated_at = utcnow()
        return job.model_copy(deep=True)

    async def create_job(self, job: Job) -> tuple[Job, bool]:
        async with self._lock:
            existing = self._active_job(job.chat_id)
            if existing is not None:
                return existing.model_copy(deep=True), False
            self._jobs[job.id] = job.model_copy(deep=True)
        return job.model_copy(deep=True), True

    async def get_job(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def find_active_job(self, chat_id: str) -> Job | None:
        job = self._active_job(chat_id)
        return job.model_copy(deep=True) if job else None

    async def claim_next_job(self) -> Job | None:
        async with self._lock:
            pending = sorted(
                (j for j in self._jobs.values() if j.status == JOB_STATUS_PENDING),
                key=lambda j: j.created_at,
            )
            if not pending:
                return None
            now = utcnow()
            return self._transition(pending[0].id, JOB_STATUS_PENDING, status=JOB_STATUS_PROCESSING, started_at=now)

    async def claim_job(self, job_id: str) -> Job | None:
        async with self._lock:
            return self._transition(job_id, JOB_STATUS_PENDING, status=JOB_STATUS_PROCESSING, started_at=utcnow())

    async def complete_job(self, job_id: str, messages_saved: int = 0) -> Job | None:
        async with self._lock:
            return self._transition(
                job_id,
                JOB_STATUS_PROCESSING,
                status=JOB_STATUS_COMPLETED,
                completed_at=utcnow(),
                messages_saved=messages_saved,
            )

    async def fail_job(self, job_id: str, error: str) -> Job | None:
        async with self._lock:
            return self._transition(
                job_id,
                JOB_STATUS_PROCESSING,
                status=JOB_STATUS_FAILED,
                completed_at=utcnow(),
                error=error,
            )

    async def reap_stale_jobs(self, older_than: datetime) -> list[Job]:
        async with self._lock:
            stale_ids = [
                j.id
                for j in self._jobs.values()
                if j.status == JOB_STATUS_PROCESSING and j.started_at is not None and j.started_at < older_than
            ]
            reaped = []
            for job_id in stale_ids:
                job = self._transition(
                    job_id,
                    JOB_STATUS_PROCESSING,
                    status=JOB_STATUS_FAILED,
                    completed_at=utcnow(),
                    error=ERROR_STALE_TIMEOUT,
                )
                if job is not None:
                    reaped.append(job)
            return reaped

    async def list_jobs_for_chat(self, chat_id: str) -> list[Job]:
        jobs = sorted((j for j in self._jobs.values() if j.chat_id == chat_id), key=lambda j: j.created_at)
        return [j.model_copy(deep=True) for j in jobs]

    # ------------------------------------------------------------ job updates

    async def append_job_update(self, update: JobUpdate) -> JobUpdate:
        async with self._lock:
            updates = self._job_updates.setdefault(update.job_id, [])
            stored = update.model_copy(deep=True, update={"seq": len(updates) + 1})
            updates.append(stored)
        return stored.model_copy(deep=True)

    async def list_job_updates(self, job_id: str, after_seq: int = 0, limit: int = 100) -> list[JobUpdate]:
        updates = [u for u in self._job_updates.get(job_id, []) if u.seq > after_seq]
        return [u.model_copy(deep=True) for u in updates[:limit]]

    async def check_health(self) -> dict[str, Any]:
        return {"healthy": True, "backend": self.backend}
