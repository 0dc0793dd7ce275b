from __future__ import annotations

from typing import Any

from helpdesk_chat.api.middleware.exception_handlers import (
    ChatNotFoundError,
    ConflictError,
    JobNotFoundError,
)
from helpdesk_chat.api.services.chat_store import ChatStore
from helpdesk_chat.api.services.message_converter import chat_to_stream_items
from helpdesk_chat.core.constants import (
    DEFAULT_CHAT_TITLE,
    DEFAULT_PERSONALITY_LEVEL,
    JOB_STATUS_FAILED,
    MAX_JOB_RETRIES,
)
from helpdesk_chat.core.prompts import clamp_personality_level
from helpdesk_chat.models.chat_models import (
    Chat,
    Job,
    JobUpdate,
    Message,
    StreamItem,
    TenantContext,
    ToolCall,
    ToolsState,
)
from helpdesk_chat.utils.logger import logger


class JobService:
    """Chat, message and job operations used by the HTTP boundary.

    Turn submission coalesces: while a chat has a pending or processing job,
    submitting again returns that job instead of creating a second one.
    """

    def __init__(self, store: ChatStore):
        self.store = store

    # ------------------------------------------------------------------ chats

    async def create_chat(
        self,
        tenant: TenantContext,
        employee_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Chat:
        chat = Chat(
            company_id=tenant.company_id,
            user_id=tenant.user_id,
            employee_id=employee_id,
            title=title or DEFAULT_CHAT_TITLE,
            metadata=metadata or {},
        )
        chat = await self.store.create_chat(chat)
        logger.info(f"Created chat {chat.id}", chat_id=chat.id, employee_id=employee_id)
        return chat

    async def get_chat(self, tenant: TenantContext, chat_id: str) -> Chat:
        chat = await self.store.get_chat(tenant, chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    async def list_chats(
        self,
        tenant: TenantContext,
        employee_id: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Chat], int]:
        return await self.store.list_chats(tenant, employee_id=employee_id, page=page, limit=limit)

    async def update_chat(
        self,
        tenant: TenantContext,
        chat_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Chat:
        chat = await self.store.update_chat(tenant, chat_id, title=title, metadata=metadata)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    async def delete_chat(self, tenant: TenantContext, chat_id: str) -> None:
        if not await self.store.delete_chat(tenant, chat_id):
            raise ChatNotFoundError(chat_id)
        logger.info(f"Deleted chat {chat_id}", chat_id=chat_id)

    # --------------------------------------------------------------- messages

    async def append_message(
        self,
        tenant: TenantContext,
        chat_id: str,
        role: str,
        content: str,
        tool_calls: list[ToolCall] | None = None,
    ) -> Message:
        await self.get_chat(tenant, chat_id)
        message = Message(
            chat_id=chat_id,
            role=role,  # type: ignore[arg-type]
            content=content,
            tool_calls=tool_calls or [],
        )
        return await self.store.create_message(message)

    async def list_messages(
        self,
        tenant: TenantContext,
        chat_id: str,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Message], int]:
        await self.get_chat(tenant, chat_id)
        return await self.store.list_messages(chat_id, page=page, limit=limit)

    async def list_all_messages(self, tenant: TenantContext, chat_id: str) -> list[Message]:
        await self.get_chat(tenant, chat_id)
        return await self.store.list_all_messages(chat_id)

    async def list_stream_items(self, tenant: TenantContext, chat_id: str) -> list[StreamItem]:
        """The chat's full history flattened into StreamItems for client replay."""
        return chat_to_stream_items(await self.list_all_messages(tenant, chat_id))

    # ------------------------------------------------------------------- jobs

    async def submit_turn(
        self,
        tenant: TenantContext,
        chat_id: str,
        message: str | None = None,
        tools_state: ToolsState | None = None,
        personality_level: int = DEFAULT_PERSONALITY_LEVEL,
    ) -> tuple[Job, bool]:
        """Queue a turn for ``chat_id``.

        Returns ``(job, created)``. When a job is already active the optional
        user message is not appended and the active job is returned with
        ``created=False``.
        """
        chat = await self.get_chat(tenant, chat_id)

        active = await self.store.find_active_job(chat_id)
        if active is not None:
            logger.info(
                f"Coalesced turn submission into active job {active.id}",
                chat_id=chat_id,
                job_id=active.id,
                job_status=active.status,
            )
            return active, False

        if message:
            await self.store.create_message(Message(chat_id=chat_id, role="user", content=message))

        job = Job(
            chat_id=chat_id,
            company_id=tenant.company_id,
            user_id=tenant.user_id,
            employee_id=chat.employee_id,
            personality_level=clamp_personality_level(personality_level),
            tools_state=tools_state or ToolsState(),
        )
        job, created = await self.store.create_job(job)
        if created:
            logger.info(f"Queued job {job.id}", chat_id=chat_id, job_id=job.id)
        return job, created

    async def get_job(self, tenant: TenantContext, job_id: str) -> Job:
        job = await self.store.get_job(job_id)
        if job is None or job.company_id != tenant.company_id or job.user_id != tenant.user_id:
            raise JobNotFoundError(job_id)
        return job

    async def retry_job(self, tenant: TenantContext, job_id: str) -> tuple[Job, bool]:
        """Supersede a failed job with a new pending one.

        The failed job is left untouched. Returns ``(job, created)`` like
        ``submit_turn``: if the chat already has an active job, that job is returned.

        Raises:
            ConflictError: The job is not failed or has used all its retries.
        """
        failed = await self.get_job(tenant, job_id)
        if failed.status != JOB_STATUS_FAILED:
            raise ConflictError(
                f"Only failed jobs can be retried (job is {failed.status})",
                details={"job_id": job_id, "status": failed.status},
            )
        if failed.retry_count >= MAX_JOB_RETRIES:
            raise ConflictError(
                f"Job has reached the retry limit ({MAX_JOB_RETRIES})",
                details={"job_id": job_id, "retry_count": failed.retry_count},
            )

        retry = Job(
            chat_id=failed.chat_id,
            company_id=failed.company_id,
            user_id=failed.user_id,
            employee_id=failed.employee_id,
            personality_level=failed.personality_level,
            tools_state=failed.tools_state,
            retry_count=failed.retry_count + 1,
            supersedes_job_id=failed.id,
        )
        job, created = await self.store.create_job(retry)
        if created:
            logger.info(
                f"Retrying job {failed.id} as {job.id}",
                chat_id=job.chat_id,
                job_id=job.id,
                retry_count=job.retry_count,
            )
        return job, created

    async def list_job_updates(
        self, tenant: TenantContext, job_id: str, after_seq: int = 0, limit: int = 100
    ) -> tuple[Job, list[JobUpdate]]:
        """The job and its streamed updates with ``seq`` above ``after_seq``."""
        job = await self.get_job(tenant, job_id)
        return job, await self.store.list_job_updates(job_id, after_seq=after_seq, limit=limit)

    async def active_job(self, tenant: TenantContext, chat_id: str) -> Job | None:
        """Most recent pending/processing job for the chat, if any."""
        await self.get_chat(tenant, chat_id)
        return await self.store.find_active_job(chat_id)
