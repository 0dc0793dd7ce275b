from __future__ import annotations

from datetime import datetime
from typing import Any

import asyncpg

from helpdesk_chat.api.services.chat_store import message_preview
from helpdesk_chat.core.constants import ERROR_STALE_TIMEOUT
from helpdesk_chat.models.chat_models import Chat, Job, JobUpdate, Message, TenantContext
from helpdesk_chat.utils.db_utils import acquire_connection, check_pool_health, transaction, with_retry
from helpdesk_chat.utils.logger import logger

_JOB_COLUMNS = """
    id, chat_id, company_id, user_id, employee_id, status, personality_level, tools_state,
    created_at, updated_at, started_at, completed_at, error, messages_saved, retry_count,
    supersedes_job_id
"""


def _row_to_chat(row: asyncpg.Record) -> Chat:
    data = dict(row)
    data["metadata"] = data.get("metadata") or {}
    return Chat.model_validate(data)


def _row_to_message(row: asyncpg.Record) -> Message:
    data = dict(row)
    data.pop("seq", None)
    data["tool_calls"] = data.get("tool_calls") or []
    return Message.model_validate(data)


def _row_to_job(row: asyncpg.Record | None) -> Job | None:
    if row is None:
        return None
    return Job.model_validate(dict(row))


class PostgresChatStore:
    """Chat store backed by PostgreSQL.

    Job exclusivity is enforced twice: the partial unique index
    ``uq_jobs_active_chat`` admits one pending/processing job per chat, and
    every status change is a single conditional UPDATE, so two workers can
    never both move the same job out of ``pending``.
    """

    backend = "postgres"

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    # ------------------------------------------------------------------ chats

    @with_retry()
    async def create_chat(self, chat: Chat) -> Chat:
        async with acquire_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO chats (
                    id, company_id, user_id, employee_id, title, thread_id, metadata,
                    preview, created_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                RETURNING *
                """,
                chat.id,
                chat.company_id,
                chat.user_id,
                chat.employee_id,
                chat.title,
                chat.thread_id,
                chat.metadata,
                chat.preview,
                chat.created_at,
                chat.updated_at,
            )
        return _row_to_chat(row)

    @with_retry()
    async def get_chat(self, tenant: TenantContext, chat_id: str) -> Chat | None:
        async with acquire_connection(self.pool) as conn:
            row = await conn.fetchrow(
                "SELECT * FROM chats WHERE id = $1 AND company_id = $2 AND user_id = $3",
                chat_id,
                tenant.company_id,
                tenant.user_id,
            )
        return _row_to_chat(row) if row else None

    @with_retry()
    async def list_chats(
        self,
        tenant: TenantContext,
        employee_id: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Chat], int]:
        async with acquire_connection(self.pool) as conn:
            total = await conn.fetchval(
                """
                SELECT COUNT(*) FROM chats
                WHERE company_id = $1 AND user_id = $2 AND ($3::text IS NULL OR employee_id = $3)
                """,
                tenant.company_id,
                tenant.user_id,
                employee_id,
            )
            rows = await conn.fetch(
                """
                SELECT * FROM chats
                WHERE company_id = $1 AND user_id = $2 AND ($3::text IS NULL OR employee_id = $3)
                ORDER BY updated_at DESC
                LIMIT $4 OFFSET $5
                """,
                tenant.company_id,
                tenant.user_id,
                employee_id,
                limit,
                (page - 1) * limit,
            )
        return [_row_to_chat(r) for r in rows], total

    async def update_chat(
        self,
        tenant: TenantContext,
        chat_id: str,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Chat | None:
        async with acquire_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                UPDATE chats
                SET title = COALESCE($4, title),
                    metadata = CASE WHEN $5::jsonb IS NULL THEN metadata ELSE metadata || $5::jsonb END,
                    updated_at = NOW()
                WHERE id = $1 AND company_id = $2 AND user_id = $3
                RETURNING *
                """,
                chat_id,
                tenant.company_id,
                tenant.user_id,
                title,
                metadata,
            )
        return _row_to_chat(row) if row else None

    async def delete_chat(self, tenant: TenantContext, chat_id: str) -> bool:
        # messages.chat_id cascades; jobs are kept for audit
        async with acquire_connection(self.pool) as conn:
            result = await conn.execute(
                "DELETE FROM chats WHERE id = $1 AND company_id = $2 AND user_id = $3",
                chat_id,
                tenant.company_id,
                tenant.user_id,
            )
        return result.endswith(" 1")

    # --------------------------------------------------------------- messages

    async def create_message(self, message: Message) -> Message:
        tool_calls = [tc.model_dump(mode="json") for tc in message.tool_calls]
        async with transaction(self.pool) as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO messages (id, chat_id, role, content, tool_calls, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING id, chat_id, role, content, tool_calls, created_at
                """,
                message.id,
                message.chat_id,
                message.role,
                message.content,
                tool_calls,
                message.created_at,
            )
            await conn.execute(
                "UPDATE chats SET updated_at = NOW(), preview = $2 WHERE id = $1",
                message.chat_id,
                message_preview(message.content),
            )
        return _row_to_message(row)

    @with_retry()
    async def list_messages(self, chat_id: str, page: int = 1, limit: int = 50) -> tuple[list[Message], int]:
        async with acquire_connection(self.pool) as conn:
            total = await conn.fetchval("SELECT COUNT(*) FROM messages WHERE chat_id = $1", chat_id)
            rows = await conn.fetch(
                """
                SELECT id, chat_id, role, content, tool_calls, created_at FROM messages
                WHERE chat_id = $1
                ORDER BY created_at ASC, seq ASC
                LIMIT $2 OFFSET $3
                """,
                chat_id,
                limit,
                (page - 1) * limit,
            )
        return [_row_to_message(r) for r in rows], total

    @with_retry()
    async def list_all_messages(self, chat_id: str) -> list[Message]:
        async with acquire_connection(self.pool) as conn:
            rows = await conn.fetch(
                """
                SELECT id, chat_id, role, content, tool_calls, created_at FROM messages
                WHERE chat_id = $1
                ORDER BY created_at ASC, seq ASC
                """,
                chat_id,
            )
        return [_row_to_message(r) for r in rows]

    # ------------------------------------------------------------------- jobs

    async def create_job(self, job: Job) -> tuple[Job, bool]:
        async with transaction(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO jobs (
                    id, chat_id, company_id, user_id, employee_id, status, personality_level,
                    tools_state, created_at, updated_at, retry_count, supersedes_job_id
                )
                VALUES ($1, $2, $3, $4, $5, 'pending', $6, $7, $8, $8, $9, $10)
                ON CONFLICT (chat_id) WHERE status IN ('pending', 'processing') DO NOTHING
                RETURNING {_JOB_COLUMNS}
                """,
                job.id,
                job.chat_id,
                job.company_id,
                job.user_id,
                job.employee_id,
                job.personality_level,
                job.tools_state.model_dump(mode="json"),
                job.created_at,
                job.retry_count,
                job.supersedes_job_id,
            )
            if row is not None:
                return _row_to_job(row), True  # type: ignore[return-value]

            existing = await conn.fetchrow(
                f"""
                SELECT {_JOB_COLUMNS} FROM jobs
                WHERE chat_id = $1 AND status IN ('pending', 'processing')
                ORDER BY created_at DESC
                LIMIT 1
                """,
                job.chat_id,
            )
        if existing is None:
            # The conflicting job finished between the insert and the lookup
            logger.warning("Active job vanished during coalesce, retrying insert", chat_id=job.chat_id)
            return await self.create_job(job)
        return _row_to_job(existing), False  # type: ignore[return-value]

    @with_retry()
    async def get_job(self, job_id: str) -> Job | None:
        async with acquire_connection(self.pool) as conn:
            row = await conn.fetchrow(f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = $1", job_id)
        return _row_to_job(row)

    @with_retry()
    async def find_active_job(self, chat_id: str) -> Job | None:
        async with acquire_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_JOB_COLUMNS} FROM jobs
                WHERE chat_id = $1 AND status IN ('pending', 'processing')
                ORDER BY created_at DESC
                LIMIT 1
                """,
                chat_id,
            )
        return _row_to_job(row)

    async def claim_next_job(self) -> Job | None:
        async with acquire_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE jobs
                SET status = 'processing', started_at = NOW(), updated_at = NOW()
                WHERE id = (
                    SELECT id FROM jobs
                    WHERE status = 'pending'
                    ORDER BY created_at
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                AND status = 'pending'
                RETURNING {_JOB_COLUMNS}
                """
            )
        return _row_to_job(row)

    async def claim_job(self, job_id: str) -> Job | None:
        async with acquire_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE jobs
                SET status = 'processing', started_at = NOW(), updated_at = NOW()
                WHERE id = $1 AND status = 'pending'
                RETURNING {_JOB_COLUMNS}
                """,
                job_id,
            )
        return _row_to_job(row)

    async def complete_job(self, job_id: str, messages_saved: int = 0) -> Job | None:
        async with acquire_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE jobs
                SET status = 'completed', completed_at = NOW(), updated_at = NOW(), messages_saved = $2
                WHERE id = $1 AND status = 'processing'
                RETURNING {_JOB_COLUMNS}
                """,
                job_id,
                messages_saved,
            )
        return _row_to_job(row)

    async def fail_job(self, job_id: str, error: str) -> Job | None:
        async with acquire_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE jobs
                SET status = 'failed', completed_at = NOW(), updated_at = NOW(), error = $2
                WHERE id = $1 AND status = 'processing'
                RETURNING {_JOB_COLUMNS}
                """,
                job_id,
                error,
            )
        return _row_to_job(row)

    async def reap_stale_jobs(self, older_than: datetime) -> list[Job]:
        async with acquire_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                UPDATE jobs
                SET status = 'failed', completed_at = NOW(), updated_at = NOW(), error = $2
                WHERE status = 'processing' AND started_at < $1
                RETURNING {_JOB_COLUMNS}
                """,
                older_than,
                ERROR_STALE_TIMEOUT,
            )
        return [job for job in (_row_to_job(r) for r in rows) if job is not None]

    @with_retry()
    async def list_jobs_for_chat(self, chat_id: str) -> list[Job]:
        async with acquire_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE chat_id = $1 ORDER BY created_at ASC",
                chat_id,
            )
        return [job for job in (_row_to_job(r) for r in rows) if job is not None]

    # ------------------------------------------------------------ job updates

    async def append_job_update(self, update: JobUpdate) -> JobUpdate:
        async with acquire_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO job_updates (id, job_id, type, data, created_at)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id, job_id, seq, type, data, created_at
                """,
                update.id,
                update.job_id,
                update.type,
                update.data,
                update.created_at,
            )
        return JobUpdate.model_validate(dict(row))

    @with_retry()
    async def list_job_updates(self, job_id: str, after_seq: int = 0, limit: int = 100) -> list[JobUpdate]:
        async with acquire_connection(self.pool) as conn:
            rows = await conn.fetch(
                """
                SELECT id, job_id, seq, type, data, created_at FROM job_updates
                WHERE job_id = $1 AND seq > $2
                ORDER BY seq ASC
                LIMIT $3
                """,
                job_id,
                after_seq,
                limit,
            )
        return [JobUpdate.model_validate(dict(r)) for r in rows]

    async def check_health(self) -> dict[str, Any]:
        health = await check_pool_health(self.pool)
        return {**health, "backend": self.backend}
