from __future__ import annotations

"""init schema: chats, messages, jobs"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "chats",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("company_id", sa.String(length=128), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("employee_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False, server_default="New Chat"),
        sa.Column("thread_id", sa.String(length=128)),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("preview", sa.String(length=100)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("idx_chats_tenant_updated", "chats", ["company_id", "user_id", "updated_at"])
    op.create_index("idx_chats_tenant_employee", "chats", ["company_id", "user_id", "employee_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=64), primary_key=True),
        # Tie-breaker for messages sharing a created_at timestamp
        sa.Column("seq", sa.BigInteger, sa.Identity(always=False), nullable=False),
        sa.Column("chat_id", sa.String(length=64), sa.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text, nullable=False, server_default=""),
        sa.Column("tool_calls", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.CheckConstraint("role IN ('user', 'assistant')", name="ck_messages_role"),
    )
    op.create_index("idx_messages_chat_created", "messages", ["chat_id", "created_at", "seq"])

    # No foreign key to chats: job rows outlive deleted chats for auditing
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("chat_id", sa.String(length=64), nullable=False),
        sa.Column("company_id", sa.String(length=128), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("employee_id", sa.String(length=64)),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("personality_level", sa.SmallInteger, nullable=False, server_default=sa.text("2")),
        sa.Column("tools_state", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("error", sa.Text),
        sa.Column("messages_saved", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("supersedes_job_id", sa.String(length=64)),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_jobs_status",
        ),
    )
    op.create_index("idx_jobs_chat_created", "jobs", ["chat_id", "created_at"])
    op.create_index(
        "idx_jobs_pending_created",
        "jobs",
        ["created_at"],
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index(
        "idx_jobs_processing_started",
        "jobs",
        ["started_at"],
        postgresql_where=sa.text("status = 'processing'"),
    )
    # At most one pending/processing job per chat
    op.create_index(
        "uq_jobs_active_chat",
        "jobs",
        ["chat_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )


def downgrade() -> None:
    op.drop_index("uq_jobs_active_chat", table_name="jobs")
    op.drop_index("idx_jobs_processing_started", table_name="jobs")
    op.drop_index("idx_jobs_pending_created", table_name="jobs")
    op.drop_index("idx_jobs_chat_created", table_name="jobs")
    op.drop_table("jobs")

    op.drop_index("idx_messages_chat_created", table_name="messages")
    op.drop_table("messages")

    op.drop_index("idx_chats_tenant_employee", table_name="chats")
    op.drop_index("idx_chats_tenant_updated", table_name="chats")
    op.drop_table("chats")
