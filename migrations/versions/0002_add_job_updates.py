from __future__ import annotations

"""add job_updates table

Revision ID: 0002_add_job_updates
Revises: 0001_init_schema
Create Date: 2026-10-18

Stores the streaming events of worker-processed turns (text deltas, finished
tool calls, the saved assistant message, errors) so a client that did not
start the turn can follow its job. seq orders updates within a job.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002_add_job_updates"
down_revision = "0001_init_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "job_updates",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("seq", sa.BigInteger, sa.Identity(always=False), nullable=False),
        sa.Column("job_id", sa.String(length=64), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("data", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("idx_job_updates_job_seq", "job_updates", ["job_id", "seq"])


def downgrade() -> None:
    op.drop_index("idx_job_updates_job_seq", table_name="job_updates")
    op.drop_table("job_updates")
