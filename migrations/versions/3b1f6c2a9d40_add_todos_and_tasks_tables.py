"""add todos and tasks tables

Revision ID: 3b1f6c2a9d40
Revises:
Create Date: 2025-10-01 09:12:44.218303

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b1f6c2a9d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "todos",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.Text, nullable=False, comment="Owner user id"),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("status", sa.Text, nullable=False, server_default="active"),
        sa.Column("priority", sa.Text, nullable=False, server_default="medium"),
        sa.Column("due_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('draft', 'active', 'completed', 'archived')",
            name="todos_status_check",
        ),
        sa.CheckConstraint(
            "priority IN ('low', 'medium', 'high')", name="todos_priority_check"
        ),
    )
    op.create_index("ix_todos_status_due_date", "todos", ["status", "due_date"])
    op.create_index("ix_todos_status_completed_at", "todos", ["status", "completed_at"])
    op.create_index("ix_todos_user_id", "todos", ["user_id"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("type", sa.Text, nullable=False, comment="Task type identifier"),
        sa.Column("payload", sa.LargeBinary, nullable=False, comment="Serialized task payload"),
        sa.Column("queue", sa.Text, nullable=False, comment="Queue name"),
        sa.Column("max_retry", sa.Integer, nullable=False, server_default="3"),
        sa.Column(
            "timeout_s",
            sa.Integer,
            nullable=False,
            server_default="30",
            comment="Handler deadline in seconds",
        ),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "enqueued_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "next_visible_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time the task may be leased",
        ),
        # Lease bookkeeping
        sa.Column("leased_by", sa.Text, nullable=True),
        sa.Column("lease_expires_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'leased', 'done', 'deadletter')",
            name="tasks_status_check",
        ),
        sa.CheckConstraint("retry_count >= 0", name="tasks_retry_count_check"),
    )
    op.create_index(
        "ix_tasks_status_queue_visible", "tasks", ["status", "queue", "next_visible_at"]
    )
    op.create_index(
        "ix_tasks_status_lease_expires", "tasks", ["status", "lease_expires_at"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("tasks")
    op.drop_table("todos")
