"""
Task queue models.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import TIMESTAMP, CheckConstraint, Index, Integer, LargeBinary, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tasker.infra.database import Base


class TaskStatus(str, Enum):
    """Task status enumeration."""

    PENDING = "pending"
    LEASED = "leased"
    DONE = "done"
    DEADLETTER = "deadletter"


class Task(Base):
    """
    A unit of background work owned by the broker once enqueued.

    Lifecycle:
    - pending -> leased on lease
    - leased -> done on ack
    - leased -> pending on nack (visible again at next_visible_at)
      or on lease expiry (visible again at lease_expires_at)
    - leased -> deadletter when retries are exhausted or the failure is permanent
    """

    __tablename__ = "tasks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(Text, nullable=False, comment="Task type identifier")
    payload: Mapped[bytes] = mapped_column(
        LargeBinary, nullable=False, comment="Serialized task payload"
    )
    queue: Mapped[str] = mapped_column(Text, nullable=False, comment="Queue name")
    max_retry: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    timeout_s: Mapped[int] = mapped_column(
        Integer, nullable=False, default=30, comment="Handler deadline in seconds"
    )

    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=TaskStatus.PENDING.value
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    enqueued_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    next_visible_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        comment="Earliest time the task may be leased",
    )

    # Lease bookkeeping
    leased_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'leased', 'done', 'deadletter')",
            name="tasks_status_check",
        ),
        CheckConstraint("retry_count >= 0", name="tasks_retry_count_check"),
        Index("ix_tasks_status_queue_visible", "status", "queue", "next_visible_at"),
        Index("ix_tasks_status_lease_expires", "status", "lease_expires_at"),
    )

    @classmethod
    def new(
        cls,
        task_type: str,
        payload: bytes,
        queue: str,
        max_retry: int,
        timeout: timedelta,
        now: datetime | None = None,
    ) -> "Task":
        """Build a pending task with every column populated."""
        now = now or datetime.now(UTC)
        return cls(
            id=uuid4(),
            type=task_type,
            payload=payload,
            queue=queue,
            max_retry=max_retry,
            timeout_s=int(timeout.total_seconds()),
            status=TaskStatus.PENDING.value,
            retry_count=0,
            enqueued_at=now,
            next_visible_at=now,
            updated_at=now,
        )

    @property
    def timeout(self) -> timedelta:
        return timedelta(seconds=self.timeout_s)

    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.DONE.value, TaskStatus.DEADLETTER.value)
