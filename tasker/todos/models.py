from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import TIMESTAMP, CheckConstraint, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tasker.infra.database import Base


class TodoStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TodoPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Todo(Base):
    """Todo row as read by the cron jobs."""

    __tablename__ = "todos"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, comment="Owner user id")
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=TodoStatus.ACTIVE.value
    )
    priority: Mapped[str] = mapped_column(
        Text, nullable=False, default=TodoPriority.MEDIUM.value
    )
    due_date: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'active', 'completed', 'archived')",
            name="todos_status_check",
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high')", name="todos_priority_check"
        ),
        Index("ix_todos_status_due_date", "status", "due_date"),
        Index("ix_todos_status_completed_at", "status", "completed_at"),
        Index("ix_todos_user_id", "user_id"),
    )

    def is_open(self) -> bool:
        return self.status not in (TodoStatus.COMPLETED.value, TodoStatus.ARCHIVED.value)


@dataclass(frozen=True)
class UserBatchStat:
    """Per-user weekly aggregate, computed per run and never persisted."""

    user_id: str
    created_count: int = 0
    completed_count: int = 0
    active_count: int = 0
    overdue_count: int = 0
