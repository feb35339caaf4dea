"""
Task payload schemas.

Payloads are JSON-encoded pydantic models; decoding failures are
permanent because retrying cannot repair the bytes.
"""

from datetime import datetime
from enum import Enum
from typing import TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from tasker.core.exceptions import PermanentTaskError

# Task type identifiers
TASK_WELCOME_EMAIL = "email:welcome"
TASK_REMINDER_EMAIL = "email:reminder"
TASK_WEEKLY_REPORT_EMAIL = "email:weekly_report"


class ReminderKind(str, Enum):
    DUE_DATE_REMINDER = "due_date_reminder"
    OVERDUE_NOTIFICATION = "overdue_notification"


class TaskPayload(BaseModel):
    """Base class for payloads with a stable byte encoding."""

    model_config = ConfigDict(frozen=True)

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")


P = TypeVar("P", bound=TaskPayload)


def decode_payload(model: type[P], raw: bytes) -> P:
    """Decode task bytes, raising PermanentTaskError on malformed input."""
    try:
        return model.model_validate_json(raw)
    except PydanticValidationError as e:
        raise PermanentTaskError(
            f"Malformed {model.__name__}: {e.error_count()} validation error(s)",
            {"errors": e.errors(include_url=False, include_input=False)},
        ) from e


class WelcomeEmailPayload(TaskPayload):
    to: str = Field(..., min_length=3)
    first_name: str


class ReminderEmailPayload(TaskPayload):
    user_id: str
    todo_id: UUID
    todo_title: str
    due_date: datetime
    # Unknown kinds are kept as strings so the handler can dead-letter them
    task_type: str = Field(..., description="due_date_reminder | overdue_notification")


class TodoSummary(BaseModel):
    """Todo snapshot embedded in weekly report payloads."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    title: str
    status: str
    priority: str
    due_date: datetime | None = None
    completed_at: datetime | None = None


class WeeklyReportEmailPayload(TaskPayload):
    user_id: str
    week_start: datetime
    week_end: datetime
    created_count: int = 0
    completed_count: int = 0
    active_count: int = 0
    overdue_count: int = 0
    completed_todos: list[TodoSummary] = Field(default_factory=list)
    overdue_todos: list[TodoSummary] = Field(default_factory=list)
