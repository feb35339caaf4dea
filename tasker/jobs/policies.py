"""
Per-type delivery policy. Callers cannot override these.
"""

from dataclasses import dataclass
from datetime import timedelta

from tasker.jobs.schemas import (
    TASK_REMINDER_EMAIL,
    TASK_WEEKLY_REPORT_EMAIL,
    TASK_WELCOME_EMAIL,
)


@dataclass(frozen=True)
class TaskPolicy:
    """Delivery policy fixed per task type."""

    queue: str
    max_retry: int
    timeout: timedelta


TASK_POLICIES: dict[str, TaskPolicy] = {
    TASK_WELCOME_EMAIL: TaskPolicy("default", 3, timedelta(seconds=30)),
    TASK_REMINDER_EMAIL: TaskPolicy("default", 3, timedelta(seconds=30)),
    # Report rendering needs a longer deadline
    TASK_WEEKLY_REPORT_EMAIL: TaskPolicy("default", 3, timedelta(seconds=60)),
}
