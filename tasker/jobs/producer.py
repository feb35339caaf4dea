"""
Typed task construction and enqueueing.
"""

from datetime import datetime
from uuid import UUID

from tasker.jobs.broker import Broker
from tasker.jobs.models import Task
from tasker.jobs.policies import TASK_POLICIES
from tasker.jobs.schemas import (
    TASK_REMINDER_EMAIL,
    TASK_WEEKLY_REPORT_EMAIL,
    TASK_WELCOME_EMAIL,
    ReminderEmailPayload,
    ReminderKind,
    TaskPayload,
    TodoSummary,
    WeeklyReportEmailPayload,
    WelcomeEmailPayload,
)


class TaskProducer:
    """Builds tasks with their type policy and hands them to the broker."""

    def __init__(self, broker: Broker):
        self.broker = broker

    async def enqueue(self, task_type: str, payload: TaskPayload) -> UUID:
        """
        Serialize and enqueue a payload under its type policy.

        Broker errors propagate; a caller that sees one must treat the task
        as not enqueued.
        """
        try:
            policy = TASK_POLICIES[task_type]
        except KeyError:
            raise ValueError(f"No delivery policy for task type: {task_type}") from None

        task = Task.new(
            task_type,
            payload.to_bytes(),
            queue=policy.queue,
            max_retry=policy.max_retry,
            timeout=policy.timeout,
        )
        return await self.broker.enqueue(task)

    async def enqueue_welcome_email(self, to: str, first_name: str) -> UUID:
        return await self.enqueue(
            TASK_WELCOME_EMAIL, WelcomeEmailPayload(to=to, first_name=first_name)
        )

    async def enqueue_reminder_email(
        self,
        user_id: str,
        todo_id: UUID,
        todo_title: str,
        due_date: datetime,
        kind: ReminderKind,
    ) -> UUID:
        return await self.enqueue(
            TASK_REMINDER_EMAIL,
            ReminderEmailPayload(
                user_id=user_id,
                todo_id=todo_id,
                todo_title=todo_title,
                due_date=due_date,
                task_type=kind.value,
            ),
        )

    async def enqueue_weekly_report_email(
        self,
        user_id: str,
        week_start: datetime,
        week_end: datetime,
        created_count: int,
        completed_count: int,
        active_count: int,
        overdue_count: int,
        completed_todos: list[TodoSummary],
        overdue_todos: list[TodoSummary],
    ) -> UUID:
        return await self.enqueue(
            TASK_WEEKLY_REPORT_EMAIL,
            WeeklyReportEmailPayload(
                user_id=user_id,
                week_start=week_start,
                week_end=week_end,
                created_count=created_count,
                completed_count=completed_count,
                active_count=active_count,
                overdue_count=overdue_count,
                completed_todos=completed_todos,
                overdue_todos=overdue_todos,
            ),
        )

    async def close(self) -> None:
        await self.broker.close()
