"""
Task handlers for email notifications.

Each handler implements the TaskHandler protocol and receives its
collaborators (email sender, user directory) through the constructor.
"""

from tasker.config.logging import get_logger
from tasker.core.exceptions import NotFoundError, PermanentTaskError
from tasker.jobs.models import Task
from tasker.jobs.schemas import (
    ReminderEmailPayload,
    ReminderKind,
    WeeklyReportEmailPayload,
    WelcomeEmailPayload,
    decode_payload,
)
from tasker.notifications.directory import UserDirectory
from tasker.notifications.email import EmailSender
from tasker.notifications.messages import (
    due_date_reminder_message,
    overdue_notification_message,
    weekly_report_message,
    welcome_message,
)

logger = get_logger(__name__)


async def _resolve_email(directory: UserDirectory, user_id: str, kind: str) -> str:
    try:
        return await directory.get_user_email(user_id)
    except NotFoundError as e:
        logger.error("Failed to resolve user email", type=kind, user_id=user_id)
        # An unknown user stays unknown on retry
        raise PermanentTaskError(e.message, e.details) from e


class WelcomeEmailHandler:
    """
    Sends the welcome email.

    Payload expected:
    {"to": "user@example.com", "first_name": "Ada"}
    """

    def __init__(self, sender: EmailSender):
        self.sender = sender

    async def handle(self, task: Task) -> None:
        p = decode_payload(WelcomeEmailPayload, task.payload)

        logger.info("Processing welcome email task", type="welcome", to=p.to)
        await self.sender.send(welcome_message(p.to, p.first_name))
        logger.info("Successfully sent welcome email", type="welcome", to=p.to)


class ReminderEmailHandler:
    """
    Sends due-date reminders and overdue notifications.

    Payload expected:
    {
        "user_id": "user_123",
        "todo_id": "uuid-string",
        "todo_title": "Write report",
        "due_date": "2025-01-01T09:00:00Z",
        "task_type": "due_date_reminder" | "overdue_notification"
    }
    """

    def __init__(self, sender: EmailSender, directory: UserDirectory):
        self.sender = sender
        self.directory = directory

    async def handle(self, task: Task) -> None:
        p = decode_payload(ReminderEmailPayload, task.payload)

        try:
            kind = ReminderKind(p.task_type)
        except ValueError:
            raise PermanentTaskError(
                f"unknown reminder task type: {p.task_type}",
                {"task_id": str(task.id)},
            ) from None

        log = logger.bind(
            type=kind.value,
            user_id=p.user_id,
            todo_id=str(p.todo_id),
        )
        log.info("Processing reminder email task", todo_title=p.todo_title)

        email = await _resolve_email(self.directory, p.user_id, kind.value)

        if kind is ReminderKind.DUE_DATE_REMINDER:
            message = due_date_reminder_message(email, p.todo_title, p.due_date)
        else:
            message = overdue_notification_message(email, p.todo_title, p.due_date)

        await self.sender.send(message)
        log.info("Successfully sent reminder email")


class WeeklyReportEmailHandler:
    """Sends the weekly productivity report for one user."""

    def __init__(self, sender: EmailSender, directory: UserDirectory):
        self.sender = sender
        self.directory = directory

    async def handle(self, task: Task) -> None:
        p = decode_payload(WeeklyReportEmailPayload, task.payload)

        log = logger.bind(type="weekly_report", user_id=p.user_id)
        log.info(
            "Processing weekly report email task",
            completed_count=p.completed_count,
            active_count=p.active_count,
            overdue_count=p.overdue_count,
        )

        email = await _resolve_email(self.directory, p.user_id, "weekly_report")
        await self.sender.send(
            weekly_report_message(
                email,
                p.week_start,
                p.week_end,
                p.completed_count,
                p.active_count,
                p.overdue_count,
                p.completed_todos,
                p.overdue_todos,
            )
        )
        log.info("Successfully sent weekly report email")
