"""
Task registry initialization.

Registers all task handlers with a task registry before the dispatcher
starts leasing.
"""

from tasker.config.logging import get_logger
from tasker.core.registries import TaskRegistry, task_registry
from tasker.jobs.handlers import (
    ReminderEmailHandler,
    WeeklyReportEmailHandler,
    WelcomeEmailHandler,
)
from tasker.jobs.schemas import (
    TASK_REMINDER_EMAIL,
    TASK_WEEKLY_REPORT_EMAIL,
    TASK_WELCOME_EMAIL,
)
from tasker.notifications.directory import UserDirectory
from tasker.notifications.email import EmailSender

logger = get_logger(__name__)


def register_task_handlers(
    sender: EmailSender,
    directory: UserDirectory,
    registry: TaskRegistry = task_registry,
) -> TaskRegistry:
    """Register all task handlers with the given registry."""

    logger.info("Registering task handlers")

    registry.register(TASK_WELCOME_EMAIL, WelcomeEmailHandler(sender))
    registry.register(TASK_REMINDER_EMAIL, ReminderEmailHandler(sender, directory))
    registry.register(
        TASK_WEEKLY_REPORT_EMAIL, WeeklyReportEmailHandler(sender, directory)
    )

    logger.info("Task handlers registered", registered_handlers=registry.list())
    return registry
