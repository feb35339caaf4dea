"""
Built-in cron jobs.

Each job runs one bounded scan of the todo store and then applies a
per-row side effect. Enqueue failures are logged and skipped; the run still
succeeds when the scan succeeded. AutoArchive is the exception: its bulk
transition is all-or-error.
"""

from collections import defaultdict
from datetime import timedelta

from tasker.config.logging import get_logger
from tasker.core.exceptions import ArchiveMismatchError, TaskerException
from tasker.cron.base import JobContext, require_positive
from tasker.jobs.schemas import ReminderKind, TodoSummary
from tasker.todos.models import Todo

logger = get_logger(__name__)


async def _enqueue_reminders(ctx: JobContext, todos: list[Todo], kind: ReminderKind) -> int:
    """Enqueue one reminder task per todo; returns how many were enqueued."""
    per_user_cap = ctx.settings.cron_max_todos_per_user_notification
    user_todos: dict[str, list[str]] = defaultdict(list)
    enqueued = 0

    for todo in todos:
        if len(user_todos[todo.user_id]) < per_user_cap:
            user_todos[todo.user_id].append(todo.title)

        try:
            await ctx.producer.enqueue_reminder_email(
                user_id=todo.user_id,
                todo_id=todo.id,
                todo_title=todo.title,
                due_date=todo.due_date,
                kind=kind,
            )
        except TaskerException as e:
            logger.error(
                "Failed to enqueue reminder email",
                kind=kind.value,
                todo_id=str(todo.id),
                user_id=todo.user_id,
                error=e.message,
            )
            continue

        enqueued += 1
        logger.info(
            "Enqueued reminder for todo",
            kind=kind.value,
            todo_id=str(todo.id),
            todo_title=todo.title,
            user_id=todo.user_id,
        )

    logger.info(
        "Reminder emails enqueued",
        kind=kind.value,
        enqueued_count=enqueued,
        total_todos=len(todos),
    )
    for user_id, titles in user_todos.items():
        logger.info("User reminders enqueued", user_id=user_id, reminder_count=len(titles))

    return enqueued


class DueDateRemindersJob:
    name = "due-date-reminders"
    description = "Enqueue email reminders for todos due soon"

    async def run(self, ctx: JobContext) -> None:
        cfg = ctx.settings
        require_positive(
            cron_batch_size=cfg.cron_batch_size,
            cron_reminder_hours=cfg.cron_reminder_hours,
        )

        todos = await ctx.todos.get_todos_due_in_hours(
            cfg.cron_reminder_hours, cfg.cron_batch_size, now=ctx.now()
        )
        logger.info(
            "Found todos due soon", todo_count=len(todos), hours=cfg.cron_reminder_hours
        )

        await _enqueue_reminders(ctx, todos, ReminderKind.DUE_DATE_REMINDER)


class OverdueNotificationsJob:
    name = "overdue-notifications"
    description = "Enqueue notifications for overdue todos"

    async def run(self, ctx: JobContext) -> None:
        cfg = ctx.settings
        require_positive(cron_batch_size=cfg.cron_batch_size)

        todos = await ctx.todos.get_overdue_todos(cfg.cron_batch_size, now=ctx.now())
        logger.info("Found overdue todos", todo_count=len(todos))

        await _enqueue_reminders(ctx, todos, ReminderKind.OVERDUE_NOTIFICATION)


class WeeklyReportsJob:
    name = "weekly-reports"
    description = "Enqueue weekly productivity reports"

    async def run(self, ctx: JobContext) -> None:
        now = ctx.now()
        week_ago = now - timedelta(days=7)

        stats = await ctx.todos.get_weekly_stats_for_users(week_ago, now)
        logger.info("Generating weekly reports", user_count=len(stats))

        enqueued = 0
        for user_stats in stats:
            user_id = user_stats.user_id

            try:
                completed = await ctx.todos.get_completed_todos_for_user(user_id, week_ago, now)
            except TaskerException as e:
                logger.error("Failed to fetch completed todos", user_id=user_id, error=e.message)
                completed = []

            try:
                overdue = await ctx.todos.get_overdue_todos_for_user(user_id, now=now)
            except TaskerException as e:
                logger.error("Failed to fetch overdue todos", user_id=user_id, error=e.message)
                overdue = []

            try:
                await ctx.producer.enqueue_weekly_report_email(
                    user_id=user_id,
                    week_start=week_ago,
                    week_end=now,
                    created_count=user_stats.created_count,
                    completed_count=user_stats.completed_count,
                    active_count=user_stats.active_count,
                    overdue_count=user_stats.overdue_count,
                    completed_todos=[TodoSummary.model_validate(t) for t in completed],
                    overdue_todos=[TodoSummary.model_validate(t) for t in overdue],
                )
            except TaskerException as e:
                logger.error("Failed to enqueue weekly report", user_id=user_id, error=e.message)
                continue

            enqueued += 1
            logger.info(
                "Enqueued weekly report",
                user_id=user_id,
                created=user_stats.created_count,
                completed=user_stats.completed_count,
                active=user_stats.active_count,
                overdue=user_stats.overdue_count,
            )

        logger.info(
            "Weekly reports enqueued", enqueued_count=enqueued, total_users=len(stats)
        )


class AutoArchiveJob:
    name = "auto-archive"
    description = "Archive old completed todos"

    async def run(self, ctx: JobContext) -> None:
        cfg = ctx.settings
        require_positive(
            cron_batch_size=cfg.cron_batch_size,
            cron_archive_days_threshold=cfg.cron_archive_days_threshold,
        )

        cutoff = ctx.now() - timedelta(days=cfg.cron_archive_days_threshold)
        logger.info("Searching for completed todos to archive", cutoff_date=cutoff.isoformat())

        todos = await ctx.todos.get_completed_todos_older_than(cutoff, cfg.cron_batch_size)
        logger.info("Found completed todos to archive", todo_count=len(todos))

        if not todos:
            logger.info("No todos to archive")
            return

        todo_ids = [todo.id for todo in todos]
        user_counts: dict[str, int] = defaultdict(int)
        for todo in todos:
            user_counts[todo.user_id] += 1

        archived = await ctx.todos.archive_todos(todo_ids)
        if archived != len(todo_ids):
            raise ArchiveMismatchError(expected=len(todo_ids), archived=archived)

        logger.info("Successfully archived todos", archived_count=archived)
        for user_id, count in user_counts.items():
            logger.info("User todos archived", user_id=user_id, archived_count=count)
