"""Plain-text notification messages built from task payloads."""

from dataclasses import dataclass
from datetime import datetime

from tasker.jobs.schemas import TodoSummary


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    template: str


def _fmt(dt: datetime | None) -> str:
    return dt.strftime("%Y-%m-%d %H:%M UTC") if dt else "-"


def welcome_message(to: str, first_name: str) -> EmailMessage:
    return EmailMessage(
        to=to,
        subject="Welcome to Tasker!",
        text=f"Hi {first_name},\n\nYour Tasker account is ready.",
        template="welcome",
    )


def due_date_reminder_message(to: str, todo_title: str, due_date: datetime) -> EmailMessage:
    return EmailMessage(
        to=to,
        subject=f"Reminder: '{todo_title}' is due soon",
        text=f"Your todo '{todo_title}' is due on {_fmt(due_date)}.",
        template="due-date-reminder",
    )


def overdue_notification_message(
    to: str, todo_title: str, due_date: datetime
) -> EmailMessage:
    return EmailMessage(
        to=to,
        subject=f"Overdue: '{todo_title}'",
        text=f"Your todo '{todo_title}' was due on {_fmt(due_date)} and is still open.",
        template="overdue-notification",
    )


def weekly_report_message(
    to: str,
    week_start: datetime,
    week_end: datetime,
    completed_count: int,
    active_count: int,
    overdue_count: int,
    completed_todos: list[TodoSummary],
    overdue_todos: list[TodoSummary],
) -> EmailMessage:
    lines = [
        f"Your week: {week_start:%b %d} - {week_end:%b %d}",
        "",
        f"Completed: {completed_count}",
        f"Active: {active_count}",
        f"Overdue: {overdue_count}",
    ]
    if completed_todos:
        lines += ["", "Recently completed:"]
        lines += [f"  - {t.title} ({_fmt(t.completed_at)})" for t in completed_todos]
    if overdue_todos:
        lines += ["", "Still overdue:"]
        lines += [f"  - {t.title} (due {_fmt(t.due_date)})" for t in overdue_todos]

    return EmailMessage(
        to=to,
        subject="Your weekly productivity report",
        text="\n".join(lines),
        template="weekly-report",
    )
