"""
Todo queries used by the cron jobs.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tasker.core.exceptions import classify_db_error
from tasker.todos.models import Todo, TodoStatus, UserBatchStat

_CLOSED = (TodoStatus.COMPLETED.value, TodoStatus.ARCHIVED.value)

# Per-user item lists embedded in weekly reports
USER_ITEM_LIMIT = 10


class TodoRepository:
    """Read queries and the bulk archive transition over `todos`."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _all(self, query) -> list[Todo]:
        """
        Run a read inside a savepoint.

        A failed statement aborts the enclosing Postgres transaction; rolling
        back to the savepoint keeps the session usable for the next query.
        """
        try:
            async with self.session.begin_nested():
                result = await self.session.scalars(query)
                return list(result.all())
        except SQLAlchemyError as e:
            raise classify_db_error(e) from e

    async def get_todos_due_in_hours(
        self, hours: int, limit: int, now: datetime | None = None
    ) -> list[Todo]:
        """Open todos due in (now, now + hours], soonest first."""
        now = now or datetime.now(UTC)
        return await self._all(
            select(Todo)
            .where(
                Todo.due_date.is_not(None),
                Todo.due_date > now,
                Todo.due_date <= now + timedelta(hours=hours),
                Todo.status.not_in(_CLOSED),
            )
            .order_by(Todo.due_date.asc())
            .limit(limit)
        )

    async def get_overdue_todos(
        self, limit: int, now: datetime | None = None
    ) -> list[Todo]:
        """Open todos with a due date before now, oldest first."""
        now = now or datetime.now(UTC)
        return await self._all(
            select(Todo)
            .where(
                Todo.due_date.is_not(None),
                Todo.due_date < now,
                Todo.status.not_in(_CLOSED),
            )
            .order_by(Todo.due_date.asc())
            .limit(limit)
        )

    async def get_completed_todos_older_than(
        self, cutoff: datetime, limit: int
    ) -> list[Todo]:
        return await self._all(
            select(Todo)
            .where(
                Todo.status == TodoStatus.COMPLETED.value,
                Todo.completed_at.is_not(None),
                Todo.completed_at < cutoff,
            )
            .order_by(Todo.completed_at.asc())
            .limit(limit)
        )

    async def archive_todos(self, todo_ids: Sequence[UUID]) -> int:
        """
        Move completed todos to archived in one statement.

        Returns rows affected. Rows no longer completed (archived by a
        concurrent run, reopened) are not touched and not counted.
        """
        if not todo_ids:
            return 0

        try:
            result = await self.session.execute(
                update(Todo)
                .where(
                    Todo.id.in_(list(todo_ids)),
                    Todo.status == TodoStatus.COMPLETED.value,
                )
                .values(status=TodoStatus.ARCHIVED.value, updated_at=datetime.now(UTC))
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise classify_db_error(e) from e

        return result.rowcount

    async def get_weekly_stats_for_users(
        self, start: datetime, end: datetime
    ) -> list[UserBatchStat]:
        """
        Aggregate counts for every active user over [start, end].

        A user is active when they own a non-archived todo or created one in
        the window.
        """
        created = func.count().filter(Todo.created_at >= start, Todo.created_at <= end)
        completed = func.count().filter(
            Todo.status == TodoStatus.COMPLETED.value,
            Todo.completed_at >= start,
            Todo.completed_at <= end,
        )
        active = func.count().filter(Todo.status == TodoStatus.ACTIVE.value)
        overdue = func.count().filter(
            Todo.due_date < end,
            Todo.status.not_in(_CLOSED),
        )

        try:
            async with self.session.begin_nested():
                result = await self.session.execute(
                    select(Todo.user_id, created, completed, active, overdue)
                    .where(
                        or_(
                            Todo.status != TodoStatus.ARCHIVED.value,
                            Todo.created_at >= start,
                        )
                    )
                    .group_by(Todo.user_id)
                    .order_by(Todo.user_id)
                )
                rows = result.all()
        except SQLAlchemyError as e:
            raise classify_db_error(e) from e

        return [
            UserBatchStat(
                user_id=user_id,
                created_count=created_count,
                completed_count=completed_count,
                active_count=active_count,
                overdue_count=overdue_count,
            )
            for user_id, created_count, completed_count, active_count, overdue_count in rows
        ]

    async def get_completed_todos_for_user(
        self, user_id: str, start: datetime, end: datetime, limit: int = USER_ITEM_LIMIT
    ) -> list[Todo]:
        """Most recently completed todos for a user within [start, end]."""
        return await self._all(
            select(Todo)
            .where(
                Todo.user_id == user_id,
                Todo.status == TodoStatus.COMPLETED.value,
                Todo.completed_at >= start,
                Todo.completed_at <= end,
            )
            .order_by(Todo.completed_at.desc())
            .limit(limit)
        )

    async def get_overdue_todos_for_user(
        self, user_id: str, now: datetime | None = None, limit: int = USER_ITEM_LIMIT
    ) -> list[Todo]:
        now = now or datetime.now(UTC)
        return await self._all(
            select(Todo)
            .where(
                Todo.user_id == user_id,
                Todo.due_date < now,
                Todo.status.not_in(_CLOSED),
            )
            .order_by(Todo.due_date.asc())
            .limit(limit)
        )
