"""
Postgres-backed task broker with lease semantics.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from tasker.config.logging import get_logger
from tasker.config.settings import Settings
from tasker.core.exceptions import BrokerError
from tasker.infra.database import Database
from tasker.jobs.models import Task, TaskStatus

logger = get_logger(__name__)


class Broker(Protocol):
    """
    Durable, at-least-once task store.

    A leased task that is neither acked nor nacked becomes leasable again
    once its lease expires. Implementations must be safe for any number of
    concurrent producers and consumers without caller-side locking.
    """

    async def enqueue(self, task: Task) -> UUID:
        """Persist a task; raises BrokerError if it was not stored."""
        ...

    async def lease(
        self,
        queue_names: Sequence[str],
        lease_timeout: timedelta,
        lessee: str | None = None,
    ) -> Task | None:
        """Claim one visible task from the given queues, or None."""
        ...

    async def ack(self, task_id: UUID, lessee: str | None = None) -> None:
        ...

    async def nack(
        self,
        task_id: UUID,
        retry_delay: timedelta,
        error: str | None = None,
        lessee: str | None = None,
    ) -> None:
        """Return a task to pending, counting one retry."""
        ...

    async def dead_letter(
        self, task_id: UUID, error: str, lessee: str | None = None
    ) -> None:
        ...

    async def close(self) -> None:
        ...


def _claimable(now: datetime):
    """Pending and visible, or leased with an expired lease."""
    return or_(
        and_(
            Task.status == TaskStatus.PENDING.value,
            Task.next_visible_at <= now,
        ),
        and_(
            Task.status == TaskStatus.LEASED.value,
            Task.lease_expires_at <= now,
        ),
    )


def _held_by(task_id: UUID, lessee: str | None):
    clause = and_(Task.id == task_id, Task.status == TaskStatus.LEASED.value)
    if lessee is not None:
        clause = and_(clause, Task.leased_by == lessee)
    return clause


class SqlBroker:
    """
    Broker over the `tasks` table.

    Leasing selects one candidate with FOR UPDATE SKIP LOCKED and claims it
    with a conditional update, so two consumers can never hold the same
    task even when the lock hint is unavailable.
    """

    def __init__(self, database: Database, owns_database: bool = False):
        self.database = database
        self._owns_database = owns_database

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlBroker":
        return cls(Database(settings), owns_database=True)

    async def enqueue(self, task: Task) -> UUID:
        try:
            async with self.database.session() as session:
                session.add(task)
                await session.commit()
        except SQLAlchemyError as e:
            raise BrokerError(
                "Failed to enqueue task",
                {"task_type": task.type, "queue": task.queue, "error": str(e)},
            ) from e

        logger.debug(
            "Task enqueued",
            task_id=str(task.id),
            task_type=task.type,
            queue=task.queue,
        )
        return task.id

    async def lease(
        self,
        queue_names: Sequence[str],
        lease_timeout: timedelta,
        lessee: str | None = None,
    ) -> Task | None:
        if not queue_names:
            return None

        now = datetime.now(UTC)
        try:
            async with self.database.session() as session:
                candidate = await session.scalar(
                    select(Task.id)
                    .where(Task.queue.in_(list(queue_names)), _claimable(now))
                    .order_by(Task.next_visible_at)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                if candidate is None:
                    await session.rollback()
                    return None

                claimed = await session.scalar(
                    update(Task)
                    .where(Task.id == candidate, _claimable(now))
                    .values(
                        status=TaskStatus.LEASED.value,
                        leased_by=lessee,
                        lease_expires_at=now + lease_timeout,
                        updated_at=now,
                    )
                    .returning(Task)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                return claimed
        except SQLAlchemyError as e:
            raise BrokerError(
                "Failed to lease task",
                {"queues": list(queue_names), "error": str(e)},
            ) from e

    async def ack(self, task_id: UUID, lessee: str | None = None) -> None:
        await self._transition(
            task_id,
            lessee,
            "ack",
            status=TaskStatus.DONE.value,
            leased_by=None,
            lease_expires_at=None,
        )

    async def nack(
        self,
        task_id: UUID,
        retry_delay: timedelta,
        error: str | None = None,
        lessee: str | None = None,
    ) -> None:
        now = datetime.now(UTC)
        await self._transition(
            task_id,
            lessee,
            "nack",
            status=TaskStatus.PENDING.value,
            retry_count=Task.retry_count + 1,
            next_visible_at=now + retry_delay,
            leased_by=None,
            lease_expires_at=None,
            last_error=error[:2000] if error else None,
        )

    async def dead_letter(
        self, task_id: UUID, error: str, lessee: str | None = None
    ) -> None:
        await self._transition(
            task_id,
            lessee,
            "dead_letter",
            status=TaskStatus.DEADLETTER.value,
            leased_by=None,
            lease_expires_at=None,
            last_error=error[:2000],
        )

    async def _transition(
        self, task_id: UUID, lessee: str | None, action: str, **values
    ) -> None:
        values["updated_at"] = datetime.now(UTC)
        try:
            async with self.database.session() as session:
                result = await session.execute(
                    update(Task)
                    .where(_held_by(task_id, lessee))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise BrokerError(
                f"Failed to {action} task",
                {"task_id": str(task_id), "error": str(e)},
            ) from e

        if result.rowcount == 0:
            # Lease expired and the task moved on; the new lessee owns it now
            logger.warning(
                "Lost lease before settling task",
                task_id=str(task_id),
                action=action,
                lessee=lessee,
            )

    async def get(self, task_id: UUID) -> Task | None:
        async with self.database.session() as session:
            return await session.get(Task, task_id)

    async def counts(self) -> dict[str, dict[str, int]]:
        """Task counts keyed by queue, then status."""
        async with self.database.session() as session:
            result = await session.execute(
                select(Task.queue, Task.status, func.count(Task.id)).group_by(
                    Task.queue, Task.status
                )
            )
            out: dict[str, dict[str, int]] = {}
            for queue, status, count in result.all():
                out.setdefault(queue, {})[status] = count
            return out

    async def close(self) -> None:
        if self._owns_database:
            await self.database.close()
