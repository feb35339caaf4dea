"""
Cron job contract, per-run context and runner.

A run is one-shot: the runner opens a fresh JobContext, executes the job
and closes every resource the context acquired, whatever the outcome.
"""

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from tasker.config.logging import bind_run_context, clear_run_context, get_logger
from tasker.config.settings import Settings
from tasker.core.exceptions import ValidationError
from tasker.infra.database import Database
from tasker.jobs.broker import SqlBroker
from tasker.jobs.producer import TaskProducer
from tasker.notifications.directory import ClerkUserDirectory, UserDirectory
from tasker.todos.repository import TodoRepository

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class JobContext:
    """Collaborators for a single cron run. Never shared between runs."""

    settings: Settings
    todos: TodoRepository
    producer: TaskProducer
    directory: UserDirectory
    clock: Callable[[], datetime] = field(default=_utcnow)

    def now(self) -> datetime:
        return self.clock()


class CronJob(Protocol):
    """A named batch job invoked through a single run method."""

    name: str
    description: str

    async def run(self, ctx: JobContext) -> None:
        ...


ContextFactory = Callable[[Settings], AbstractAsyncContextManager[JobContext]]


@asynccontextmanager
async def open_job_context(settings: Settings) -> AsyncIterator[JobContext]:
    """Acquire store, producer and directory for one run; release them on exit."""
    async with AsyncExitStack() as stack:
        database = Database(settings)
        stack.push_async_callback(database.close)

        session = await stack.enter_async_context(database.session())

        # The broker shares the run's engine; closing the database releases both
        producer = TaskProducer(SqlBroker(database))

        directory = ClerkUserDirectory(settings)
        stack.push_async_callback(directory.close)

        yield JobContext(
            settings=settings,
            todos=TodoRepository(session),
            producer=producer,
            directory=directory,
        )


def require_positive(**params: int) -> None:
    """Reject non-positive batch parameters before a job touches the store."""
    invalid = {name: value for name, value in params.items() if value is None or value <= 0}
    if invalid:
        raise ValidationError(
            "Invalid batch parameters: "
            + ", ".join(f"{name}={value}" for name, value in invalid.items()),
            invalid,
        )


class JobRunner:
    """Runs one job to completion inside a freshly opened JobContext."""

    def __init__(
        self,
        job: CronJob,
        settings: Settings,
        context_factory: ContextFactory = open_job_context,
    ):
        self.job = job
        self.settings = settings
        self.context_factory = context_factory

    async def run(self) -> None:
        bind_run_context(job=self.job.name)
        logger.info("Starting cron job")
        try:
            async with self.context_factory(self.settings) as ctx:
                await self.job.run(ctx)
        except Exception as e:
            logger.error("Failed to run cron job", error=str(e), exc_info=True)
            raise
        else:
            logger.info("Cron job completed successfully")
        finally:
            clear_run_context()
