import os
from collections.abc import AsyncGenerator

import pytest
import structlog
from sqlalchemy import delete

from tasker.config.settings import Settings
from tasker.infra.database import Base, Database

# Import models to ensure they're registered
from tasker.jobs.models import Task
from tasker.todos.models import Todo

from .fakes import FakeClock, MemoryBroker


@pytest.fixture(autouse=True)
def reset_structlog():
    """Start every test from structlog's default, uncached configuration."""
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment's .env file, tuned for fast tests."""
    return Settings(
        _env_file=None,
        environment="test",
        task_concurrency=4,
        task_poll_interval_ms=5,
        task_backoff_base_s=10,
        task_max_backoff_s=3600,
        task_shutdown_grace_s=1,
        cron_batch_size=100,
        cron_reminder_hours=24,
        cron_archive_days_threshold=30,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broker(clock) -> MemoryBroker:
    return MemoryBroker(clock=clock)


@pytest.fixture
async def database() -> AsyncGenerator[Database, None]:
    """A real Postgres database; tests using it are skipped without DATABASE_URL."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url or "postgresql" not in database_url:
        pytest.skip("DATABASE_URL with a PostgreSQL database is required")

    db = Database(Settings(_env_file=None, database_url=database_url))

    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield db
    finally:
        async with db.session() as session:
            await session.execute(delete(Task))
            await session.execute(delete(Todo))
            await session.commit()
        await db.close()
