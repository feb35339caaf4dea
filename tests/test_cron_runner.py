import pytest
import structlog
from structlog.testing import capture_logs

from tasker.core.exceptions import ValidationError
from tasker.cron.base import JobContext, JobRunner, open_job_context, require_positive
from tasker.jobs.producer import TaskProducer
from tasker.todos.repository import TodoRepository

from .fakes import FakeDirectory, FakeTodoRepository, context_factory


class StubJob:
    name = "stub-job"
    description = "Job used by runner tests"

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.runs = 0
        self.seen_context: dict = {}

    async def run(self, ctx: JobContext) -> None:
        self.runs += 1
        self.seen_context = structlog.contextvars.get_contextvars()
        if self.error:
            raise self.error


@pytest.fixture
def ctx(settings, broker, clock) -> JobContext:
    return JobContext(
        settings=settings,
        todos=FakeTodoRepository(),
        producer=TaskProducer(broker),
        directory=FakeDirectory(),
        clock=clock,
    )


class TestJobRunner:
    """Test one-shot job execution"""

    @pytest.mark.asyncio
    async def test_success_releases_context(self, ctx, settings):
        events: list[str] = []
        job = StubJob()

        with capture_logs() as logs:
            await JobRunner(job, settings, context_factory(ctx, events)).run()

        assert job.runs == 1
        assert events == ["open", "close"]
        assert [log["event"] for log in logs] == [
            "Starting cron job",
            "Cron job completed successfully",
        ]

    @pytest.mark.asyncio
    async def test_failure_releases_context_and_reraises(self, ctx, settings):
        events: list[str] = []
        job = StubJob(error=RuntimeError("store unavailable"))

        with capture_logs() as logs:
            with pytest.raises(RuntimeError, match="store unavailable"):
                await JobRunner(job, settings, context_factory(ctx, events)).run()

        assert events == ["open", "close"]
        failure = next(log for log in logs if log["event"] == "Failed to run cron job")
        assert failure["log_level"] == "error"
        assert failure["error"] == "store unavailable"

    @pytest.mark.asyncio
    async def test_job_name_bound_only_during_run(self, ctx, settings):
        job = StubJob()

        await JobRunner(job, settings, context_factory(ctx, [])).run()

        assert job.seen_context == {"job": "stub-job"}
        assert structlog.contextvars.get_contextvars() == {}

    @pytest.mark.asyncio
    async def test_each_run_opens_a_fresh_context(self, ctx, settings):
        events: list[str] = []
        runner = JobRunner(StubJob(), settings, context_factory(ctx, events))

        await runner.run()
        await runner.run()

        assert events == ["open", "close", "open", "close"]


@pytest.mark.asyncio
async def test_open_job_context_builds_collaborators(settings):
    """The default context wires repository, producer and directory without connecting."""
    async with open_job_context(settings) as ctx:
        assert isinstance(ctx.todos, TodoRepository)
        assert isinstance(ctx.producer, TaskProducer)
        assert ctx.settings is settings
        assert ctx.now().tzinfo is not None

    assert ctx.directory.client.is_closed


def test_require_positive():
    require_positive(batch=1, hours=24)

    with pytest.raises(ValidationError) as exc_info:
        require_positive(batch=0, hours=24, days=-3)

    assert exc_info.value.details == {"batch": 0, "days": -3}
