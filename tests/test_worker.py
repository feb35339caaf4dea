"""Tests for the dispatcher, retry policy and queue selection"""

import asyncio
import random
from collections import Counter
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from tasker.core.exceptions import PermanentTaskError
from tasker.core.registries import TaskRegistry
from tasker.jobs.models import Task, TaskStatus
from tasker.jobs.worker import Dispatcher, TaskOutcome, WeightedQueueSelector, backoff_delay

from .fakes import MemoryBroker


class RecordingHandler:
    """Handler that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int = 0, error: Exception | None = None, delay: float = 0):
        self.failures = failures
        self.error = error or RuntimeError("provider unavailable")
        self.delay = delay
        self.calls: list = []
        self.started = asyncio.Event()

    async def handle(self, task: Task) -> None:
        self.calls.append(task.id)
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.calls) <= self.failures:
            raise self.error


class FixedSelector(WeightedQueueSelector):
    """Selector whose weighted pick is always the given queue."""

    def __init__(self, weights: dict[str, int], first: str):
        super().__init__(weights)
        self.first = first

    def pick(self) -> str:
        return self.first


def make_task(task_type: str = "test:task", queue: str = "default", max_retry: int = 3, now=None):
    return Task.new(
        task_type,
        b"{}",
        queue=queue,
        max_retry=max_retry,
        timeout=timedelta(seconds=30),
        now=now,
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture
def registry() -> TaskRegistry:
    return TaskRegistry()


@pytest.fixture
def dispatcher(broker, registry, settings) -> Dispatcher:
    return Dispatcher(broker, registry, settings, selector=WeightedQueueSelector({"default": 1}))


async def drain(dispatcher: Dispatcher, clock, max_rounds: int = 20) -> list[TaskOutcome]:
    """Lease and process until nothing is leasable, jumping past retry delays."""
    outcomes = []
    for _ in range(max_rounds):
        task = await dispatcher.lease_next("worker-0")
        if task is None:
            clock.advance(hours=2)
            task = await dispatcher.lease_next("worker-0")
            if task is None:
                break
        outcomes.append(await dispatcher.process(task, "worker-0"))
    return outcomes


class TestBackoff:
    """Test retry delay growth"""

    def test_first_retry_uses_base(self):
        assert backoff_delay(1, 10, 3600) == timedelta(seconds=10)

    def test_doubles_per_attempt(self):
        assert backoff_delay(2, 10, 3600) == timedelta(seconds=20)
        assert backoff_delay(3, 10, 3600) == timedelta(seconds=40)

    def test_capped_at_max(self):
        assert backoff_delay(20, 10, 3600) == timedelta(seconds=3600)
        assert backoff_delay(10_000, 10, 3600) == timedelta(seconds=3600)

    def test_non_decreasing(self):
        delays = [backoff_delay(n, 10, 3600) for n in range(1, 30)]
        assert delays == sorted(delays)


class TestWeightedQueueSelector:
    """Test weighted queue choice"""

    def test_pick_frequencies_follow_weights(self):
        selector = WeightedQueueSelector(
            {"critical": 6, "default": 3, "low": 1}, rng=random.Random(1234)
        )

        picks = Counter(selector.pick() for _ in range(20_000))

        assert picks["critical"] / 20_000 == pytest.approx(0.6, abs=0.02)
        assert picks["default"] / 20_000 == pytest.approx(0.3, abs=0.02)
        assert picks["low"] / 20_000 == pytest.approx(0.1, abs=0.02)

    def test_order_puts_pick_first_then_by_weight(self):
        selector = FixedSelector({"critical": 6, "default": 3, "low": 1}, first="low")
        assert selector.order() == ["low", "critical", "default"]

    def test_order_covers_every_queue_once(self):
        selector = WeightedQueueSelector({"a": 1, "b": 2, "c": 3}, rng=random.Random(7))
        for _ in range(50):
            assert sorted(selector.order()) == ["a", "b", "c"]

    def test_requires_a_queue(self):
        with pytest.raises(ValueError):
            WeightedQueueSelector({})


class TestLeaseNext:
    """Test queue fall-through when leasing"""

    @pytest.mark.asyncio
    async def test_falls_through_empty_queue(self, broker, registry, settings, clock):
        task = make_task(queue="low", now=clock())
        await broker.enqueue(task)
        dispatcher = Dispatcher(
            broker,
            registry,
            settings,
            selector=FixedSelector({"critical": 6, "default": 3, "low": 1}, first="critical"),
        )

        leased = await dispatcher.lease_next("worker-0")

        assert leased is task
        assert broker.polled == ["critical", "default", "low"]

    @pytest.mark.asyncio
    async def test_returns_none_when_all_queues_empty(self, dispatcher):
        assert await dispatcher.lease_next("worker-0") is None


class TestProcess:
    """Test settling a leased task"""

    @pytest.mark.asyncio
    async def test_success_acks(self, broker, registry, dispatcher, clock):
        registry.register("test:task", RecordingHandler())
        task = make_task(now=clock())
        await broker.enqueue(task)

        outcome = await dispatcher.process(await dispatcher.lease_next("w"), "w")

        assert outcome is TaskOutcome.DONE
        assert task.status == TaskStatus.DONE.value
        assert task.retry_count == 0

    @pytest.mark.asyncio
    async def test_unknown_type_dead_lettered_without_retry(self, broker, dispatcher, clock):
        task = make_task(task_type="email:unknown", now=clock())
        await broker.enqueue(task)

        with capture_logs() as logs:
            outcome = await dispatcher.process(await dispatcher.lease_next("w"), "w")

        assert outcome is TaskOutcome.DEADLETTER
        assert task.status == TaskStatus.DEADLETTER.value
        assert task.retry_count == 0
        assert task.last_error == "unknown task type: email:unknown"
        assert any(log["log_level"] == "error" for log in logs)

    @pytest.mark.asyncio
    async def test_permanent_error_dead_letters_immediately(
        self, broker, registry, dispatcher, clock
    ):
        handler = RecordingHandler(failures=1, error=PermanentTaskError("bad address"))
        registry.register("test:task", handler)
        task = make_task(now=clock())
        await broker.enqueue(task)

        outcome = await dispatcher.process(await dispatcher.lease_next("w"), "w")

        assert outcome is TaskOutcome.DEADLETTER
        assert task.status == TaskStatus.DEADLETTER.value
        assert task.last_error == "bad address"
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_failure_nacks_with_backoff(self, broker, registry, dispatcher, clock):
        registry.register("test:task", RecordingHandler(failures=1))
        task = make_task(now=clock())
        await broker.enqueue(task)

        outcome = await dispatcher.process(await dispatcher.lease_next("w"), "w")

        assert outcome is TaskOutcome.RETRY
        assert task.status == TaskStatus.PENDING.value
        assert task.retry_count == 1
        assert task.next_visible_at == clock() + timedelta(seconds=10)
        assert task.last_error == "provider unavailable"
        # Not visible until the backoff elapses
        assert await dispatcher.lease_next("w") is None

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, broker, registry, dispatcher, clock):
        registry.register("test:task", RecordingHandler(delay=5))
        task = make_task(now=clock())
        task.timeout_s = 0.05
        await broker.enqueue(task)

        outcome = await dispatcher.process(await dispatcher.lease_next("w"), "w")

        assert outcome is TaskOutcome.RETRY
        assert task.retry_count == 1
        assert "timed out" in task.last_error

    @pytest.mark.asyncio
    async def test_always_failing_task_runs_max_retry_plus_one_times(
        self, broker, registry, dispatcher, clock
    ):
        handler = RecordingHandler(failures=100)
        registry.register("test:task", handler)
        task = make_task(max_retry=3, now=clock())
        await broker.enqueue(task)

        outcomes = await drain(dispatcher, clock)

        assert len(handler.calls) == 4
        assert outcomes == [TaskOutcome.RETRY] * 3 + [TaskOutcome.DEADLETTER]
        assert task.status == TaskStatus.DEADLETTER.value
        assert task.retry_count == 3

    @pytest.mark.asyncio
    async def test_success_on_last_allowed_attempt(self, broker, registry, dispatcher, clock):
        handler = RecordingHandler(failures=3)
        registry.register("test:task", handler)
        task = make_task(max_retry=3, now=clock())
        await broker.enqueue(task)

        outcomes = await drain(dispatcher, clock)

        assert len(handler.calls) == 4
        assert outcomes[-1] is TaskOutcome.DONE
        assert task.status == TaskStatus.DONE.value
        assert task.retry_count == 3

    @pytest.mark.asyncio
    async def test_zero_max_retry_dead_letters_on_first_failure(
        self, broker, registry, dispatcher, clock
    ):
        handler = RecordingHandler(failures=1)
        registry.register("test:task", handler)
        task = make_task(max_retry=0, now=clock())
        await broker.enqueue(task)

        outcomes = await drain(dispatcher, clock)

        assert outcomes == [TaskOutcome.DEADLETTER]
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_expired_lease_is_redelivered(self, broker, registry, dispatcher, clock):
        registry.register("test:task", RecordingHandler())
        task = make_task(now=clock())
        await broker.enqueue(task)

        first = await dispatcher.lease_next("worker-a")
        assert first is task
        assert await dispatcher.lease_next("worker-b") is None

        clock.advance(seconds=dispatcher.lease_timeout.total_seconds())
        second = await dispatcher.lease_next("worker-b")

        assert second is task
        assert task.leased_by == "worker-b"
        # The stale lessee can no longer settle the task
        await broker.ack(task.id, "worker-a")
        assert task.status == TaskStatus.LEASED.value


class TestDispatcherRun:
    """Test the running worker pool"""

    @pytest.mark.asyncio
    async def test_concurrent_workers_process_each_task_once(self, registry, settings):
        broker = MemoryBroker()
        handler = RecordingHandler()
        registry.register("test:task", handler)
        tasks = [make_task() for _ in range(25)]
        for task in tasks:
            await broker.enqueue(task)

        dispatcher = Dispatcher(
            broker, registry, settings, selector=WeightedQueueSelector({"default": 1})
        )
        runner = asyncio.create_task(dispatcher.run())

        await wait_until(lambda: len(broker.by_status(TaskStatus.DONE)) == 25)
        dispatcher.stop()
        await runner

        assert sorted(handler.calls) == sorted(t.id for t in tasks)
        leased_ids = [task_id for task_id, _ in broker.lease_log]
        assert len(leased_ids) == len(set(leased_ids)) == 25
        assert broker.closed
        assert not dispatcher.running

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_task(self, registry, settings):
        broker = MemoryBroker()
        handler = RecordingHandler(delay=0.1)
        registry.register("test:task", handler)
        task = make_task()
        await broker.enqueue(task)

        dispatcher = Dispatcher(
            broker, registry, settings, selector=WeightedQueueSelector({"default": 1})
        )
        runner = asyncio.create_task(dispatcher.run())

        await asyncio.wait_for(handler.started.wait(), timeout=2)
        dispatcher.stop()
        await runner

        assert task.status == TaskStatus.DONE.value

    @pytest.mark.asyncio
    async def test_grace_period_cancels_stuck_task(self, registry, settings):
        settings.task_shutdown_grace_s = 0.05
        broker = MemoryBroker()
        handler = RecordingHandler(delay=10)
        registry.register("test:task", handler)
        task = make_task()
        await broker.enqueue(task)

        dispatcher = Dispatcher(
            broker, registry, settings, selector=WeightedQueueSelector({"default": 1})
        )
        runner = asyncio.create_task(dispatcher.run())

        await asyncio.wait_for(handler.started.wait(), timeout=2)
        dispatcher.stop()
        await asyncio.wait_for(runner, timeout=2)

        # Left leased; redelivered once the lease expires
        assert task.status == TaskStatus.LEASED.value
        assert broker.closed

    @pytest.mark.asyncio
    async def test_run_twice_rejected(self, broker, registry, settings):
        dispatcher = Dispatcher(broker, registry, settings)
        runner = asyncio.create_task(dispatcher.run())
        await wait_until(lambda: dispatcher.running)

        with pytest.raises(RuntimeError, match="already running"):
            await dispatcher.run()

        dispatcher.stop()
        await runner
