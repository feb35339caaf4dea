"""
Bounded worker pool that leases tasks across weighted queues.
"""

import asyncio
import os
import random
import signal
import socket
from contextlib import suppress
from datetime import timedelta
from enum import Enum

from tasker.config.logging import get_logger
from tasker.config.settings import Settings
from tasker.core.exceptions import PermanentTaskError
from tasker.core.registries import TaskRegistry, task_registry
from tasker.jobs.broker import Broker, SqlBroker
from tasker.jobs.models import Task
from tasker.jobs.registry_init import register_task_handlers
from tasker.notifications.directory import ClerkUserDirectory
from tasker.notifications.email import ResendEmailSender

logger = get_logger(__name__)


class TaskOutcome(str, Enum):
    DONE = "done"
    RETRY = "retry"
    DEADLETTER = "deadletter"


def backoff_delay(attempt: int, base_s: float, max_s: float) -> timedelta:
    """Exponential retry delay, non-decreasing in attempt: base * 2^(attempt-1), capped."""
    if attempt < 1:
        attempt = 1
    # Cap the exponent so huge attempt counts cannot overflow the float
    delay = base_s * (2 ** min(attempt - 1, 62))
    return timedelta(seconds=min(max_s, delay))


class WeightedQueueSelector:
    """
    Chooses which queue a worker polls first.

    A queue with weight w is chosen first with probability w / sum(weights).
    The remaining queues follow in descending weight order so an empty
    first choice falls through to the next non-empty queue.
    """

    def __init__(self, weights: dict[str, int], rng: random.Random | None = None):
        if not weights:
            raise ValueError("at least one queue is required")
        self.weights = dict(weights)
        self._names = list(self.weights)
        self._values = [self.weights[name] for name in self._names]
        self._by_weight = sorted(self._names, key=lambda n: (-self.weights[n], n))
        self._rng = rng or random.Random()

    def pick(self) -> str:
        return self._rng.choices(self._names, weights=self._values, k=1)[0]

    def order(self) -> list[str]:
        first = self.pick()
        return [first] + [name for name in self._by_weight if name != first]


class Dispatcher:
    """
    Fixed-size asyncio worker pool.

    Each worker leases one task at a time, runs its handler under the task's
    timeout and settles it:
    - success: ack
    - PermanentTaskError or unknown task type: dead-letter
    - any other failure: nack with backoff while retries remain, else dead-letter
    """

    def __init__(
        self,
        broker: Broker,
        registry: TaskRegistry,
        settings: Settings,
        selector: WeightedQueueSelector | None = None,
    ):
        self.broker = broker
        self.registry = registry
        self.settings = settings
        self.concurrency = settings.task_concurrency
        self.selector = selector or WeightedQueueSelector(settings.task_queues)
        self.lease_timeout = timedelta(seconds=settings.task_lease_timeout_s)
        self.poll_interval_s = settings.task_poll_interval_ms / 1000
        self.error_backoff_s = 5.0
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}"
        self.running = False
        self._stopping = asyncio.Event()
        self._workers: list[asyncio.Task] = []

    async def run(self) -> None:
        """Run the pool until stop() is called, then shut down gracefully."""
        if self.running:
            raise RuntimeError("Dispatcher is already running")

        self.running = True
        self._stopping.clear()
        logger.info(
            "Starting dispatcher",
            worker_id=self.worker_id,
            concurrency=self.concurrency,
            queues=self.selector.weights,
            handlers=self.registry.list(),
        )

        self._workers = [
            asyncio.create_task(
                self._worker_loop(f"{self.worker_id}-{i}"), name=f"worker-{i}"
            )
            for i in range(self.concurrency)
        ]

        try:
            await self._stopping.wait()
        finally:
            await self._shutdown()
            self.running = False

    def stop(self) -> None:
        """Stop leasing new tasks; run() returns after in-flight tasks settle."""
        if not self._stopping.is_set():
            logger.info("Stopping dispatcher", worker_id=self.worker_id)
        self._stopping.set()

    async def _shutdown(self) -> None:
        self._stopping.set()
        grace = self.settings.task_shutdown_grace_s

        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=grace)
            if pending:
                logger.warning(
                    "Cancelling in-flight tasks after grace period",
                    worker_id=self.worker_id,
                    active_tasks=len(pending),
                    grace_s=grace,
                )
                for worker in pending:
                    worker.cancel()
            # Cancelled tasks keep their lease and are redelivered once it expires
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers = []

        await self.broker.close()
        logger.info("Dispatcher stopped", worker_id=self.worker_id)

    async def _idle(self, seconds: float) -> None:
        with suppress(TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)

    async def _worker_loop(self, lessee: str) -> None:
        """Lease and process tasks until the pool is stopping."""
        while not self._stopping.is_set():
            try:
                task = await self.lease_next(lessee)
                if task is None:
                    await self._idle(self.poll_interval_s)
                    continue

                await self.process(task, lessee)

            except Exception:
                logger.exception("Error in worker loop", lessee=lessee)
                await self._idle(self.error_backoff_s)

    async def lease_next(self, lessee: str | None = None) -> Task | None:
        """Try each queue in weighted order and return the first leased task."""
        for queue in self.selector.order():
            task = await self.broker.lease([queue], self.lease_timeout, lessee)
            if task is not None:
                return task
        return None

    async def process(self, task: Task, lessee: str | None = None) -> TaskOutcome:
        """Run the handler for a leased task and settle it with the broker."""
        task_logger = logger.bind(
            task_id=str(task.id),
            task_type=task.type,
            queue=task.queue,
            retry_count=task.retry_count,
        )

        try:
            handler = self.registry.get(task.type)
        except KeyError:
            error = f"unknown task type: {task.type}"
            task_logger.error("No handler registered, moving task to deadletter")
            await self.broker.dead_letter(task.id, error, lessee)
            return TaskOutcome.DEADLETTER

        try:
            task_logger.info("Processing task started")
            async with asyncio.timeout(task.timeout_s):
                await handler.handle(task)

        except PermanentTaskError as e:
            task_logger.error("Task failed permanently", error=e.message)
            await self.broker.dead_letter(task.id, e.message, lessee)
            task_logger.error("Task moved to deadletter queue")
            return TaskOutcome.DEADLETTER

        except TimeoutError:
            return await self._fail(
                task, lessee, f"task timed out after {task.timeout_s}s", task_logger
            )

        except Exception as e:
            task_logger.exception("Task processing failed", error=str(e))
            return await self._fail(task, lessee, str(e) or type(e).__name__, task_logger)

        await self.broker.ack(task.id, lessee)
        task_logger.info("Processing task completed successfully")
        return TaskOutcome.DONE

    async def _fail(self, task: Task, lessee: str | None, error: str, task_logger) -> TaskOutcome:
        attempt = task.retry_count + 1

        if attempt <= task.max_retry:
            delay = backoff_delay(
                attempt, self.settings.task_backoff_base_s, self.settings.task_max_backoff_s
            )
            await self.broker.nack(task.id, delay, error, lessee)
            task_logger.info(
                "Task scheduled for retry",
                attempt=attempt,
                max_retry=task.max_retry,
                retry_in_s=delay.total_seconds(),
                error=error,
            )
            return TaskOutcome.RETRY

        await self.broker.dead_letter(task.id, error, lessee)
        task_logger.error(
            "Task moved to deadletter queue",
            attempts=attempt,
            max_retry=task.max_retry,
            error=error,
        )
        return TaskOutcome.DEADLETTER


async def serve(settings: Settings) -> None:
    """Build the production dispatcher and run it until SIGINT/SIGTERM."""
    sender = ResendEmailSender(settings)
    directory = ClerkUserDirectory(settings)
    register_task_handlers(sender, directory, task_registry)

    # Freeze the registry outside development to prevent runtime modifications
    if settings.environment != "development":
        task_registry.freeze()

    dispatcher = Dispatcher(SqlBroker.from_settings(settings), task_registry, settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, dispatcher.stop)

    try:
        await dispatcher.run()
    finally:
        await sender.close()
        await directory.close()
