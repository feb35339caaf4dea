from tasker.core.exceptions import JobNotFoundError
from tasker.core.registries import Registry
from tasker.cron.base import CronJob
from tasker.cron.jobs import (
    AutoArchiveJob,
    DueDateRemindersJob,
    OverdueNotificationsJob,
    WeeklyReportsJob,
)


class CronJobRegistry(Registry[CronJob]):
    """Registry of cron jobs keyed by job name."""

    def __init__(self):
        super().__init__("CronJob")

    def register_job(self, job: CronJob) -> None:
        self.register(job.name, job)

    def get(self, name: str) -> CronJob:
        try:
            return super().get(name)
        except KeyError:
            raise JobNotFoundError(name) from None

    def list(self) -> list[str]:
        return sorted(super().list())

    def help(self) -> str:
        """Aligned `name - description` listing for operators."""
        lines = ["Available cron jobs:"]
        names = self.list()
        width = max((len(name) for name in names), default=0)
        for name in names:
            lines.append(f"  {name:<{width}} - {self._implementations[name].description}")
        return "\n".join(lines) + "\n"


def default_registry() -> CronJobRegistry:
    """Registry holding every built-in job, frozen against later changes."""
    registry = CronJobRegistry()
    registry.register_job(DueDateRemindersJob())
    registry.register_job(OverdueNotificationsJob())
    registry.register_job(WeeklyReportsJob())
    registry.register_job(AutoArchiveJob())
    registry.freeze()
    return registry
