"""Tasker CLI - cron job runner and task worker"""

import asyncio
import sys

import typer

from tasker.config.logging import setup_logging
from tasker.config.settings import get_settings
from tasker.cron.base import JobRunner
from tasker.cron.registry import CronJobRegistry, default_registry
from tasker.jobs.broker import SqlBroker
from tasker.jobs.worker import serve

from .utils.formatting import (
    console,
    create_queue_stats_table,
    print_error,
    print_info,
    print_success,
)

registry: CronJobRegistry = default_registry()

app = typer.Typer(
    name="tasker",
    help="Tasker Cron Job Runner - execute scheduled jobs and run the task worker",
    no_args_is_help=True,
)


@app.callback()
def main_callback():
    """Configure logging before any command runs."""
    setup_logging()


@app.command("list")
def list_jobs():
    """List available cron jobs"""
    typer.echo(registry.help(), nl=False)


async def run_job(name: str) -> None:
    """Resolve a job by name and run it once."""
    job = registry.get(name)
    await JobRunner(job, get_settings()).run()


def _job_command(name: str):
    def command():
        try:
            asyncio.run(run_job(name))
        except Exception as e:
            print_error(f"job failed: {getattr(e, 'message', str(e))}")
            raise typer.Exit(1)
        print_success(f"{name} completed")

    return command


for _name in registry.list():
    app.command(_name, help=registry.get(_name).description)(_job_command(_name))


@app.command()
def worker():
    """Run the task dispatcher until SIGINT/SIGTERM"""
    settings = get_settings()
    print_info(
        f"Starting {settings.task_concurrency} worker(s) on queues "
        f"{settings.task_queues}. Press Ctrl+C to stop..."
    )
    asyncio.run(serve(settings))
    print_info("Workers stopped.")


@app.command()
def stats():
    """Show task counts per queue and status"""

    async def _counts():
        broker = SqlBroker.from_settings(get_settings())
        try:
            return await broker.counts()
        finally:
            await broker.close()

    try:
        counts = asyncio.run(_counts())
    except Exception as e:
        print_error(f"Failed to read task stats: {e}")
        raise typer.Exit(1)

    console.print(create_queue_stats_table(counts))


def main() -> None:
    """Console entry point; usage errors and failed jobs exit with status 1."""
    try:
        app()
    except SystemExit as e:
        # typer exits 2 on usage errors
        sys.exit(0 if e.code in (0, None) else 1)
    sys.exit(0)


if __name__ == "__main__":
    main()
