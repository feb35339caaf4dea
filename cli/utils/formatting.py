"""Rich Formatting Utilities for CLI Output"""

from rich import box
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    err_console.print(f"[red]✗ {message}[/red]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def create_queue_stats_table(counts: dict[str, dict[str, int]]) -> Table:
    """Create a formatted table of task counts per queue and status"""
    statuses = ["pending", "leased", "done", "deadletter"]
    table = Table(title="Task Queues", box=box.ROUNDED)

    table.add_column("Queue", justify="left", style="cyan", no_wrap=True)
    for status in statuses:
        table.add_column(status.capitalize(), justify="right")

    for queue in sorted(counts):
        by_status = counts[queue]
        table.add_row(queue, *(str(by_status.get(s, 0)) for s in statuses))

    return table
