"""Tasker background core: task queue engine and cron batch jobs."""

__version__ = "1.0.0"
