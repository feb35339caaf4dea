"""
Cron batch jobs: registry, per-run context and runner.
"""
