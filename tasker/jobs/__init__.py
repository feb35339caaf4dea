"""
Task queue infrastructure.

This package provides the background task system:
- Postgres-backed broker with leases and at-least-once delivery
- Registry-based handlers keyed by task type
- A bounded worker pool with weighted queues and retry backoff
"""
