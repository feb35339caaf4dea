from typing import Any

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    MultipleResultsFound,
    NoResultFound,
    OperationalError,
)


class TaskerException(Exception):
    """Base exception for the tasker background core."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(TaskerException):
    """Raised when batch parameters or payloads fail validation."""


class NotFoundError(TaskerException):
    """Raised when a resource is not found."""


class ConstraintViolationError(TaskerException):
    """Raised when a write violates a database constraint."""


class TransientError(TaskerException):
    """Raised for failures worth retrying (backend unavailable, timeouts)."""


class BrokerError(TransientError):
    """Raised when the task broker cannot complete an operation."""


class PermanentTaskError(TaskerException):
    """Raised by handlers for failures that retrying cannot fix."""


class JobNotFoundError(NotFoundError):
    """Raised when a cron job name is not registered."""

    def __init__(self, name: str):
        super().__init__(f"job '{name}' not found", {"job": name})


class ArchiveMismatchError(TaskerException):
    """Raised when a bulk archive touched a different number of rows than selected."""

    def __init__(self, expected: int, archived: int):
        super().__init__(
            f"expected to archive {expected} todos, but archived {archived}",
            {"expected": expected, "archived": archived},
        )


def classify_db_error(exc: Exception) -> TaskerException:
    """
    Map a SQLAlchemy error onto the tasker error taxonomy.

    NotFound and ConstraintViolation are recognised; connection level
    failures become TransientError; everything else is a plain
    TaskerException.
    """
    if isinstance(exc, TaskerException):
        return exc

    if isinstance(exc, NoResultFound):
        return NotFoundError(str(exc))

    if isinstance(exc, (IntegrityError, MultipleResultsFound)):
        details: dict[str, Any] = {}
        orig = getattr(exc, "orig", None)
        constraint = getattr(orig, "constraint_name", None)
        if constraint:
            details["constraint"] = constraint
        return ConstraintViolationError(str(exc), details)

    if isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return TransientError(str(exc))

    return TaskerException(str(exc))
