from typing import TYPE_CHECKING, Generic, Protocol, TypeVar

if TYPE_CHECKING:
    from tasker.jobs.models import Task

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def clear(self) -> None:
        """Drop every registration; only allowed while unfrozen."""
        if self._frozen:
            raise RuntimeError(f"Cannot clear frozen {self.name.lower()} registry")
        self._implementations.clear()

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Task Registry - background processing handlers
class TaskHandler(Protocol):
    """Protocol for handlers that process leased tasks."""

    async def handle(self, task: "Task") -> None:
        """
        Handle a leased task.

        Returning normally acks the task. Raising PermanentTaskError
        dead-letters it; any other exception (including a deadline
        expiry) consumes one retry.
        """
        ...


class TaskRegistry(Registry[TaskHandler]):
    """Registry for background task handlers keyed by task type."""

    def __init__(self):
        super().__init__("Task")


# Global registry instance, populated once before the dispatcher starts
task_registry = TaskRegistry()
