"""Protocol interfaces for the task engine.

These protocols define the seams between the engine, the per-task-type
strategies and the task store. Any implementation that provides the methods
can be plugged in; no inheritance is required.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping
from typing import Any, Protocol, runtime_checkable

from docsync.state_machine.models import Task, TransitionLogEntry


@runtime_checkable
class StatePersistence(Protocol):
    """Storage for task records.

    Implementations hold no business logic. Every method is a coroutine
    because a store may perform blocking I/O. Writes must be atomic per
    ``(task_type, id)`` key; last writer wins.
    """

    async def get_task(self, task_id: str, task_type: str | None = None) -> Task | None:
        """Return a copy of the task, or ``None``.

        When ``task_type`` is omitted the task is looked up by id across all
        types and the earliest created match is returned.
        """
        ...

    async def get_tasks_by_status(
        self, status: str, task_type: str | None = None
    ) -> list[Task]:
        """Return all tasks with the given status."""
        ...

    async def get_tasks_by_type(self, task_type: str) -> list[Task]:
        """Return all tasks of the given type."""
        ...

    async def get_all_tasks(self) -> list[Task]:
        """Return every stored task."""
        ...

    async def save_task(self, task: Task) -> None:
        """Insert or replace a task record."""
        ...

    async def update_task(
        self, task_id: str, task_type: str, updates: Mapping[str, Any]
    ) -> Task:
        """Merge ``updates`` into a stored task, stamp ``updated_at`` and return it.

        Raises:
            TaskNotFoundError: If no such task exists
        """
        ...

    async def delete_task(self, task_id: str, task_type: str) -> None:
        """Delete a task record.

        Raises:
            TaskNotFoundError: If no such task exists
        """
        ...

    async def cleanup_expired_tasks(
        self,
        older_than_ms: int,
        terminal_statuses: Mapping[str, Collection[str]],
    ) -> int:
        """Delete terminal tasks not updated within ``older_than_ms``.

        Args:
            older_than_ms: Retention window in milliseconds
            terminal_statuses: Terminal statuses per task type; tasks of types
                not present in the mapping are never deleted

        Returns:
            Number of deleted tasks
        """
        ...


@runtime_checkable
class TaskStrategy(Protocol):
    """Lifecycle logic for one task type."""

    @property
    def strategy_id(self) -> str:
        """Task type this strategy governs."""
        ...

    @property
    def terminal_statuses(self) -> frozenset[str]:
        """Statuses with no outgoing transitions."""
        ...

    async def create_task(
        self, task_id: str, context: Mapping[str, Any] | None = None
    ) -> Task:
        """Create and persist a new task in the initial status."""
        ...

    async def handle_transition(
        self, task_id: str, event: str, context: Mapping[str, Any] | None = None
    ) -> bool:
        """Apply ``event`` to the task; ``False`` if the table rejects it."""
        ...

    async def execute_task(self, task_id: str) -> None:
        """Run the stage logic for the task's current status."""
        ...

    async def handle_error(self, task_id: str, error: Exception) -> None:
        """React to an exception raised by :meth:`execute_task`."""
        ...

    def get_transition_history(
        self, task_id: str, limit: int | None = None
    ) -> list[TransitionLogEntry]:
        """Attempted transitions of the task, oldest first."""
        ...

    def prune_transition_history(self, live_task_ids: Collection[str]) -> int:
        """Drop histories of tasks not in ``live_task_ids``; return how many."""
        ...
