"""In-memory task store.

The default :class:`~docsync.state_machine.protocols.StatePersistence`
implementation for a single process. Tasks are keyed by ``(task_type, id)``
and every read or write goes through a copy, so callers can never mutate the
stored record by accident.
"""

from __future__ import annotations

import copy
from collections.abc import Collection, Mapping
from typing import Any

from docsync.state_machine.models import Task
from docsync.utils.clock import ClockProtocol, SystemClock
from docsync.utils.exceptions import TaskNotFoundError
from docsync.utils.logging_utils import get_logger

logger = get_logger()


class InMemoryStatePersistence:
    """Dictionary-backed task store.

    Each method completes without awaiting anything, so a single call is
    atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self, clock: ClockProtocol | None = None) -> None:
        self._tasks: dict[tuple[str, str], Task] = {}
        self._clock = clock or SystemClock()

    async def get_task(self, task_id: str, task_type: str | None = None) -> Task | None:
        if task_type is not None:
            task = self._tasks.get((task_type, task_id))
            return task.copy() if task else None

        matches = [t for t in self._tasks.values() if t.id == task_id]
        if not matches:
            return None
        return min(matches, key=lambda t: t.created_at).copy()

    async def get_tasks_by_status(
        self, status: str, task_type: str | None = None
    ) -> list[Task]:
        return [
            t.copy()
            for t in self._tasks.values()
            if t.status == status and (task_type is None or t.task_type == task_type)
        ]

    async def get_tasks_by_type(self, task_type: str) -> list[Task]:
        return [t.copy() for t in self._tasks.values() if t.task_type == task_type]

    async def get_all_tasks(self) -> list[Task]:
        return [t.copy() for t in self._tasks.values()]

    async def save_task(self, task: Task) -> None:
        self._tasks[task.key] = task.copy()

    async def update_task(
        self, task_id: str, task_type: str, updates: Mapping[str, Any]
    ) -> Task:
        key = (task_type, task_id)
        current = self._tasks.get(key)
        if current is None:
            raise TaskNotFoundError(task_id, task_type)

        updated = current.copy()
        for name, value in updates.items():
            setattr(updated, name, copy.deepcopy(value))
        updated.updated_at = self._clock.now_ms()
        self._tasks[key] = updated
        return updated.copy()

    async def delete_task(self, task_id: str, task_type: str) -> None:
        key = (task_type, task_id)
        if key not in self._tasks:
            raise TaskNotFoundError(task_id, task_type)
        del self._tasks[key]

    async def cleanup_expired_tasks(
        self,
        older_than_ms: int,
        terminal_statuses: Mapping[str, Collection[str]],
    ) -> int:
        now = self._clock.now_ms()
        expired = [
            key
            for key, task in self._tasks.items()
            if task.status in terminal_statuses.get(task.task_type, ())
            and now - task.updated_at > older_than_ms
        ]
        for key in expired:
            del self._tasks[key]

        if expired:
            logger.info(f"Removed {len(expired)} expired tasks from memory")
        return len(expired)

    def __len__(self) -> int:
        return len(self._tasks)
