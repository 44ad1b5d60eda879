"""Base class for task strategies.

A strategy owns one task type: its transition table, the side effects of each
transition and the stage logic that moves a task forward. The engine only
routes calls to the strategy registered for a task's type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Collection, Mapping
from typing import Any, ClassVar

from docsync.state_machine.models import (
    MUTABLE_TASK_FIELDS,
    Task,
    TransitionLogEntry,
    TransitionResult,
)
from docsync.state_machine.protocols import StatePersistence
from docsync.utils.clock import ClockProtocol, SystemClock
from docsync.utils.exceptions import TaskNotFoundError
from docsync.utils.logging_utils import get_logger

logger = get_logger()

# Entries kept per task; older ones are dropped first.
HISTORY_LIMIT = 50


class BaseStrategy(ABC):
    """Declarative transition table plus helpers shared by all strategies.

    Subclasses set ``strategy_id``, ``initial_status`` and ``transitions``
    (``{from_status: {event: to_status}}``) and implement :meth:`execute_task`.
    Effects of a transition beyond the status change are returned by
    :meth:`transition_effects`.
    """

    strategy_id: ClassVar[str]
    initial_status: ClassVar[str] = "NEW"
    transitions: ClassVar[Mapping[str, Mapping[str, str]]] = {}

    def __init__(
        self,
        persistence: StatePersistence,
        *,
        clock: ClockProtocol | None = None,
    ) -> None:
        self.persistence = persistence
        self.clock = clock or SystemClock()
        self._history: dict[str, deque[TransitionLogEntry]] = {}

    # Transition table

    def resolve_transition(self, status: str, event: str) -> str | None:
        """Return the target status for ``event`` from ``status``, or ``None``."""
        return self.transitions.get(status, {}).get(event)

    @property
    def statuses(self) -> frozenset[str]:
        """Every status that appears in the transition table."""
        found = {self.initial_status}
        for source, edges in self.transitions.items():
            found.add(source)
            found.update(edges.values())
        return frozenset(found)

    @property
    def terminal_statuses(self) -> frozenset[str]:
        """Statuses that have no outgoing transitions."""
        return frozenset(s for s in self.statuses if not self.transitions.get(s))

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal_statuses

    # Task lifecycle

    async def create_task(
        self, task_id: str, context: Mapping[str, Any] | None = None
    ) -> Task:
        """Create and persist a new task in ``initial_status``."""
        now = self.clock.now_ms()
        task = Task(
            id=task_id,
            task_type=self.strategy_id,
            status=self.initial_status,
            retries=0,
            progress=0,
            created_at=now,
            updated_at=now,
            context=dict(context or {}),
        )
        await self.persistence.save_task(task)
        logger.debug(
            f"Created task {task_id}",
            task_type=self.strategy_id,
            status=task.status,
        )
        return task

    async def get_task(self, task_id: str) -> Task | None:
        return await self.persistence.get_task(task_id, self.strategy_id)

    async def require_task(self, task_id: str) -> Task:
        task = await self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id, self.strategy_id)
        return task

    async def apply_event(
        self, task_id: str, event: str, context: Mapping[str, Any] | None = None
    ) -> TransitionResult:
        """Validate ``event`` against the table and persist the new status."""
        task = await self.get_task(task_id)
        if task is None:
            return TransitionResult(
                success=False,
                previous_status=None,
                new_status=None,
                event=event,
                error_message=f"Task {task_id} not found",
            )

        target = self.resolve_transition(task.status, event)
        if target is None:
            return self._record(
                TransitionResult(
                    success=False,
                    previous_status=task.status,
                    new_status=task.status,
                    event=event,
                    error_message=f"Invalid transition from {task.status} on '{event}'",
                ),
                task_id,
            )

        extra_context = dict(context or {})
        updates: dict[str, Any] = {
            "status": target,
            "context": {**task.context, **extra_context},
        }
        effects = self.transition_effects(task, event, target, extra_context)
        unknown = set(effects) - MUTABLE_TASK_FIELDS
        if unknown:
            raise ValueError(f"Transition effects may not set: {sorted(unknown)}")
        updates.update(effects)

        await self.persistence.update_task(task_id, self.strategy_id, updates)
        return self._record(
            TransitionResult(
                success=True,
                previous_status=task.status,
                new_status=target,
                event=event,
            ),
            task_id,
        )

    async def handle_transition(
        self, task_id: str, event: str, context: Mapping[str, Any] | None = None
    ) -> bool:
        result = await self.apply_event(task_id, event, context)
        if not result.success:
            logger.warning(
                f"Rejected transition for task {task_id}: {result.error_message}",
                task_type=self.strategy_id,
                trigger=event,
            )
            return False

        logger.debug(
            f"Task {task_id}: {result.previous_status} -> {result.new_status}",
            task_type=self.strategy_id,
            trigger=event,
        )
        return True

    def transition_effects(
        self,
        task: Task,
        event: str,
        target: str,
        context: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Extra field updates applied together with a transition.

        The default marks ``completed_at`` when a terminal status is entered.
        """
        if self.is_terminal(target):
            return {"completed_at": self.clock.now_ms()}
        return {}

    # Transition history

    def _record(self, result: TransitionResult, task_id: str) -> TransitionResult:
        entries = self._history.setdefault(task_id, deque(maxlen=HISTORY_LIMIT))
        entries.append(
            TransitionLogEntry(
                task_id=task_id,
                from_status=result.previous_status,
                to_status=result.new_status,
                event=result.event,
                at=self.clock.now_ms(),
                success=result.success,
                error=result.error_message,
            )
        )
        return result

    def get_transition_history(
        self, task_id: str, limit: int | None = None
    ) -> list[TransitionLogEntry]:
        """Attempted transitions of ``task_id``, oldest first.

        Args:
            task_id: Task to look up
            limit: Return only the most recent ``limit`` entries
        """
        entries = list(self._history.get(task_id, ()))
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def prune_transition_history(self, live_task_ids: Collection[str]) -> int:
        """Forget the history of tasks that are no longer stored."""
        stale = [task_id for task_id in self._history if task_id not in live_task_ids]
        for task_id in stale:
            del self._history[task_id]
        return len(stale)

    # Helpers for subclasses

    async def update_progress(self, task_id: str, progress: int) -> None:
        """Set progress, clamped to 0..100."""
        clamped = max(0, min(100, int(progress)))
        await self.persistence.update_task(task_id, self.strategy_id, {"progress": clamped})

    async def mark_task_started(self, task_id: str) -> None:
        await self.persistence.update_task(
            task_id, self.strategy_id, {"started_at": self.clock.now_ms()}
        )

    async def mark_task_completed(self, task_id: str) -> None:
        await self.persistence.update_task(
            task_id,
            self.strategy_id,
            {"completed_at": self.clock.now_ms(), "progress": 100, "error": None},
        )

    async def mark_task_failed(self, task_id: str, error_message: str) -> None:
        await self.persistence.update_task(
            task_id,
            self.strategy_id,
            {"error": error_message, "last_attempt_at": self.clock.now_ms()},
        )

    @abstractmethod
    async def execute_task(self, task_id: str) -> None:
        """Run the stage logic for the task's current status."""

    async def handle_error(self, task_id: str, error: Exception) -> None:
        """Record the failure on the task.

        Strategies with retry semantics override this to drive their own
        failure transitions.
        """
        logger.error(
            f"Task {task_id} failed: {error}",
            task_type=self.strategy_id,
            error_type=type(error).__name__,
        )
        if await self.get_task(task_id) is not None:
            await self.mark_task_failed(task_id, str(error))
