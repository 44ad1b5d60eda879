"""Task lifecycle engine.

:class:`StateMachineEngine` owns the strategy registry and a task store. It
creates, transitions, executes, pauses, cancels and retries tasks by
delegating to the strategy registered for each task's type. Routine
problems such as an unknown task or a rejected transition are reported as
``False`` rather than raised.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from docsync.config.components import EngineConfig
from docsync.state_machine.models import EngineMetrics, Task, TransitionLogEntry
from docsync.state_machine.persistence import InMemoryStatePersistence
from docsync.state_machine.protocols import StatePersistence, TaskStrategy
from docsync.utils.async_utils import run_in_windows
from docsync.utils.clock import ClockProtocol
from docsync.utils.exceptions import (
    DocSyncError,
    StrategyAlreadyRegisteredError,
    StrategyNotFoundError,
    TaskAlreadyExistsError,
    TaskNotFoundError,
)
from docsync.utils.logging_utils import get_logger

logger = get_logger()

CANCEL_EVENT = "cancel"
RETRY_EVENT = "retry"
PAUSE_EVENT = "pause"
RESUME_EVENT = "resume"

# Tasks in this status are left alone by execute_task until resumed.
PAUSED_STATUS = "PAUSED"


class StateMachineEngine:
    """Generic task lifecycle manager.

    One long-lived engine instance owns its strategies and store; pass it by
    reference to the components that need it.
    """

    def __init__(
        self,
        persistence: StatePersistence | None = None,
        *,
        config: EngineConfig | None = None,
        clock: ClockProtocol | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            persistence: Task store; defaults to an in-memory store
            config: Engine settings
            clock: Clock for the default in-memory store
        """
        self.persistence: StatePersistence = (
            persistence if persistence is not None else InMemoryStatePersistence(clock)
        )
        self.config = config or EngineConfig()
        self._strategies: dict[str, TaskStrategy] = {}
        self._create_locks: dict[tuple[str, str], asyncio.Lock] = {}

    # Strategy registry

    def register_strategy(self, strategy: TaskStrategy) -> None:
        """Register the strategy for its task type.

        Raises:
            StrategyAlreadyRegisteredError: If the id is already taken
        """
        strategy_id = strategy.strategy_id
        if strategy_id in self._strategies:
            raise StrategyAlreadyRegisteredError(strategy_id)
        self._strategies[strategy_id] = strategy
        logger.info(f"Registered strategy '{strategy_id}'", subsystem="Engine")

    def get_strategy(self, task_type: str) -> TaskStrategy | None:
        return self._strategies.get(task_type)

    def get_registered_strategies(self) -> list[str]:
        return list(self._strategies)

    def _require_strategy(self, task_type: str) -> TaskStrategy:
        strategy = self._strategies.get(task_type)
        if strategy is None:
            raise StrategyNotFoundError(task_type, self.get_registered_strategies())
        return strategy

    def _create_lock(self, task_type: str, task_id: str) -> asyncio.Lock:
        return self._create_locks.setdefault((task_type, task_id), asyncio.Lock())

    # Task creation and lookup

    async def create_task(
        self,
        task_type: str,
        task_id: str,
        initial_context: Mapping[str, Any] | None = None,
    ) -> Task:
        """Create a new task.

        Raises:
            StrategyNotFoundError: If no strategy handles ``task_type``
            TaskAlreadyExistsError: If ``(task_type, task_id)`` already exists
        """
        strategy = self._require_strategy(task_type)
        async with self._create_lock(task_type, task_id):
            if await self.persistence.get_task(task_id, task_type) is not None:
                raise TaskAlreadyExistsError(task_type, task_id)
            task = await strategy.create_task(task_id, initial_context)

        logger.info(
            f"Created task {task_id}",
            subsystem="Engine",
            task_type=task_type,
            status=task.status,
        )
        return task

    async def get_or_create_task(
        self,
        task_type: str,
        task_id: str,
        initial_context: Mapping[str, Any] | None = None,
    ) -> Task:
        """Return the existing task for the key, creating it on first use."""
        strategy = self._require_strategy(task_type)
        async with self._create_lock(task_type, task_id):
            existing = await self.persistence.get_task(task_id, task_type)
            if existing is not None:
                return existing
            return await strategy.create_task(task_id, initial_context)

    async def get_task(self, task_id: str, *, task_type: str | None = None) -> Task | None:
        return await self.persistence.get_task(task_id, task_type)

    async def get_tasks_by_status(
        self, status: str, *, task_type: str | None = None
    ) -> list[Task]:
        return await self.persistence.get_tasks_by_status(status, task_type)

    async def get_tasks_by_type(self, task_type: str) -> list[Task]:
        return await self.persistence.get_tasks_by_type(task_type)

    # Transitions and execution

    async def transition_state(
        self,
        task_id: str,
        event: str,
        context: Mapping[str, Any] | None = None,
        *,
        task_type: str | None = None,
    ) -> bool:
        """Apply ``event`` to a task through its strategy.

        Returns ``False`` for a missing task, a missing strategy, a transition
        the strategy's table rejects, or any exception raised by the strategy.
        """
        task = await self.persistence.get_task(task_id, task_type)
        if task is None:
            logger.warning(f"Cannot transition unknown task {task_id}", subsystem="Engine")
            return False

        strategy = self._strategies.get(task.task_type)
        if strategy is None:
            logger.error(
                f"No strategy registered for task {task_id}",
                subsystem="Engine",
                task_type=task.task_type,
            )
            return False

        try:
            return await strategy.handle_transition(task.id, event, context)
        except Exception as e:
            logger.exception(
                f"Strategy failed while transitioning task {task_id}: {e}",
                subsystem="Engine",
                task_type=task.task_type,
                trigger=event,
            )
            return False

    async def execute_task(self, task_id: str, *, task_type: str | None = None) -> None:
        """Run the strategy's stage logic for the task's current status.

        Paused tasks are skipped. On failure the strategy's ``handle_error``
        is invoked and the original exception is re-raised.

        Raises:
            TaskNotFoundError: If the task does not exist
            StrategyNotFoundError: If no strategy handles the task's type
        """
        task = await self.persistence.get_task(task_id, task_type)
        if task is None:
            raise TaskNotFoundError(task_id, task_type)
        strategy = self._require_strategy(task.task_type)

        if task.status == PAUSED_STATUS:
            logger.info(
                f"Skipping paused task {task_id}",
                subsystem="Engine",
                task_type=task.task_type,
            )
            return

        try:
            await strategy.execute_task(task.id)
        except Exception as e:
            logger.error(
                f"Task {task_id} execution failed: {e}",
                subsystem="Engine",
                task_type=task.task_type,
                error_type=type(e).__name__,
            )
            await self._delegate_error(strategy, task, e)
            raise

    async def handle_task_error(
        self, task_id: str, error: Exception, *, task_type: str | None = None
    ) -> None:
        """Hand ``error`` to the strategy that owns the task.

        Errors reported for an unknown task or a task without a strategy are
        logged and dropped.
        """
        task = await self.persistence.get_task(task_id, task_type)
        if task is None:
            logger.warning(
                f"Dropping error for unknown task {task_id}: {error}",
                subsystem="Engine",
                error_type=type(error).__name__,
            )
            return
        strategy = self._strategies.get(task.task_type)
        if strategy is None:
            logger.warning(
                f"Dropping error for task {task_id}; no strategy registered",
                subsystem="Engine",
                task_type=task.task_type,
                error_type=type(error).__name__,
            )
            return
        await self._delegate_error(strategy, task, error)

    async def _delegate_error(self, strategy: TaskStrategy, task: Task, error: Exception) -> None:
        try:
            await strategy.handle_error(task.id, error)
        except Exception as handler_error:
            # Keep the original failure as the one the caller sees
            logger.exception(
                f"Error handler for task {task.id} raised: {handler_error}",
                subsystem="Engine",
                task_type=task.task_type,
            )

    async def cancel_task(self, task_id: str, *, task_type: str | None = None) -> bool:
        return await self.transition_state(task_id, CANCEL_EVENT, task_type=task_type)

    async def retry_task(self, task_id: str, *, task_type: str | None = None) -> bool:
        """Send the ``retry`` event and, if accepted, execute the task again.

        Returns ``False`` if the event is rejected or the execution fails.
        """
        if not await self.transition_state(task_id, RETRY_EVENT, task_type=task_type):
            return False
        return await self._execute_quietly(task_id, task_type, RETRY_EVENT)

    async def pause_task(self, task_id: str, *, task_type: str | None = None) -> bool:
        return await self.transition_state(task_id, PAUSE_EVENT, task_type=task_type)

    async def resume_task(self, task_id: str, *, task_type: str | None = None) -> bool:
        """Send the ``resume`` event and, if accepted, execute the task again.

        Returns ``False`` if the event is rejected or the execution fails.
        """
        if not await self.transition_state(task_id, RESUME_EVENT, task_type=task_type):
            return False
        return await self._execute_quietly(task_id, task_type, RESUME_EVENT)

    async def _execute_quietly(self, task_id: str, task_type: str | None, trigger: str) -> bool:
        try:
            await self.execute_task(task_id, task_type=task_type)
        except Exception as e:
            logger.error(
                f"Task {task_id} failed after '{trigger}': {e}",
                subsystem="Engine",
                task_type=task_type,
                trigger=trigger,
                error_type=type(e).__name__,
            )
            return False
        return True

    def get_transition_history(
        self,
        task_id: str,
        limit: int | None = None,
        *,
        task_type: str | None = None,
    ) -> list[TransitionLogEntry]:
        """Attempted transitions of a task, oldest first.

        Without ``task_type`` the histories of every strategy are merged.
        """
        if task_type is not None:
            strategies = [self._strategies[task_type]] if task_type in self._strategies else []
        else:
            strategies = list(self._strategies.values())

        entries = sorted(
            (e for s in strategies for e in s.get_transition_history(task_id)),
            key=lambda entry: entry.at,
        )
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    # Batch helpers

    async def create_tasks(
        self,
        task_type: str,
        task_ids: Sequence[str],
        context_factory: Callable[[str], Mapping[str, Any]] | None = None,
    ) -> list[Task]:
        """Create several tasks; ids that fail are logged and skipped."""
        created: list[Task] = []
        failures: dict[str, str] = {}

        for task_id in task_ids:
            context = context_factory(task_id) if context_factory else None
            try:
                created.append(await self.create_task(task_type, task_id, context))
            except DocSyncError as e:
                failures[task_id] = str(e)

        if failures:
            logger.error(
                f"Failed to create {len(failures)} of {len(task_ids)} tasks",
                subsystem="Engine",
                task_type=task_type,
                failures=failures,
            )
        return created

    async def execute_tasks(
        self,
        task_ids: Sequence[str],
        concurrency: int | None = None,
        *,
        task_type: str | None = None,
    ) -> dict[str, BaseException | None]:
        """Execute tasks in windows of ``concurrency``.

        Each window is awaited fully before the next one starts. Failures are
        logged and reported per task id; they never abort the batch.

        Returns:
            Mapping of task id to the exception it raised, or ``None``
        """
        window = concurrency or self.config.default_concurrency

        async def _execute(task_id: str) -> None:
            await self.execute_task(task_id, task_type=task_type)

        results = await run_in_windows(list(task_ids), _execute, window)
        outcome: dict[str, BaseException | None] = {}
        for task_id, result in zip(task_ids, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Batch execution of task {task_id} failed: {result}",
                    subsystem="Engine",
                )
                outcome[task_id] = result
            else:
                outcome[task_id] = None
        return outcome

    # Maintenance and statistics

    async def cleanup_expired_tasks(self, older_than_ms: int | None = None) -> int:
        """Delete terminal tasks whose last update predates the retention window.

        Transition histories and creation locks of tasks that are gone are
        dropped as well.
        """
        retention = self.config.task_retention_ms if older_than_ms is None else older_than_ms
        terminal = {
            strategy_id: strategy.terminal_statuses
            for strategy_id, strategy in self._strategies.items()
        }
        deleted = await self.persistence.cleanup_expired_tasks(retention, terminal)

        for strategy_id, strategy in self._strategies.items():
            live = {task.id for task in await self.persistence.get_tasks_by_type(strategy_id)}
            strategy.prune_transition_history(live)
        for key, lock in list(self._create_locks.items()):
            if not lock.locked():
                del self._create_locks[key]

        logger.info(
            f"Cleanup removed {deleted} expired tasks",
            subsystem="Engine",
            retention_ms=retention,
        )
        return deleted

    async def get_task_stats(self) -> dict[str, dict[str, int]]:
        """Count tasks per ``(task_type, status)`` from the store."""
        stats: dict[str, dict[str, int]] = {}
        for strategy_id in self._strategies:
            tasks = await self.persistence.get_tasks_by_type(strategy_id)
            stats[strategy_id] = dict(Counter(task.status for task in tasks))
        return stats

    async def get_global_metrics(self) -> EngineMetrics:
        """Aggregate counts and timings over every task of a registered type.

        ``average_execution_ms`` covers tasks with both ``started_at`` and
        ``completed_at`` set; ``retry_rate`` is the share of tasks retried at
        least once.
        """
        tasks: list[Task] = []
        for strategy_id in self._strategies:
            tasks.extend(await self.persistence.get_tasks_by_type(strategy_id))

        durations = [
            task.completed_at - task.started_at
            for task in tasks
            if task.started_at is not None and task.completed_at is not None
        ]
        retried = sum(1 for task in tasks if task.retries > 0)
        return EngineMetrics(
            total_tasks=len(tasks),
            tasks_by_status=dict(Counter(task.status for task in tasks)),
            tasks_by_type=dict(Counter(task.task_type for task in tasks)),
            average_execution_ms=sum(durations) / len(durations) if durations else 0.0,
            retry_rate=retried / len(tasks) if tasks else 0.0,
        )
