"""Retry scheduling for failed document sync jobs.

:class:`RetryScheduler` arms one cancellable asyncio timer per pending retry.
When the delay elapses the timer invokes the supplied async callback, which
re-enters the pipeline. Cancelling a retry both cancels the timer task and
flags the entry, so a callback whose delay has already elapsed still does not
run once it has been cancelled.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from tenacity import RetryCallState, wait_exponential

from docsync.sync.classifier import ErrorCategory, ErrorClassifier, RetryStrategy
from docsync.utils.clock import ClockProtocol, SystemClock
from docsync.utils.logging_utils import get_logger

logger = get_logger()

RetryCallback = Callable[[], Awaitable[Any]]
TerminalPredicate = Callable[[str], Awaitable[bool]]


def compute_delay_ms(strategy: RetryStrategy, retry_count: int) -> int:
    """Backoff delay for the retry following ``retry_count`` earlier retries.

    ``min(base_delay_ms * 2 ** retry_count, max_delay_ms)``, evaluated with
    tenacity's exponential wait policy.
    """
    wait = wait_exponential(
        multiplier=strategy.base_delay_ms, exp_base=2, max=strategy.max_delay_ms
    )
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    state.attempt_number = max(0, retry_count) + 1
    return int(wait(state))


@dataclass
class RetryTask:
    """A pending delayed retry."""

    id: str
    task_id: str
    attempt: int
    category: ErrorCategory
    error_message: str
    scheduled_at: int
    run_at: int
    strategy: RetryStrategy
    cancelled: bool = False
    _timer: asyncio.Task[None] | None = field(default=None, repr=False)

    def cancel(self) -> bool:
        """Cancel the retry; ``False`` if it was already cancelled."""
        if self.cancelled:
            return False
        self.cancelled = True
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        return True


@dataclass(frozen=True)
class RetryStats:
    """Snapshot of scheduler counters."""

    total_scheduled: int
    active: int
    succeeded: int
    failed: int
    cancelled: int
    average_retry_time_ms: float
    last_retry_at: int | None
    scheduled_by_category: dict[str, int]
    succeeded_by_category: dict[str, int]

    @property
    def success_rate(self) -> float:
        finished = self.succeeded + self.failed
        return self.succeeded / finished if finished else 0.0


class RetryScheduler:
    """Schedules, tracks and cancels delayed re-invocations of a task."""

    def __init__(
        self,
        classifier: ErrorClassifier | None = None,
        *,
        clock: ClockProtocol | None = None,
    ) -> None:
        self._classifier = classifier if classifier is not None else ErrorClassifier()
        self._clock = clock or SystemClock()
        self._tasks: dict[str, RetryTask] = {}
        self._ids = itertools.count(1)

        self._total_scheduled = 0
        self._succeeded = 0
        self._failed = 0
        self._cancelled = 0
        self._total_retry_time_ms = 0
        self._last_retry_at: int | None = None
        self._scheduled_by_category: Counter[str] = Counter()
        self._succeeded_by_category: Counter[str] = Counter()

    def schedule_retry(
        self,
        task_id: str,
        error: BaseException | str,
        category: ErrorCategory,
        current_retry_count: int,
        strategy: RetryStrategy,
        callback: RetryCallback,
    ) -> str:
        """Arm a timer that runs ``callback`` after the backoff delay.

        Must be called from a running event loop. Returns immediately.

        Args:
            task_id: Task the retry belongs to
            error: The failure that triggered the retry
            category: Classified category of ``error``
            current_retry_count: Retries already performed for the task
            strategy: Backoff policy
            callback: Coroutine function re-running the task

        Returns:
            The retry id
        """
        delay_ms = compute_delay_ms(strategy, current_retry_count)
        now = self._clock.now_ms()
        retry_id = f"retry-{task_id}-{next(self._ids)}"
        retry_task = RetryTask(
            id=retry_id,
            task_id=task_id,
            attempt=current_retry_count + 1,
            category=category,
            error_message=str(error),
            scheduled_at=now,
            run_at=now + delay_ms,
            strategy=strategy,
        )
        self._tasks[retry_id] = retry_task
        retry_task._timer = asyncio.get_running_loop().create_task(
            self._fire(retry_task, delay_ms, callback), name=retry_id
        )

        self._total_scheduled += 1
        self._scheduled_by_category[category.value] += 1

        logger.info(
            f"Scheduled retry {retry_task.attempt} for {task_id} in {delay_ms}ms",
            subsystem="Retry",
            task_id=task_id,
            category=category.value,
            retry_id=retry_id,
        )
        return retry_id

    async def _fire(self, retry_task: RetryTask, delay_ms: int, callback: RetryCallback) -> None:
        await asyncio.sleep(delay_ms / 1000)

        # Cancellation may land after the sleep finished but before this point
        if retry_task.cancelled or self._tasks.get(retry_task.id) is not retry_task:
            return
        del self._tasks[retry_task.id]

        started = self._clock.now_ms()
        self._last_retry_at = started
        try:
            result = await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            category = self._classifier.classify(e)
            self._record_outcome(retry_task, started, succeeded=False)
            logger.error(
                f"Retry callback for {retry_task.task_id} raised: {e}",
                subsystem="Retry",
                task_id=retry_task.task_id,
                category=category.value,
                retry_id=retry_task.id,
            )
            return

        succeeded = result is not False
        self._record_outcome(retry_task, started, succeeded=succeeded)
        logger.info(
            f"Retry {retry_task.attempt} for {retry_task.task_id} "
            f"{'succeeded' if succeeded else 'failed'}",
            subsystem="Retry",
            task_id=retry_task.task_id,
            retry_id=retry_task.id,
        )

    def _record_outcome(self, retry_task: RetryTask, started: int, *, succeeded: bool) -> None:
        self._total_retry_time_ms += max(0, self._clock.now_ms() - started)
        if succeeded:
            self._succeeded += 1
            self._succeeded_by_category[retry_task.category.value] += 1
        else:
            self._failed += 1

    def cancel_retry(self, retry_id: str) -> bool:
        """Cancel one pending retry by id."""
        retry_task = self._tasks.pop(retry_id, None)
        if retry_task is None or not retry_task.cancel():
            return False
        self._cancelled += 1
        return True

    def cancel_all_retries_for_doc(self, task_id: str) -> int:
        """Cancel every pending retry of ``task_id`` and return how many were cancelled."""
        count = sum(
            1
            for retry_id in [r.id for r in self._tasks.values() if r.task_id == task_id]
            if self.cancel_retry(retry_id)
        )
        if count:
            logger.info(
                f"Cancelled {count} pending retries for {task_id}",
                subsystem="Retry",
                task_id=task_id,
            )
        return count

    def get_tasks_by_doc_id(self, task_id: str) -> list[RetryTask]:
        return [r for r in self._tasks.values() if r.task_id == task_id]

    def get_active_task_count(self) -> int:
        return len(self._tasks)

    def get_retry_stats(self) -> RetryStats:
        finished = self._succeeded + self._failed
        return RetryStats(
            total_scheduled=self._total_scheduled,
            active=len(self._tasks),
            succeeded=self._succeeded,
            failed=self._failed,
            cancelled=self._cancelled,
            average_retry_time_ms=self._total_retry_time_ms / finished if finished else 0.0,
            last_retry_at=self._last_retry_at,
            scheduled_by_category=dict(self._scheduled_by_category),
            succeeded_by_category=dict(self._succeeded_by_category),
        )

    async def cleanup_completed_tasks(self, is_terminal: TerminalPredicate) -> int:
        """Drop pending retries whose owning task has reached a terminal status."""
        stale = [
            retry_id
            for retry_id, retry_task in list(self._tasks.items())
            if await is_terminal(retry_task.task_id)
        ]
        removed = sum(1 for retry_id in stale if self.cancel_retry(retry_id))
        if removed:
            logger.info(f"Dropped {removed} retries of finished tasks", subsystem="Retry")
        return removed

    async def shutdown(self) -> None:
        """Cancel every pending retry and wait for the timers to unwind."""
        timers = [r._timer for r in self._tasks.values() if r._timer is not None]
        for retry_id in list(self._tasks):
            self.cancel_retry(retry_id)
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
