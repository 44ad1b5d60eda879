"""Document sync service.

:class:`DocumentSyncService` is the surface that HTTP routes and schedulers
call. It wires the error classifier, the retry scheduler, the task engine and
the document sync strategy together, and guarantees that at most one pipeline
run per document is in flight at a time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from docsync.config.main import DocSyncConfig
from docsync.state_machine.engine import StateMachineEngine
from docsync.state_machine.factory import create_state_persistence
from docsync.state_machine.models import TransitionLogEntry
from docsync.state_machine.protocols import StatePersistence
from docsync.sync.classifier import ErrorClassifier
from docsync.sync.models import DOCUMENT_SYNC_TASK_TYPE, SyncJob, SyncJobEvent, SyncJobStatus
from docsync.sync.protocols import EmbeddingProvider, MetadataRepo, Splitter, VectorRepo
from docsync.sync.retry import RetryScheduler, RetryStats
from docsync.sync.strategy import DocumentSyncStrategy
from docsync.utils.async_utils import run_in_windows
from docsync.utils.clock import ClockProtocol, SystemClock
from docsync.utils.logging_utils import get_logger

logger = get_logger()

TASK_TYPE = DOCUMENT_SYNC_TASK_TYPE


@dataclass(frozen=True)
class SyncStats:
    """Distribution of sync jobs at the time of the call."""

    total: int
    by_status: dict[str, int]

    @property
    def success_rate(self) -> float:
        """Share of finished jobs that reached SYNCED."""
        synced = self.by_status.get(SyncJobStatus.SYNCED.value, 0)
        finished = synced + self.by_status.get(SyncJobStatus.DEAD.value, 0)
        return synced / finished if finished else 0.0


class DocumentSyncService:
    """Drives documents into the vector index with bounded retries."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        metadata_repo: MetadataRepo,
        vector_repo: VectorRepo,
        embedding_provider: EmbeddingProvider,
        splitter: Splitter,
        config: DocSyncConfig | None = None,
        persistence: StatePersistence | None = None,
        classifier: ErrorClassifier | None = None,
        scheduler: RetryScheduler | None = None,
        clock: ClockProtocol | None = None,
        max_content_length: int | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            metadata_repo: Document and chunk metadata store
            vector_repo: Vector store
            embedding_provider: Embedding generator
            splitter: Text splitter
            config: Service configuration; defaults apply when omitted
            persistence: Task store; built from ``config.persistence`` if omitted
            classifier: Error classifier
            scheduler: Retry scheduler
            clock: Clock used for all timestamps
            max_content_length: Reject documents longer than this many characters
        """
        self.config = config or DocSyncConfig()
        self.clock = clock or SystemClock()
        self.persistence = (
            persistence
            if persistence is not None
            else create_state_persistence(self.config.persistence, self.clock)
        )
        self.classifier = (
            classifier if classifier is not None else ErrorClassifier(self.config.retry)
        )
        self.scheduler = (
            scheduler
            if scheduler is not None
            else RetryScheduler(self.classifier, clock=self.clock)
        )
        self.engine = StateMachineEngine(
            self.persistence, config=self.config.engine, clock=self.clock
        )
        self.strategy = DocumentSyncStrategy(
            self.persistence,
            metadata_repo=metadata_repo,
            vector_repo=vector_repo,
            embedding_provider=embedding_provider,
            splitter=splitter,
            classifier=self.classifier,
            scheduler=self.scheduler,
            retry_config=self.config.retry,
            max_content_length=max_content_length,
            clock=self.clock,
        )
        self.strategy.retry_executor = self._execute_retry
        self.engine.register_strategy(self.strategy)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, doc_id: str) -> asyncio.Lock:
        return self._locks.setdefault(doc_id, asyncio.Lock())

    # Pipeline entry points

    async def trigger_sync(self, doc_id: str) -> SyncJob | None:
        """Run the pipeline for ``doc_id`` and return the resulting job.

        Pipeline failures are absorbed: they are recorded on the job and
        handed to the retry machinery, never raised to the caller.
        """
        task = await self.engine.get_or_create_task(TASK_TYPE, doc_id, {"doc_id": doc_id})
        if task.status == SyncJobStatus.RETRYING.value:
            cancelled = self.scheduler.cancel_all_retries_for_doc(doc_id)
            if cancelled:
                logger.info(
                    f"Running {doc_id} now instead of waiting for {cancelled} scheduled retries",
                    doc_id=doc_id,
                )

        await self._run_pipeline(doc_id)
        return await self.get_sync_job_status(doc_id)

    async def sync_documents(
        self, doc_ids: Sequence[str], concurrency: int | None = None
    ) -> dict[str, SyncJob | None]:
        """Trigger several documents, ``concurrency`` at a time."""
        window = concurrency or self.config.engine.default_concurrency
        jobs = await run_in_windows(list(doc_ids), self.trigger_sync, window)
        return {
            doc_id: None if isinstance(job, BaseException) else job
            for doc_id, job in zip(doc_ids, jobs)
        }

    async def _run_pipeline(self, doc_id: str) -> bool:
        async with self._lock_for(doc_id):
            try:
                await self.engine.execute_task(doc_id, task_type=TASK_TYPE)
            except Exception as e:
                # The strategy has already recorded the failure and chosen retry or DEAD
                logger.warning(
                    f"Sync of {doc_id} did not complete: {e}",
                    doc_id=doc_id,
                    error_type=type(e).__name__,
                )
                return False

        job = await self.get_sync_job_status(doc_id)
        return job is not None and job.status is SyncJobStatus.SYNCED

    async def _execute_retry(self, doc_id: str) -> bool:
        job = await self.get_sync_job_status(doc_id)
        if job is None:
            logger.warning(f"Scheduled retry found no job for {doc_id}", doc_id=doc_id)
            return False
        if job.is_terminal:
            return job.status is SyncJobStatus.SYNCED
        return await self._run_pipeline(doc_id)

    async def resume_unfinished_jobs(self, concurrency: int | None = None) -> int:
        """Re-drive every non-terminal job, e.g. after a restart.

        Paused jobs and jobs that already have a pending retry in this process
        are left alone.

        Returns:
            Number of jobs resumed
        """
        pending = [
            job.doc_id
            for job in await self.get_all_sync_jobs()
            if not job.is_terminal
            and job.status is not SyncJobStatus.PAUSED
            and not self.scheduler.get_tasks_by_doc_id(job.doc_id)
        ]
        if not pending:
            return 0

        logger.info(f"Resuming {len(pending)} unfinished sync jobs")
        window = concurrency or self.config.engine.default_concurrency
        await run_in_windows(pending, self._run_pipeline, window)
        return len(pending)

    # Job queries and direct transitions

    async def get_or_create_job(self, doc_id: str) -> SyncJob:
        task = await self.engine.get_or_create_task(TASK_TYPE, doc_id, {"doc_id": doc_id})
        return SyncJob.from_task(task)

    async def get_sync_job_status(self, doc_id: str) -> SyncJob | None:
        task = await self.engine.get_task(doc_id, task_type=TASK_TYPE)
        return SyncJob.from_task(task) if task else None

    async def get_all_sync_jobs(self) -> list[SyncJob]:
        return [SyncJob.from_task(t) for t in await self.engine.get_tasks_by_type(TASK_TYPE)]

    async def get_sync_job_count_by_status(self, status: SyncJobStatus | str) -> int:
        value = status.value if isinstance(status, SyncJobStatus) else status
        return len(await self.engine.get_tasks_by_status(value, task_type=TASK_TYPE))

    async def get_stats(self) -> SyncStats:
        counts = (await self.engine.get_task_stats()).get(TASK_TYPE, {})
        by_status = {status.value: counts.get(status.value, 0) for status in SyncJobStatus}
        return SyncStats(total=sum(by_status.values()), by_status=by_status)

    async def transition_state(
        self,
        doc_id: str,
        event: SyncJobEvent | str,
        context: Mapping[str, Any] | None = None,
    ) -> bool:
        value = event.value if isinstance(event, SyncJobEvent) else event
        return await self.engine.transition_state(doc_id, value, context, task_type=TASK_TYPE)

    async def pause_sync(self, doc_id: str) -> SyncJob | None:
        """Park a job so that neither triggers nor retries run it.

        Waits for an in-flight pipeline run to finish and cancels pending
        retries. Jobs that are already finished stay as they are.
        """
        async with self._lock_for(doc_id):
            cancelled = self.scheduler.cancel_all_retries_for_doc(doc_id)
            if await self.engine.pause_task(doc_id, task_type=TASK_TYPE):
                logger.info(
                    f"Paused sync job {doc_id}",
                    doc_id=doc_id,
                    cancelled_retries=cancelled,
                )
        return await self.get_sync_job_status(doc_id)

    async def resume_sync(self, doc_id: str) -> SyncJob | None:
        """Resume a paused job and run its pipeline from the split stage."""
        async with self._lock_for(doc_id):
            if not await self.engine.resume_task(doc_id, task_type=TASK_TYPE):
                logger.warning(f"Sync job {doc_id} did not complete after resume", doc_id=doc_id)
        return await self.get_sync_job_status(doc_id)

    def get_job_history(self, doc_id: str, limit: int | None = None) -> list[TransitionLogEntry]:
        """Attempted transitions of the job, oldest first."""
        return self.engine.get_transition_history(doc_id, limit, task_type=TASK_TYPE)

    async def can_retry(self, doc_id: str) -> bool:
        task = await self.engine.get_task(doc_id, task_type=TASK_TYPE)
        return task is not None and self.strategy.can_retry(task)

    async def should_mark_as_dead(self, doc_id: str) -> bool:
        task = await self.engine.get_task(doc_id, task_type=TASK_TYPE)
        return task is not None and self.strategy.should_mark_as_dead(task)

    # Retries and maintenance

    def get_retry_stats(self) -> RetryStats:
        return self.scheduler.get_retry_stats()

    def get_active_retry_count(self) -> int:
        return self.scheduler.get_active_task_count()

    def cancel_all_retries_for_doc(self, doc_id: str) -> int:
        return self.scheduler.cancel_all_retries_for_doc(doc_id)

    async def _is_finished(self, doc_id: str) -> bool:
        job = await self.get_sync_job_status(doc_id)
        return job is None or job.is_terminal

    async def cleanup_completed_jobs(self, older_than_ms: int | None = None) -> int:
        """Remove expired terminal jobs and stale retry bookkeeping.

        Returns:
            Number of job records deleted
        """
        removed = await self.engine.cleanup_expired_tasks(older_than_ms)
        await self.scheduler.cleanup_completed_tasks(self._is_finished)

        for doc_id, lock in list(self._locks.items()):
            if not lock.locked() and await self._is_finished(doc_id):
                self._locks.pop(doc_id, None)
        return removed

    async def shutdown(self) -> None:
        """Cancel pending retries and release the task store."""
        await self.scheduler.shutdown()
        close = getattr(self.persistence, "close", None)
        if callable(close):
            close()
