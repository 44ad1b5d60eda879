"""Document sync strategy.

Drives one document through split, embed and sync. Each stage commits
independently and emits its event on success. Any exception aborts the run;
:meth:`DocumentSyncStrategy.handle_error` then classifies the failure, moves
the job to FAILED and either schedules a retry (RETRYING) or dead-letters it
(DEAD). A retried job always re-runs the whole pipeline from the split stage.
"""

from __future__ import annotations

import functools
import hashlib
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, ClassVar

from docsync.config.components import RetryConfig
from docsync.state_machine.models import Task
from docsync.state_machine.protocols import StatePersistence
from docsync.state_machine.strategy import BaseStrategy
from docsync.sync.classifier import ErrorCategory, ErrorClassifier
from docsync.sync.models import (
    DOCUMENT_SYNC_TASK_TYPE,
    TERMINAL_STATUSES,
    SyncJobEvent,
    SyncJobStatus,
    next_status,
)
from docsync.sync.protocols import (
    Doc,
    EmbeddingProvider,
    MetadataRepo,
    Point,
    Splitter,
    VectorRepo,
)
from docsync.sync.retry import RetryScheduler
from docsync.utils.clock import ClockProtocol
from docsync.utils.exceptions import (
    DocumentCorruptedError,
    DocumentNotFoundError,
    DocumentTooLargeError,
    EmbeddingCountMismatchError,
    StateMachineError,
)
from docsync.utils.logging_utils import get_logger

logger = get_logger()

RetryExecutor = Callable[[str], Awaitable[bool]]

# Stage that runs next from each status; used to label failures.
_STAGE_BY_STATUS = {
    SyncJobStatus.NEW.value: "split",
    SyncJobStatus.RETRYING.value: "split",
    SyncJobStatus.SPLIT_OK.value: "embed",
    SyncJobStatus.EMBED_OK.value: "sync",
}

_PROGRESS_BY_EVENT = {
    SyncJobEvent.CHUNKS_SAVED.value: 33,
    SyncJobEvent.VECTORS_INSERTED.value: 66,
    SyncJobEvent.META_UPDATED.value: 100,
}


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class DocumentSyncStrategy(BaseStrategy):
    """Strategy for ``document_sync`` tasks; the task id is the document id."""

    strategy_id: ClassVar[str] = DOCUMENT_SYNC_TASK_TYPE
    initial_status: ClassVar[str] = SyncJobStatus.NEW.value

    def __init__(  # noqa: PLR0913
        self,
        persistence: StatePersistence,
        *,
        metadata_repo: MetadataRepo,
        vector_repo: VectorRepo,
        embedding_provider: EmbeddingProvider,
        splitter: Splitter,
        classifier: ErrorClassifier | None = None,
        scheduler: RetryScheduler | None = None,
        retry_config: RetryConfig | None = None,
        max_content_length: int | None = None,
        clock: ClockProtocol | None = None,
    ) -> None:
        """Initialize the strategy.

        Args:
            persistence: Task store shared with the engine
            metadata_repo: Document and chunk metadata store
            vector_repo: Vector store
            embedding_provider: Embedding generator
            splitter: Text splitter
            classifier: Error classifier; a default one is created if omitted
            scheduler: Retry scheduler; a default one is created if omitted
            retry_config: Fallback retry budget for unclassified failures
            max_content_length: Reject documents longer than this many characters
            clock: Clock for task timestamps
        """
        super().__init__(persistence, clock=clock)
        self.metadata_repo = metadata_repo
        self.vector_repo = vector_repo
        self.embedding_provider = embedding_provider
        self.splitter = splitter
        self.classifier = (
            classifier if classifier is not None else ErrorClassifier(retry_config)
        )
        self.scheduler = (
            scheduler
            if scheduler is not None
            else RetryScheduler(self.classifier, clock=clock)
        )
        self.retry_config = retry_config or RetryConfig()
        self.max_content_length = max_content_length
        self.retry_executor: RetryExecutor = self._run_retry

    # Transition table

    def resolve_transition(self, status: str, event: str) -> str | None:
        return next_status(status, event)

    @property
    def statuses(self) -> frozenset[str]:
        return frozenset(s.value for s in SyncJobStatus)

    @property
    def terminal_statuses(self) -> frozenset[str]:
        return TERMINAL_STATUSES

    def transition_effects(
        self,
        task: Task,
        event: str,
        target: str,
        context: Mapping[str, Any],
    ) -> dict[str, Any]:
        now = self.clock.now_ms()
        if event in _PROGRESS_BY_EVENT:
            effects: dict[str, Any] = {"error": None, "progress": _PROGRESS_BY_EVENT[event]}
            if target == SyncJobStatus.SYNCED.value:
                effects["completed_at"] = now
            return effects
        if event == SyncJobEvent.ERROR.value:
            return {"error": context.get("error_message") or task.error}
        if event == SyncJobEvent.RETRY.value:
            return {"retries": task.retries + 1, "last_attempt_at": now, "progress": 0}
        if event == SyncJobEvent.RETRIES_EXCEEDED.value:
            return {"completed_at": now}
        if event == SyncJobEvent.RESUME.value:
            return {"last_attempt_at": now, "progress": 0}
        return {}

    async def _advance(
        self, doc_id: str, event: SyncJobEvent, context: Mapping[str, Any] | None = None
    ) -> None:
        result = await self.apply_event(doc_id, event.value, context)
        if not result.success:
            raise StateMachineError(
                f"Sync job {doc_id} rejected '{event.value}': {result.error_message}",
                error_code="TRANSITION_REJECTED",
                context={"doc_id": doc_id, "status": result.previous_status},
            )

    # Retry budget

    def retry_budget(self, task: Task) -> int:
        """Maximum retries for the category of the task's last failure."""
        category = task.context.get("error_category")
        if category:
            try:
                return self.classifier.strategy_for(ErrorCategory(category)).max_retries
            except ValueError:
                logger.warning(f"Unknown error category '{category}' on {task.id}")
        return self.retry_config.default_max_retries

    def can_retry(self, task: Task) -> bool:
        if task.status in TERMINAL_STATUSES:
            return False
        return task.retries < self.retry_budget(task)

    def should_mark_as_dead(self, task: Task) -> bool:
        in_failure = task.status in (SyncJobStatus.FAILED.value, SyncJobStatus.RETRYING.value)
        return in_failure and not self.can_retry(task)

    # Pipeline

    async def execute_task(self, task_id: str) -> None:
        """Run the pipeline from the job's current status."""
        task = await self.require_task(task_id)
        status = task.status

        if status in TERMINAL_STATUSES:
            logger.debug(f"Sync job {task_id} already {status}", doc_id=task_id)
            return
        if status == SyncJobStatus.PAUSED.value:
            logger.info(f"Sync job {task_id} is paused", doc_id=task_id)
            return

        if status == SyncJobStatus.FAILED.value:
            if not self.can_retry(task):
                await self._advance(task_id, SyncJobEvent.RETRIES_EXCEEDED)
                logger.warning(f"Sync job {task_id} has no retries left", doc_id=task_id)
                return
            await self._advance(task_id, SyncJobEvent.RETRY)
            status = SyncJobStatus.RETRYING.value

        await self.mark_task_started(task_id)
        logger.info(f"Syncing document {task_id} from {status}", doc_id=task_id)

        doc = await self._load_doc(task_id)
        if status in (SyncJobStatus.NEW.value, SyncJobStatus.RETRYING.value):
            if not (doc.content or "").strip():
                await self._finish_empty(doc)
                return
            await self._split(doc)
            status = SyncJobStatus.SPLIT_OK.value

        if status == SyncJobStatus.SPLIT_OK.value:
            await self._embed(doc)

        await self._mark_synced(doc)

    async def _load_doc(self, doc_id: str) -> Doc:
        doc = await self.metadata_repo.get_doc(doc_id)
        if doc is None:
            raise DocumentNotFoundError(doc_id)
        content = doc.content or ""
        if self.max_content_length is not None and len(content) > self.max_content_length:
            raise DocumentTooLargeError(doc_id, len(content), self.max_content_length)
        return doc

    async def _split(self, doc: Doc) -> None:
        chunks = await self.splitter.split(doc.content or "", name=doc.name)
        await self.metadata_repo.add_chunks(doc.id, chunks)
        await self._advance(
            doc.id,
            SyncJobEvent.CHUNKS_SAVED,
            {"collection_id": doc.collection_id, "doc_name": doc.name, "chunk_count": len(chunks)},
        )
        logger.debug(f"Saved {len(chunks)} chunks for {doc.id}", doc_id=doc.id, stage="split")

    async def _finish_empty(self, doc: Doc) -> None:
        logger.info(f"Document {doc.id} has no content; marking synced", doc_id=doc.id)
        await self._advance(
            doc.id,
            SyncJobEvent.CHUNKS_SAVED,
            {"collection_id": doc.collection_id, "doc_name": doc.name, "chunk_count": 0},
        )
        await self._advance(doc.id, SyncJobEvent.VECTORS_INSERTED)
        await self._mark_synced(doc)

    async def _embed(self, doc: Doc) -> None:
        metas = sorted(
            await self.metadata_repo.get_chunk_metas_by_doc_id(doc.id),
            key=lambda meta: meta.chunk_index,
        )
        if metas:
            texts_by_id = await self.metadata_repo.get_chunk_texts([m.point_id for m in metas])
            missing = [m.point_id for m in metas if m.point_id not in texts_by_id]
            if missing:
                raise DocumentCorruptedError(doc.id, f"chunk text missing for {', '.join(missing)}")
            texts = [texts_by_id[m.point_id] for m in metas]

            vectors = await self.embedding_provider.generate(texts)
            if len(vectors) != len(texts):
                raise EmbeddingCountMismatchError(doc.id, len(texts), len(vectors))

            points = [
                Point(
                    id=meta.point_id,
                    vector=list(vector),
                    payload={
                        "doc_id": doc.id,
                        "collection_id": doc.collection_id,
                        "chunk_index": meta.chunk_index,
                        "content": text,
                        "content_hash": meta.content_hash,
                        "title_chain": meta.title_chain,
                    },
                )
                for meta, text, vector in zip(metas, texts, vectors)
            ]
            await self.vector_repo.upsert_collection(doc.collection_id, points)

        await self._advance(doc.id, SyncJobEvent.VECTORS_INSERTED)
        logger.debug(f"Upserted {len(metas)} vectors for {doc.id}", doc_id=doc.id, stage="embed")

    async def _mark_synced(self, doc: Doc) -> None:
        await self.metadata_repo.mark_doc_as_synced(doc.id)
        await self._advance(doc.id, SyncJobEvent.META_UPDATED)
        logger.info(f"Document {doc.id} synced", doc_id=doc.id, stage="sync")

    # Failure handling

    async def handle_error(self, task_id: str, error: Exception) -> None:
        """Classify ``error``, move the job to FAILED, then retry or dead-letter it."""
        task = await self.get_task(task_id)
        if task is None:
            logger.error(f"Sync failed for unknown job {task_id}: {error}", doc_id=task_id)
            return
        if task.status in TERMINAL_STATUSES:
            return

        classification = self.classifier.classify_error(error)
        stage = _STAGE_BY_STATUS.get(task.status, "retry")
        logger.error(
            f"Sync of {task_id} failed during {stage}: {error}",
            doc_id=task_id,
            stage=stage,
            category=classification.category.value,
            retries=task.retries,
            temporary=classification.is_temporary,
        )

        failure_context = {
            "error_message": classification.message,
            "error_category": classification.category.value,
            "error_stage": stage,
        }
        if task.status == SyncJobStatus.FAILED.value:
            task = await self.persistence.update_task(
                task_id,
                self.strategy_id,
                {"error": classification.message, "context": {**task.context, **failure_context}},
            )
        else:
            if not await self.handle_transition(task_id, SyncJobEvent.ERROR.value, failure_context):
                return
            task = await self.require_task(task_id)

        if not classification.is_temporary or not self.can_retry(task):
            await self.handle_transition(task_id, SyncJobEvent.RETRIES_EXCEEDED.value)
            logger.warning(
                f"Document {task_id} moved to DEAD after {task.retries} retries",
                doc_id=task_id,
                category=classification.category.value,
            )
            return

        retry_count = task.retries
        if not await self.handle_transition(task_id, SyncJobEvent.RETRY.value):
            return

        self.scheduler.schedule_retry(
            task_id,
            error,
            classification.category,
            retry_count,
            classification.retry_strategy,
            functools.partial(self.retry_executor, task_id),
        )

    async def _run_retry(self, task_id: str) -> bool:
        """Default retry executor: re-run the pipeline and report success."""
        try:
            await self.execute_task(task_id)
        except Exception as e:
            await self.handle_error(task_id, e)
            return False
        task = await self.get_task(task_id)
        return task is not None and task.status == SyncJobStatus.SYNCED.value
