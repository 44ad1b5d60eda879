"""Document sync pipeline.

A document moves NEW -> SPLIT_OK -> EMBED_OK -> SYNCED. Failures move it to
FAILED and from there either to RETRYING (a retry is scheduled with
exponential backoff) or to DEAD when the failure is permanent or the retry
budget is spent.
"""

from docsync.sync.classifier import (
    ErrorCategory,
    ErrorClassification,
    ErrorClassifier,
    ErrorType,
    RetryStrategy,
)
from docsync.sync.models import (
    DOCUMENT_SYNC_TASK_TYPE,
    TERMINAL_STATUSES,
    SyncJob,
    SyncJobEvent,
    SyncJobMachine,
    SyncJobStatus,
)
from docsync.sync.protocols import (
    ChunkMeta,
    Doc,
    DocumentChunk,
    EmbeddingProvider,
    MetadataRepo,
    Point,
    Splitter,
    VectorRepo,
)
from docsync.sync.retry import RetryScheduler, RetryStats, RetryTask
from docsync.sync.service import DocumentSyncService, SyncStats
from docsync.sync.strategy import DocumentSyncStrategy

__all__ = [
    "DOCUMENT_SYNC_TASK_TYPE",
    "TERMINAL_STATUSES",
    "ChunkMeta",
    "Doc",
    "DocumentChunk",
    "DocumentSyncService",
    "DocumentSyncStrategy",
    "EmbeddingProvider",
    "ErrorCategory",
    "ErrorClassification",
    "ErrorClassifier",
    "ErrorType",
    "MetadataRepo",
    "Point",
    "RetryScheduler",
    "RetryStats",
    "RetryStrategy",
    "RetryTask",
    "Splitter",
    "SyncJob",
    "SyncJobEvent",
    "SyncJobMachine",
    "SyncJobStatus",
    "SyncStats",
    "VectorRepo",
]
