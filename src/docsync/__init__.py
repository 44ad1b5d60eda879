"""docsync: per-document ingestion pipeline with bounded retries.

Documents are split, embedded and upserted into a vector index by a task
state machine. Failures are classified, retried with exponential backoff and
dead-lettered when retrying cannot help.
"""

from docsync.config import DocSyncConfig
from docsync.state_machine import (
    InMemoryStatePersistence,
    SQLAlchemyStatePersistence,
    StateMachineEngine,
    Task,
)
from docsync.sync import (
    DocumentSyncService,
    DocumentSyncStrategy,
    ErrorCategory,
    ErrorClassifier,
    RetryScheduler,
    SyncJob,
    SyncJobEvent,
    SyncJobStatus,
)

__version__ = "0.1.0"

__all__ = [
    "DocSyncConfig",
    "DocumentSyncService",
    "DocumentSyncStrategy",
    "ErrorCategory",
    "ErrorClassifier",
    "InMemoryStatePersistence",
    "RetryScheduler",
    "SQLAlchemyStatePersistence",
    "StateMachineEngine",
    "SyncJob",
    "SyncJobEvent",
    "SyncJobStatus",
    "Task",
    "__version__",
]
