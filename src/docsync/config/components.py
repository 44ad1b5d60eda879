"""Component-specific configuration dataclasses.

Each component of docsync takes its own small, immutable configuration object
so that it can be constructed and tested in isolation.
"""

from dataclasses import dataclass

DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for the task state-machine engine.

    Attributes:
        default_concurrency: Window size used by batch execution when the
            caller does not pass one
        task_retention_ms: How long a terminal task is kept before the
            cleanup sweep may delete it
    """

    default_concurrency: int = 5
    task_retention_ms: int = DAY_MS


@dataclass(frozen=True)
class RetryConfig:
    """Fallback retry policy for errors that have no category-specific one.

    Attributes:
        default_max_retries: Retry budget for unclassified errors
        default_base_delay_ms: Backoff base delay in milliseconds
        default_max_delay_ms: Upper bound on a single backoff delay
    """

    default_max_retries: int = 3
    default_base_delay_ms: int = 1000
    default_max_delay_ms: int = 60_000


@dataclass(frozen=True)
class PersistenceConfig:
    """Configuration for task state persistence.

    Attributes:
        backend: ``memory`` for the in-process store or ``sqlalchemy`` for the
            durable table-backed store
        database_url: SQLAlchemy URL used by the durable store
        echo_sql: Log every SQL statement (debugging only)
    """

    backend: str = "memory"
    database_url: str = "sqlite:///.docsync/state.db"
    echo_sql: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    """Configuration for structured logging."""

    level: str = "INFO"
    json_logs: bool = False
    log_file: str | None = None


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for splitting document text into chunks.

    Attributes:
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters shared between neighbouring chunks
        heading_levels: Markdown heading depths tracked in title chains
    """

    chunk_size: int = 1000
    chunk_overlap: int = 200
    heading_levels: int = 3


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding generation.

    Attributes:
        batch_size: Number of texts sent to the provider per request
    """

    batch_size: int = 64
