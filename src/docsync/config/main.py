"""Top-level configuration for docsync."""

import os
from dataclasses import dataclass, field

from docsync.config.components import (
    ChunkingConfig,
    EmbeddingConfig,
    EngineConfig,
    LoggingConfig,
    PersistenceConfig,
    RetryConfig,
)
from docsync.utils.exceptions import InvalidConfigurationError

PERSISTENCE_BACKENDS = ("memory", "sqlalchemy")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfigurationError(name, raw, "an integer") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class DocSyncConfig:
    """Configuration for the document sync service.

    This is an immutable aggregate of the component configurations. Use
    :meth:`from_env` to build one from ``DOCSYNC_*`` environment variables.

    Attributes:
        engine: Task engine settings
        retry: Fallback retry policy
        persistence: Task store settings
        logging: Logging settings
        chunking: Text splitting settings
        embedding: Embedding request settings
    """

    engine: EngineConfig = field(default_factory=EngineConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)

    def __post_init__(self) -> None:
        """Validate cross-field constraints."""
        if self.persistence.backend not in PERSISTENCE_BACKENDS:
            raise InvalidConfigurationError(
                "persistence.backend",
                self.persistence.backend,
                f"one of {', '.join(PERSISTENCE_BACKENDS)}",
            )
        if self.chunking.chunk_overlap >= self.chunking.chunk_size:
            raise InvalidConfigurationError(
                "chunking.chunk_overlap",
                self.chunking.chunk_overlap,
                f"less than chunking.chunk_size ({self.chunking.chunk_size})",
            )
        if self.engine.default_concurrency < 1:
            raise InvalidConfigurationError(
                "engine.default_concurrency",
                self.engine.default_concurrency,
                "a positive integer",
            )
        if self.retry.default_base_delay_ms > self.retry.default_max_delay_ms:
            raise InvalidConfigurationError(
                "retry.default_base_delay_ms",
                self.retry.default_base_delay_ms,
                f"at most retry.default_max_delay_ms ({self.retry.default_max_delay_ms})",
            )

    @classmethod
    def from_env(cls) -> "DocSyncConfig":
        """Build a configuration from ``DOCSYNC_*`` environment variables."""
        engine_defaults = EngineConfig()
        retry_defaults = RetryConfig()
        persistence_defaults = PersistenceConfig()
        logging_defaults = LoggingConfig()

        return cls(
            engine=EngineConfig(
                default_concurrency=_env_int(
                    "DOCSYNC_CONCURRENCY", engine_defaults.default_concurrency
                ),
                task_retention_ms=_env_int(
                    "DOCSYNC_TASK_RETENTION_MS", engine_defaults.task_retention_ms
                ),
            ),
            retry=RetryConfig(
                default_max_retries=_env_int(
                    "DOCSYNC_MAX_RETRIES", retry_defaults.default_max_retries
                ),
                default_base_delay_ms=_env_int(
                    "DOCSYNC_RETRY_BASE_DELAY_MS", retry_defaults.default_base_delay_ms
                ),
                default_max_delay_ms=_env_int(
                    "DOCSYNC_RETRY_MAX_DELAY_MS", retry_defaults.default_max_delay_ms
                ),
            ),
            persistence=PersistenceConfig(
                backend=os.getenv("DOCSYNC_PERSISTENCE", persistence_defaults.backend),
                database_url=os.getenv(
                    "DOCSYNC_DATABASE_URL", persistence_defaults.database_url
                ),
                echo_sql=_env_bool("DOCSYNC_ECHO_SQL", persistence_defaults.echo_sql),
            ),
            logging=LoggingConfig(
                level=os.getenv("DOCSYNC_LOG_LEVEL", logging_defaults.level).upper(),
                json_logs=_env_bool("DOCSYNC_JSON_LOGS", logging_defaults.json_logs),
                log_file=os.getenv("DOCSYNC_LOG_FILE") or None,
            ),
            chunking=ChunkingConfig(
                chunk_size=_env_int("DOCSYNC_CHUNK_SIZE", ChunkingConfig.chunk_size),
                chunk_overlap=_env_int("DOCSYNC_CHUNK_OVERLAP", ChunkingConfig.chunk_overlap),
            ),
            embedding=EmbeddingConfig(
                batch_size=_env_int("DOCSYNC_EMBEDDING_BATCH_SIZE", EmbeddingConfig.batch_size),
            ),
        )
