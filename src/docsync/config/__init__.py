"""Configuration package for docsync.

This package provides the component configuration classes and the aggregate
:class:`DocSyncConfig`.
"""

from .components import (
    DAY_MS,
    ChunkingConfig,
    EmbeddingConfig,
    EngineConfig,
    LoggingConfig,
    PersistenceConfig,
    RetryConfig,
)
from .main import DocSyncConfig

__all__ = [
    "DAY_MS",
    "ChunkingConfig",
    "DocSyncConfig",
    "EmbeddingConfig",
    "EngineConfig",
    "LoggingConfig",
    "PersistenceConfig",
    "RetryConfig",
]
