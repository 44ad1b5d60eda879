"""Unit tests for component configuration dataclasses."""

from dataclasses import FrozenInstanceError

import pytest

from docsync.config.components import (
    DAY_MS,
    ChunkingConfig,
    EmbeddingConfig,
    EngineConfig,
    LoggingConfig,
    PersistenceConfig,
    RetryConfig,
)


class TestEngineConfig:
    """Test EngineConfig dataclass."""

    def test_default_values(self):
        config = EngineConfig()

        assert config.default_concurrency == 5
        assert config.task_retention_ms == DAY_MS == 86_400_000

    def test_immutable(self):
        config = EngineConfig()

        with pytest.raises(FrozenInstanceError):
            config.default_concurrency = 10


class TestRetryConfig:
    """Test RetryConfig dataclass."""

    def test_default_values(self):
        config = RetryConfig()

        assert config.default_max_retries == 3
        assert config.default_base_delay_ms == 1000
        assert config.default_max_delay_ms == 60_000


class TestPersistenceConfig:
    """Test PersistenceConfig dataclass."""

    def test_default_values(self):
        config = PersistenceConfig()

        assert config.backend == "memory"
        assert config.database_url.startswith("sqlite:///")
        assert config.echo_sql is False


class TestOtherComponents:
    """Test the remaining component defaults."""

    def test_logging_defaults(self):
        config = LoggingConfig()

        assert config.level == "INFO"
        assert config.json_logs is False
        assert config.log_file is None

    def test_chunking_defaults(self):
        config = ChunkingConfig()

        assert config.chunk_size == 1000
        assert config.chunk_overlap == 200
        assert config.heading_levels == 3

    def test_embedding_defaults(self):
        assert EmbeddingConfig().batch_size == 64
