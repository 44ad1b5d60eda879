"""Tests for DocSyncConfig validation and environment loading."""

import pytest

from docsync.config import (
    ChunkingConfig,
    DocSyncConfig,
    EngineConfig,
    PersistenceConfig,
    RetryConfig,
)
from docsync.utils.exceptions import InvalidConfigurationError


class TestValidation:
    """Cross-field checks in DocSyncConfig.__post_init__."""

    def test_defaults_are_valid(self):
        config = DocSyncConfig()

        assert config.persistence.backend == "memory"
        assert config.retry.default_max_retries == 3

    def test_rejects_unknown_backend(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            DocSyncConfig(persistence=PersistenceConfig(backend="redis"))

        assert exc_info.value.config_key == "persistence.backend"

    def test_rejects_overlap_not_smaller_than_size(self):
        with pytest.raises(InvalidConfigurationError):
            DocSyncConfig(chunking=ChunkingConfig(chunk_size=100, chunk_overlap=100))

    def test_rejects_zero_concurrency(self):
        with pytest.raises(InvalidConfigurationError):
            DocSyncConfig(engine=EngineConfig(default_concurrency=0))

    def test_rejects_base_delay_above_max(self):
        with pytest.raises(InvalidConfigurationError):
            DocSyncConfig(retry=RetryConfig(default_base_delay_ms=10, default_max_delay_ms=5))


class TestFromEnv:
    """Test DocSyncConfig.from_env."""

    def test_defaults_without_environment(self):
        assert DocSyncConfig.from_env() == DocSyncConfig()

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("DOCSYNC_CONCURRENCY", "8")
        monkeypatch.setenv("DOCSYNC_MAX_RETRIES", "5")
        monkeypatch.setenv("DOCSYNC_PERSISTENCE", "sqlalchemy")
        monkeypatch.setenv("DOCSYNC_DATABASE_URL", "sqlite:///tmp/state.db")
        monkeypatch.setenv("DOCSYNC_ECHO_SQL", "yes")
        monkeypatch.setenv("DOCSYNC_LOG_LEVEL", "debug")
        monkeypatch.setenv("DOCSYNC_JSON_LOGS", "1")
        monkeypatch.setenv("DOCSYNC_CHUNK_SIZE", "400")
        monkeypatch.setenv("DOCSYNC_CHUNK_OVERLAP", "40")

        config = DocSyncConfig.from_env()

        assert config.engine.default_concurrency == 8
        assert config.retry.default_max_retries == 5
        assert config.persistence.backend == "sqlalchemy"
        assert config.persistence.database_url == "sqlite:///tmp/state.db"
        assert config.persistence.echo_sql is True
        assert config.logging.level == "DEBUG"
        assert config.logging.json_logs is True
        assert config.chunking.chunk_size == 400
        assert config.chunking.chunk_overlap == 40

    def test_invalid_integer(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("DOCSYNC_MAX_RETRIES", "many")

        with pytest.raises(InvalidConfigurationError) as exc_info:
            DocSyncConfig.from_env()

        assert exc_info.value.config_key == "DOCSYNC_MAX_RETRIES"
