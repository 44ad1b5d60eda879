"""Error classification for the document sync pipeline.

:class:`ErrorClassifier` maps an exception to an :class:`ErrorCategory`, tells
whether the failure is transient, and supplies the retry policy for it.
Typed checks on the exception chain run first; keyword matching on the type
name and message is the fallback for exceptions raised by third-party
clients.
"""

from __future__ import annotations

import enum
import socket
from collections.abc import Iterator, Mapping
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from docsync.config.components import RetryConfig
from docsync.utils.exceptions import (
    DocumentCorruptedError,
    DocumentNotFoundError,
    DocumentTooLargeError,
    EmbeddingCountMismatchError,
    EmptyDocumentError,
    RateLimitError,
)


class ErrorCategory(str, enum.Enum):
    """Fine-grained failure categories."""

    NETWORK_CONNECTION = "network_connection"
    NETWORK_TIMEOUT = "network_timeout"
    NETWORK_DNS = "network_dns"
    DATABASE_CONNECTION = "database_connection"
    DATABASE_TIMEOUT = "database_timeout"
    DATABASE_CONSTRAINT = "database_constraint"
    VECTOR_STORE_CONNECTION = "vector_store_connection"
    VECTOR_STORE_CAPACITY = "vector_store_capacity"
    VECTOR_STORE_INVALID_VECTOR = "vector_store_invalid_vector"
    EMBEDDING_RATE_LIMIT = "embedding_rate_limit"
    EMBEDDING_QUOTA_EXCEEDED = "embedding_quota_exceeded"
    EMBEDDING_INVALID_INPUT = "embedding_invalid_input"
    EMBEDDING_SERVICE_UNAVAILABLE = "embedding_service_unavailable"
    DOCUMENT_NOT_FOUND = "document_not_found"
    DOCUMENT_CORRUPTED = "document_corrupted"
    DOCUMENT_TOO_LARGE = "document_too_large"
    DOCUMENT_EMPTY = "document_empty"
    MEMORY_INSUFFICIENT = "memory_insufficient"
    DISK_SPACE_INSUFFICIENT = "disk_space_insufficient"
    UNKNOWN = "unknown"


class ErrorType(str, enum.Enum):
    """Coarse error families, one per subsystem."""

    NETWORK = "network"
    DATABASE = "database"
    VECTOR_STORE = "vector_store"
    EMBEDDING = "embedding"
    DOCUMENT = "document"
    RESOURCE = "resource"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RetryStrategy:
    """Bounded exponential backoff policy."""

    max_retries: int
    base_delay_ms: int
    max_delay_ms: int


@dataclass(frozen=True)
class ErrorClassification:
    """Everything the pipeline needs to decide what to do with a failure."""

    category: ErrorCategory
    error_type: ErrorType
    is_temporary: bool
    retry_strategy: RetryStrategy
    message: str


NO_RETRY = RetryStrategy(max_retries=0, base_delay_ms=0, max_delay_ms=0)

PERMANENT_CATEGORIES = frozenset(
    {
        ErrorCategory.DATABASE_CONSTRAINT,
        ErrorCategory.VECTOR_STORE_INVALID_VECTOR,
        ErrorCategory.EMBEDDING_QUOTA_EXCEEDED,
        ErrorCategory.EMBEDDING_INVALID_INPUT,
        ErrorCategory.DOCUMENT_NOT_FOUND,
        ErrorCategory.DOCUMENT_CORRUPTED,
        ErrorCategory.DOCUMENT_TOO_LARGE,
        ErrorCategory.DOCUMENT_EMPTY,
        ErrorCategory.DISK_SPACE_INSUFFICIENT,
    }
)

DEFAULT_RETRY_STRATEGIES: dict[ErrorCategory, RetryStrategy] = {
    ErrorCategory.NETWORK_CONNECTION: RetryStrategy(5, 1000, 60_000),
    ErrorCategory.NETWORK_DNS: RetryStrategy(5, 1000, 60_000),
    ErrorCategory.NETWORK_TIMEOUT: RetryStrategy(5, 1000, 30_000),
    ErrorCategory.DATABASE_CONNECTION: RetryStrategy(5, 1000, 30_000),
    ErrorCategory.DATABASE_TIMEOUT: RetryStrategy(4, 2000, 20_000),
    ErrorCategory.VECTOR_STORE_CONNECTION: RetryStrategy(5, 1000, 30_000),
    ErrorCategory.VECTOR_STORE_CAPACITY: RetryStrategy(6, 5000, 120_000),
    ErrorCategory.EMBEDDING_RATE_LIMIT: RetryStrategy(3, 2000, 60_000),
    ErrorCategory.EMBEDDING_SERVICE_UNAVAILABLE: RetryStrategy(5, 5000, 120_000),
    ErrorCategory.MEMORY_INSUFFICIENT: RetryStrategy(3, 10_000, 60_000),
}

_CATEGORY_TYPES: dict[str, ErrorType] = {
    "network": ErrorType.NETWORK,
    "database": ErrorType.DATABASE,
    "vector": ErrorType.VECTOR_STORE,
    "embedding": ErrorType.EMBEDDING,
    "document": ErrorType.DOCUMENT,
    "memory": ErrorType.RESOURCE,
    "disk": ErrorType.RESOURCE,
}

_TYPED_CATEGORIES: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (DocumentNotFoundError, ErrorCategory.DOCUMENT_NOT_FOUND),
    (EmptyDocumentError, ErrorCategory.DOCUMENT_EMPTY),
    (DocumentTooLargeError, ErrorCategory.DOCUMENT_TOO_LARGE),
    (DocumentCorruptedError, ErrorCategory.DOCUMENT_CORRUPTED),
    (EmbeddingCountMismatchError, ErrorCategory.EMBEDDING_INVALID_INPUT),
    (RateLimitError, ErrorCategory.EMBEDDING_RATE_LIMIT),
    (IntegrityError, ErrorCategory.DATABASE_CONSTRAINT),
    (MemoryError, ErrorCategory.MEMORY_INSUFFICIENT),
    # gaierror is an OSError, not a ConnectionError, so it is checked on its own
    (socket.gaierror, ErrorCategory.NETWORK_DNS),
    (TimeoutError, ErrorCategory.NETWORK_TIMEOUT),
    (ConnectionError, ErrorCategory.NETWORK_CONNECTION),
)

_STATUS_CATEGORIES: dict[int, ErrorCategory] = {
    400: ErrorCategory.EMBEDDING_INVALID_INPUT,
    402: ErrorCategory.EMBEDDING_QUOTA_EXCEEDED,
    422: ErrorCategory.EMBEDDING_INVALID_INPUT,
    429: ErrorCategory.EMBEDDING_RATE_LIMIT,
    502: ErrorCategory.EMBEDDING_SERVICE_UNAVAILABLE,
    503: ErrorCategory.EMBEDDING_SERVICE_UNAVAILABLE,
    504: ErrorCategory.EMBEDDING_SERVICE_UNAVAILABLE,
}

NETWORK_KEYWORDS = (
    "network", "connection", "connect", "timeout", "timed out", "etimedout",
    "enotfound", "econnrefused", "econnreset", "socket", "dns",
)
DATABASE_KEYWORDS = (
    "database", "sqlite", "sql", "constraint", "unique", "foreign key",
    "locked", "busy", "deadlock",
)
VECTOR_STORE_KEYWORDS = (
    "qdrant", "vector", "collection", "point", "dimension", "capacity", "overloaded",
)
EMBEDDING_KEYWORDS = (
    "openai", "embedding", "api", "rate limit", "too many requests", "quota",
    "billing", "service unavailable", "maintenance", "invalid input", "validation",
)
DOCUMENT_KEYWORDS = (
    "document", "file", "content", "not found", "corrupted", "invalid format",
    "parse error", "too large", "empty", "blank",
)
RESOURCE_KEYWORDS = ("memory", "heap", "disk", "space", "storage")


def _has(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def _error_chain(error: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__ or getattr(
            current, "original_error", None
        )


class ErrorClassifier:
    """Classify pipeline exceptions and look up their retry policy."""

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        strategies: Mapping[ErrorCategory, RetryStrategy] | None = None,
    ) -> None:
        """Initialize the classifier.

        Args:
            retry_config: Fallback policy for categories without one
            strategies: Per-category overrides merged over the defaults
        """
        config = retry_config or RetryConfig()
        self._default_strategy = RetryStrategy(
            max_retries=config.default_max_retries,
            base_delay_ms=config.default_base_delay_ms,
            max_delay_ms=config.default_max_delay_ms,
        )
        self._strategies: dict[ErrorCategory, RetryStrategy] = {
            **DEFAULT_RETRY_STRATEGIES,
            **(strategies or {}),
        }

    def classify(self, error: BaseException) -> ErrorCategory:
        """Return the category of ``error``; ``UNKNOWN`` when nothing matches."""
        for link in _error_chain(error):
            category = self._classify_typed(link)
            if category is not None:
                return category

        for link in _error_chain(error):
            category = self._classify_text(f"{type(link).__name__}: {link}".lower())
            if category is not None:
                return category

        return ErrorCategory.UNKNOWN

    def _classify_typed(self, error: BaseException) -> ErrorCategory | None:
        if isinstance(error, (OperationalError, PoolTimeoutError)):
            text = str(error).lower()
            if "locked" in text or "timeout" in text or "timed out" in text:
                return ErrorCategory.DATABASE_TIMEOUT
            return ErrorCategory.DATABASE_CONNECTION

        for error_class, category in _TYPED_CATEGORIES:
            if isinstance(error, error_class):
                return category

        status_code = getattr(error, "status_code", None)
        if isinstance(status_code, int):
            return _STATUS_CATEGORIES.get(status_code)
        return None

    def _classify_text(self, text: str) -> ErrorCategory | None:  # noqa: PLR0911, PLR0912
        if _has(text, NETWORK_KEYWORDS) and not _has(text, ("database", "sqlite")):
            if "timeout" in text or "timed out" in text or "etimedout" in text:
                return ErrorCategory.NETWORK_TIMEOUT
            if "enotfound" in text or "dns" in text or "name resolution" in text:
                return ErrorCategory.NETWORK_DNS
            return ErrorCategory.NETWORK_CONNECTION

        if _has(text, DATABASE_KEYWORDS):
            if "timeout" in text or "locked" in text or "busy" in text:
                return ErrorCategory.DATABASE_TIMEOUT
            if "constraint" in text or "unique" in text or "foreign key" in text:
                return ErrorCategory.DATABASE_CONSTRAINT
            return ErrorCategory.DATABASE_CONNECTION

        if _has(text, VECTOR_STORE_KEYWORDS):
            if "capacity" in text or "overloaded" in text or "rate limit" in text:
                return ErrorCategory.VECTOR_STORE_CAPACITY
            if "invalid vector" in text or "vector size" in text or "dimension" in text:
                return ErrorCategory.VECTOR_STORE_INVALID_VECTOR
            if "qdrant" in text or "collection" in text:
                return ErrorCategory.VECTOR_STORE_CONNECTION

        if _has(text, EMBEDDING_KEYWORDS):
            if "rate limit" in text or "too many requests" in text or "429" in text:
                return ErrorCategory.EMBEDDING_RATE_LIMIT
            if "quota" in text or "billing" in text or "limit exceeded" in text:
                return ErrorCategory.EMBEDDING_QUOTA_EXCEEDED
            if "invalid input" in text or "bad request" in text or "validation" in text:
                return ErrorCategory.EMBEDDING_INVALID_INPUT
            if "service unavailable" in text or "maintenance" in text or "503" in text:
                return ErrorCategory.EMBEDDING_SERVICE_UNAVAILABLE

        if _has(text, DOCUMENT_KEYWORDS):
            if "not found" in text or "does not exist" in text:
                return ErrorCategory.DOCUMENT_NOT_FOUND
            if "corrupted" in text or "invalid format" in text or "parse error" in text:
                return ErrorCategory.DOCUMENT_CORRUPTED
            if "too large" in text or "size limit" in text:
                return ErrorCategory.DOCUMENT_TOO_LARGE
            if "empty" in text or "no content" in text or "blank" in text:
                return ErrorCategory.DOCUMENT_EMPTY

        if _has(text, RESOURCE_KEYWORDS):
            if "memory" in text or "heap" in text:
                return ErrorCategory.MEMORY_INSUFFICIENT
            return ErrorCategory.DISK_SPACE_INSUFFICIENT

        return None

    def is_temporary_category(self, category: ErrorCategory) -> bool:
        return category not in PERMANENT_CATEGORIES

    def is_temporary(self, error: BaseException) -> bool:
        """Whether ``error`` is a transient failure worth retrying."""
        return self.is_temporary_category(self.classify(error))

    def strategy_for(self, category: ErrorCategory) -> RetryStrategy:
        if category in PERMANENT_CATEGORIES:
            return NO_RETRY
        return self._strategies.get(category, self._default_strategy)

    def get_retry_strategy(self, error: BaseException) -> RetryStrategy:
        return self.strategy_for(self.classify(error))

    def error_type_for(self, category: ErrorCategory) -> ErrorType:
        prefix = category.value.split("_", 1)[0]
        return _CATEGORY_TYPES.get(prefix, ErrorType.UNKNOWN)

    def classify_error(self, error: BaseException) -> ErrorClassification:
        """Classify ``error`` and bundle category, transience and policy."""
        category = self.classify(error)
        return ErrorClassification(
            category=category,
            error_type=self.error_type_for(category),
            is_temporary=self.is_temporary_category(category),
            retry_strategy=self.strategy_for(category),
            message=str(error) or type(error).__name__,
        )
