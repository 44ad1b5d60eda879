"""Exceptions for the docsync system.

This module defines the exception hierarchy used by the task engine, the
document-sync pipeline and its collaborators. Every exception carries a
machine-readable ``error_code`` and a ``context`` dictionary so that the error
classifier and the logs can work with structured information.
"""

from typing import Any


class DocSyncError(Exception):
    """Base exception class for all docsync-specific exceptions.

    All docsync-related exceptions should inherit from this class to allow
    for consistent error handling and identification of docsync errors.
    """

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        """Initialize the exception.

        Args:
            message: Human-readable error message
            error_code: Optional machine-readable error code
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.error_code = error_code
        self.context = context or {}


def _caused_by(original_error: Exception | None) -> str:
    if original_error is None:
        return ""
    return f" (caused by: {type(original_error).__name__}: {original_error})"


# Configuration Errors
class ConfigurationError(DocSyncError):
    """Base class for configuration-related errors."""
    pass


class InvalidConfigurationError(ConfigurationError):
    """Exception raised when configuration values are invalid."""

    def __init__(self, config_key: str, value: Any, expected: str):
        """Initialize the exception.

        Args:
            config_key: The configuration key that is invalid
            value: The invalid value that was provided
            expected: Description of what was expected
        """
        self.config_key = config_key
        self.value = value
        self.expected = expected
        super().__init__(
            f"Invalid configuration for '{config_key}': got {value}, expected {expected}",
            error_code="INVALID_CONFIG",
            context={"config_key": config_key, "value": value, "expected": expected}
        )


# State Machine Errors
class StateMachineError(DocSyncError):
    """Base class for task engine errors."""
    pass


class StrategyAlreadyRegisteredError(StateMachineError):
    """Exception raised when a strategy id is registered twice."""

    def __init__(self, strategy_id: str):
        self.strategy_id = strategy_id
        super().__init__(
            f"Strategy '{strategy_id}' is already registered",
            error_code="STRATEGY_ALREADY_REGISTERED",
            context={"strategy_id": strategy_id}
        )


class StrategyNotFoundError(StateMachineError):
    """Exception raised when no strategy is registered for a task type."""

    def __init__(self, task_type: str, available: list[str] | None = None):
        """Initialize the exception.

        Args:
            task_type: The task type that has no strategy
            available: List of registered strategy ids
        """
        self.task_type = task_type
        self.available = available or []

        error_msg = f"No strategy registered for task type '{task_type}'"
        if self.available:
            error_msg += f". Registered strategies: {', '.join(self.available)}"

        super().__init__(
            error_msg,
            error_code="STRATEGY_NOT_FOUND",
            context={"task_type": task_type, "available": self.available}
        )


class TaskAlreadyExistsError(StateMachineError):
    """Exception raised when creating a task whose key is already taken."""

    def __init__(self, task_type: str, task_id: str):
        self.task_type = task_type
        self.task_id = task_id
        super().__init__(
            f"Task '{task_id}' already exists for task type '{task_type}'",
            error_code="TASK_ALREADY_EXISTS",
            context={"task_type": task_type, "task_id": task_id}
        )


class TaskNotFoundError(StateMachineError):
    """Exception raised when a task record does not exist."""

    def __init__(self, task_id: str, task_type: str | None = None):
        self.task_id = task_id
        self.task_type = task_type

        error_msg = f"Task not found: {task_id}"
        if task_type:
            error_msg += f" (type: {task_type})"

        super().__init__(
            error_msg,
            error_code="TASK_NOT_FOUND",
            context={"task_id": task_id, "task_type": task_type}
        )


# Document Errors
class DocumentError(DocSyncError):
    """Base class for document-related errors."""
    pass


class DocumentNotFoundError(DocumentError):
    """Exception raised when a document does not exist in the metadata store."""

    def __init__(self, doc_id: str):
        """Initialize the exception.

        Args:
            doc_id: Identifier of the missing document
        """
        self.doc_id = doc_id
        super().__init__(
            f"Document not found: {doc_id}",
            error_code="DOC_NOT_FOUND",
            context={"doc_id": doc_id}
        )


class EmptyDocumentError(DocumentError):
    """Exception raised when a document has no usable content."""

    def __init__(self, doc_id: str, message: str = ""):
        self.doc_id = doc_id

        error_msg = f"Document {doc_id} has no content"
        if message:
            error_msg += f": {message}"

        super().__init__(
            error_msg,
            error_code="DOC_EMPTY",
            context={"doc_id": doc_id}
        )


class DocumentTooLargeError(DocumentError):
    """Exception raised when a document exceeds the accepted size."""

    def __init__(self, doc_id: str, size: int, limit: int):
        """Initialize the exception.

        Args:
            doc_id: Identifier of the document
            size: Actual size of the document content
            limit: Maximum accepted size
        """
        self.doc_id = doc_id
        self.size = size
        self.limit = limit
        super().__init__(
            f"Document {doc_id} is too large: {size} exceeds size limit {limit}",
            error_code="DOC_TOO_LARGE",
            context={"doc_id": doc_id, "size": size, "limit": limit}
        )


class DocumentCorruptedError(DocumentError):
    """Exception raised when document content cannot be parsed."""

    def __init__(self, doc_id: str, message: str = "", *, original_error: Exception | None = None):
        """Initialize the exception.

        Args:
            doc_id: Identifier of the document
            message: Additional error message details
            original_error: The original exception that caused this error
        """
        self.doc_id = doc_id
        self.original_error = original_error

        error_msg = f"Document {doc_id} is corrupted"
        if message:
            error_msg += f": {message}"
        error_msg += _caused_by(original_error)

        super().__init__(
            error_msg,
            error_code="DOC_CORRUPTED",
            context={
                "doc_id": doc_id,
                "original_error": str(original_error) if original_error else None,
            },
        )


# Embedding Errors
class EmbeddingError(DocSyncError):
    """Base class for embedding-related errors."""
    pass


class EmbeddingCountMismatchError(EmbeddingError):
    """Exception raised when the provider returns a different number of vectors than texts."""

    def __init__(self, doc_id: str, expected: int, actual: int):
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding count mismatch for document {doc_id}: "
            f"expected {expected} vectors, got {actual}",
            error_code="EMBEDDING_COUNT_MISMATCH",
            context={"doc_id": doc_id, "expected": expected, "actual": actual}
        )


# Persistence Errors
class PersistenceError(DocSyncError):
    """Exception raised when the task store cannot complete an operation."""

    def __init__(
        self, operation: str, message: str = "", *, original_error: Exception | None = None
    ):
        self.operation = operation
        self.original_error = original_error

        error_msg = f"Task store {operation} operation failed"
        if message:
            error_msg += f": {message}"
        error_msg += _caused_by(original_error)

        super().__init__(
            error_msg,
            error_code="PERSISTENCE_ERROR",
            context={
                "operation": operation,
                "original_error": str(original_error) if original_error else None,
            },
        )


# External Service Errors
class ExternalServiceError(DocSyncError):
    """Base class for external service-related errors."""
    pass


class APIError(ExternalServiceError):
    """Exception raised for API-related errors."""

    def __init__(
        self,
        service: str,
        operation: str,
        message: str = "",
        *,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ):
        """Initialize the exception.

        Args:
            service: Name of the external service (e.g., 'OpenAI', 'Qdrant')
            operation: The operation that failed (e.g., 'embed_documents', 'upsert')
            message: Additional error message details
            status_code: HTTP status code if applicable
            original_error: The original exception that caused this error
        """
        self.service = service
        self.operation = operation
        self.status_code = status_code
        self.original_error = original_error

        error_msg = f"{service} API error during {operation}"
        if status_code:
            error_msg += f" (status: {status_code})"
        if message:
            error_msg += f": {message}"
        error_msg += _caused_by(original_error)

        super().__init__(
            error_msg,
            error_code="API_ERROR",
            context={
                "service": service,
                "operation": operation,
                "status_code": status_code,
                "original_error": str(original_error) if original_error else None
            }
        )


class RateLimitError(ExternalServiceError):
    """Exception raised when API rate limits are exceeded."""

    def __init__(self, service: str, retry_after: float | None = None, message: str = ""):
        """Initialize the exception.

        Args:
            service: Name of the external service
            retry_after: Suggested time to wait before retrying (in seconds)
            message: Additional error message details
        """
        self.service = service
        self.retry_after = retry_after

        error_msg = f"Rate limit exceeded for {service}"
        if retry_after:
            error_msg += f". Retry after {retry_after} seconds"
        if message:
            error_msg += f": {message}"

        super().__init__(
            error_msg,
            error_code="RATE_LIMIT_ERROR",
            context={"service": service, "retry_after": retry_after}
        )
