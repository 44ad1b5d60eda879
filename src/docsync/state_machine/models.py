"""Data models for the generic task state-machine engine."""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field, fields
from typing import Any

TASK_FIELDS = (
    "id",
    "task_type",
    "status",
    "retries",
    "last_attempt_at",
    "error",
    "created_at",
    "updated_at",
    "started_at",
    "completed_at",
    "progress",
    "context",
)

# Fields a transition effect may change; identity fields and the status are fixed.
MUTABLE_TASK_FIELDS = frozenset(TASK_FIELDS) - {"id", "task_type", "created_at", "status"}


@dataclass
class Task:
    """One tracked unit of work.

    ``status`` only has meaning relative to the transition table of the
    strategy registered for ``task_type``. Timestamps are epoch milliseconds.
    """

    id: str
    task_type: str
    status: str
    retries: int = 0
    last_attempt_at: int | None = None
    error: str | None = None
    created_at: int = 0
    updated_at: int = 0
    started_at: int | None = None
    completed_at: int | None = None
    progress: int = 0
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        """Identity of the task within a store."""
        return (self.task_type, self.id)

    def copy(self) -> Task:
        """Return an independent copy, including the context payload."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Serializable shape of the task record."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["context"] = dict(values.get("context") or {})
        return cls(**values)

    def __repr__(self) -> str:
        return (
            f"<Task(type='{self.task_type}', id='{self.id}', status={self.status}, "
            f"retries={self.retries})>"
        )


@dataclass
class TransitionResult:
    """Outcome of applying an event to a task."""

    success: bool
    previous_status: str | None
    new_status: str | None
    event: str
    error_message: str | None = None


@dataclass(frozen=True)
class TransitionLogEntry:
    """One attempted transition of a task, accepted or rejected."""

    task_id: str
    from_status: str | None
    to_status: str | None
    event: str
    at: int
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class EngineMetrics:
    """Snapshot of every task the engine's strategies own."""

    total_tasks: int
    tasks_by_status: dict[str, int]
    tasks_by_type: dict[str, int]
    average_execution_ms: float
    retry_rate: float
