"""Models for the document-sync state machine.

Uses python-statemachine to declare the per-document lifecycle. The machine is
the single source of truth for which events are accepted in which status;
:class:`~docsync.sync.strategy.DocumentSyncStrategy` consults it for every
transition.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from docsync.state_machine.models import Task

DOCUMENT_SYNC_TASK_TYPE = "document_sync"


class SyncJobStatus(str, enum.Enum):
    """Statuses of a document sync job."""

    NEW = "NEW"
    SPLIT_OK = "SPLIT_OK"
    EMBED_OK = "EMBED_OK"
    SYNCED = "SYNCED"
    FAILED = "FAILED"
    RETRYING = "RETRYING"
    DEAD = "DEAD"
    PAUSED = "PAUSED"


class SyncJobEvent(str, enum.Enum):
    """Events that drive a document sync job."""

    CHUNKS_SAVED = "chunks_saved"
    VECTORS_INSERTED = "vectors_inserted"
    META_UPDATED = "meta_updated"
    ERROR = "error"
    RETRY = "retry"
    RETRIES_EXCEEDED = "retries_exceeded"
    PAUSE = "pause"
    RESUME = "resume"


class SyncJobMachine(StateMachine):
    """State machine for one document's trip into the vector index."""

    # Define states
    new = State(value=SyncJobStatus.NEW.value, initial=True)
    split_ok = State(value=SyncJobStatus.SPLIT_OK.value)
    embed_ok = State(value=SyncJobStatus.EMBED_OK.value)
    synced = State(value=SyncJobStatus.SYNCED.value, final=True)
    failed = State(value=SyncJobStatus.FAILED.value)
    retrying = State(value=SyncJobStatus.RETRYING.value)
    dead = State(value=SyncJobStatus.DEAD.value, final=True)
    paused = State(value=SyncJobStatus.PAUSED.value)

    # Define transitions
    chunks_saved = new.to(split_ok) | retrying.to(split_ok)
    vectors_inserted = split_ok.to(embed_ok)
    meta_updated = embed_ok.to(synced)
    error = new.to(failed) | split_ok.to(failed) | embed_ok.to(failed) | retrying.to(failed)
    retry = failed.to(retrying)
    retries_exceeded = failed.to(dead) | retrying.to(dead)
    pause = (
        new.to(paused)
        | split_ok.to(paused)
        | embed_ok.to(paused)
        | failed.to(paused)
        | retrying.to(paused)
    )
    # A resumed job re-runs the whole pipeline, like a retry
    resume = paused.to(retrying)


_STATUS_VALUES = frozenset(s.value for s in SyncJobStatus)
_EVENT_VALUES = frozenset(e.value for e in SyncJobEvent)

TERMINAL_STATUSES = frozenset(
    state.value for state in SyncJobMachine.states if state.final
)


def next_status(status: str, event: str) -> str | None:
    """Return the status reached by sending ``event`` in ``status``, or ``None``."""
    if status not in _STATUS_VALUES or event not in _EVENT_VALUES:
        return None

    machine = SyncJobMachine(start_value=status)
    try:
        machine.send(event)
    except TransitionNotAllowed:
        return None
    return machine.current_state.value


@dataclass(frozen=True)
class SyncJob:
    """Read-only view of a document sync task."""

    doc_id: str
    status: SyncJobStatus
    retries: int
    last_attempt_at: int | None
    error: str | None
    error_category: str | None
    progress: int
    created_at: int
    updated_at: int
    started_at: int | None
    completed_at: int | None
    context: dict[str, Any]

    @property
    def is_terminal(self) -> bool:
        return self.status.value in TERMINAL_STATUSES

    @classmethod
    def from_task(cls, task: Task) -> SyncJob:
        return cls(
            doc_id=task.id,
            status=SyncJobStatus(task.status),
            retries=task.retries,
            last_attempt_at=task.last_attempt_at,
            error=task.error,
            error_category=task.context.get("error_category"),
            progress=task.progress,
            created_at=task.created_at,
            updated_at=task.updated_at,
            started_at=task.started_at,
            completed_at=task.completed_at,
            context=dict(task.context),
        )
