"""Tests for the document sync state machine."""

import pytest

from docsync.state_machine.models import Task
from docsync.sync.models import (
    DOCUMENT_SYNC_TASK_TYPE,
    TERMINAL_STATUSES,
    SyncJob,
    SyncJobEvent,
    SyncJobStatus,
    next_status,
)

S = SyncJobStatus
E = SyncJobEvent


class TestTransitionTable:
    """Every accepted edge of the sync lifecycle."""

    @pytest.mark.parametrize(
        ("status", "event", "expected"),
        [
            (S.NEW, E.CHUNKS_SAVED, S.SPLIT_OK),
            (S.SPLIT_OK, E.VECTORS_INSERTED, S.EMBED_OK),
            (S.EMBED_OK, E.META_UPDATED, S.SYNCED),
            (S.NEW, E.ERROR, S.FAILED),
            (S.SPLIT_OK, E.ERROR, S.FAILED),
            (S.EMBED_OK, E.ERROR, S.FAILED),
            (S.RETRYING, E.ERROR, S.FAILED),
            (S.FAILED, E.RETRY, S.RETRYING),
            (S.RETRYING, E.CHUNKS_SAVED, S.SPLIT_OK),
            (S.FAILED, E.RETRIES_EXCEEDED, S.DEAD),
            (S.RETRYING, E.RETRIES_EXCEEDED, S.DEAD),
            (S.NEW, E.PAUSE, S.PAUSED),
            (S.SPLIT_OK, E.PAUSE, S.PAUSED),
            (S.EMBED_OK, E.PAUSE, S.PAUSED),
            (S.FAILED, E.PAUSE, S.PAUSED),
            (S.RETRYING, E.PAUSE, S.PAUSED),
            (S.PAUSED, E.RESUME, S.RETRYING),
        ],
    )
    def test_accepted(self, status, event, expected):
        assert next_status(status.value, event.value) == expected.value

    @pytest.mark.parametrize(
        ("status", "event"),
        [
            (S.NEW, E.META_UPDATED),
            (S.NEW, E.RETRY),
            (S.SPLIT_OK, E.CHUNKS_SAVED),
            (S.FAILED, E.ERROR),
            (S.SYNCED, E.ERROR),
            (S.SYNCED, E.RETRY),
            (S.DEAD, E.RETRY),
            (S.DEAD, E.CHUNKS_SAVED),
            (S.SYNCED, E.PAUSE),
            (S.DEAD, E.PAUSE),
            (S.PAUSED, E.PAUSE),
            (S.PAUSED, E.RETRY),
            (S.PAUSED, E.CHUNKS_SAVED),
            (S.NEW, E.RESUME),
        ],
    )
    def test_rejected(self, status, event):
        assert next_status(status.value, event.value) is None

    def test_unknown_names_are_rejected(self):
        assert next_status("STOPPED", "retry") is None
        assert next_status("NEW", "cancel") is None

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {"SYNCED", "DEAD"}


class TestSyncJob:
    """Test the read-only job view."""

    def test_from_task(self):
        task = Task(
            id="doc-1",
            task_type=DOCUMENT_SYNC_TASK_TYPE,
            status="FAILED",
            retries=2,
            error="boom",
            progress=33,
            context={"error_category": "network_timeout"},
        )

        job = SyncJob.from_task(task)

        assert job.doc_id == "doc-1"
        assert job.status is SyncJobStatus.FAILED
        assert job.retries == 2
        assert job.error_category == "network_timeout"
        assert not job.is_terminal

    def test_terminal_job(self):
        task = Task(id="doc-1", task_type=DOCUMENT_SYNC_TASK_TYPE, status="SYNCED")

        assert SyncJob.from_task(task).is_terminal
