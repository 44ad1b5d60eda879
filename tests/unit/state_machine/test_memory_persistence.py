"""Tests for the in-memory task store."""

import pytest

from docsync.state_machine.models import Task
from docsync.state_machine.persistence import InMemoryStatePersistence
from docsync.utils.clock import FakeClock
from docsync.utils.exceptions import TaskNotFoundError


def make_task(task_id: str, task_type: str = "toy", status: str = "NEW", created_at: int = 0) -> Task:
    return Task(
        id=task_id,
        task_type=task_type,
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )


class TestInMemoryStatePersistence:
    """Test InMemoryStatePersistence."""

    @pytest.mark.asyncio
    async def test_save_and_get_returns_copies(self, persistence: InMemoryStatePersistence):
        task = make_task("a")
        await persistence.save_task(task)
        task.status = "MUTATED"

        stored = await persistence.get_task("a", "toy")
        assert stored is not None
        assert stored.status == "NEW"

        stored.context["x"] = 1
        assert (await persistence.get_task("a", "toy")).context == {}

    @pytest.mark.asyncio
    async def test_same_id_different_types(self, persistence: InMemoryStatePersistence):
        await persistence.save_task(make_task("a", "toy", created_at=2))
        await persistence.save_task(make_task("a", "other", created_at=1))

        assert (await persistence.get_task("a", "toy")).task_type == "toy"
        # Untyped lookup returns the earliest created match
        assert (await persistence.get_task("a")).task_type == "other"
        assert len(persistence) == 2

    @pytest.mark.asyncio
    async def test_queries(self, persistence: InMemoryStatePersistence):
        await persistence.save_task(make_task("a", status="NEW"))
        await persistence.save_task(make_task("b", status="DONE"))
        await persistence.save_task(make_task("c", "other", status="DONE"))

        assert {t.id for t in await persistence.get_tasks_by_status("DONE")} == {"b", "c"}
        assert [t.id for t in await persistence.get_tasks_by_status("DONE", "toy")] == ["b"]
        assert {t.id for t in await persistence.get_tasks_by_type("toy")} == {"a", "b"}
        assert len(await persistence.get_all_tasks()) == 3

    @pytest.mark.asyncio
    async def test_update_stamps_updated_at(self, clock: FakeClock, persistence: InMemoryStatePersistence):
        await persistence.save_task(make_task("a"))
        clock.advance(500)

        updated = await persistence.update_task("a", "toy", {"status": "RUNNING", "progress": 10})

        assert updated.status == "RUNNING"
        assert updated.progress == 10
        assert updated.updated_at == clock.now_ms()

    @pytest.mark.asyncio
    async def test_update_and_delete_missing_raise(self, persistence: InMemoryStatePersistence):
        with pytest.raises(TaskNotFoundError):
            await persistence.update_task("missing", "toy", {"status": "DONE"})
        with pytest.raises(TaskNotFoundError):
            await persistence.delete_task("missing", "toy")

    @pytest.mark.asyncio
    async def test_delete(self, persistence: InMemoryStatePersistence):
        await persistence.save_task(make_task("a"))
        await persistence.delete_task("a", "toy")

        assert await persistence.get_task("a", "toy") is None

    @pytest.mark.asyncio
    async def test_cleanup_removes_only_old_terminal_tasks(self, clock: FakeClock):
        persistence = InMemoryStatePersistence(clock)
        now = clock.now_ms()
        await persistence.save_task(Task(id="old-done", task_type="toy", status="DONE", updated_at=now - 2000))
        await persistence.save_task(Task(id="new-done", task_type="toy", status="DONE", updated_at=now - 10))
        await persistence.save_task(Task(id="old-running", task_type="toy", status="RUNNING", updated_at=now - 2000))
        await persistence.save_task(Task(id="old-other", task_type="other", status="DONE", updated_at=now - 2000))

        deleted = await persistence.cleanup_expired_tasks(1000, {"toy": {"DONE"}})

        assert deleted == 1
        remaining = {t.id for t in await persistence.get_all_tasks()}
        assert remaining == {"new-done", "old-running", "old-other"}
