"""Tests for the generic StateMachineEngine."""

import asyncio

import pytest
from toy_strategies import BrokenHandlerStrategy, OtherStrategy, ToyStrategy

from docsync.config import EngineConfig
from docsync.state_machine import InMemoryStatePersistence, StateMachineEngine
from docsync.utils.clock import FakeClock
from docsync.utils.exceptions import (
    StrategyAlreadyRegisteredError,
    StrategyNotFoundError,
    TaskAlreadyExistsError,
    TaskNotFoundError,
)


@pytest.fixture
def toy(persistence: InMemoryStatePersistence, clock: FakeClock) -> ToyStrategy:
    return ToyStrategy(persistence, clock=clock, failing={"bad"})


@pytest.fixture
def engine(persistence: InMemoryStatePersistence, toy: ToyStrategy) -> StateMachineEngine:
    engine = StateMachineEngine(persistence, config=EngineConfig(default_concurrency=2))
    engine.register_strategy(toy)
    return engine


class TestRegistry:
    """Test strategy registration."""

    def test_register_and_lookup(self, engine: StateMachineEngine, toy: ToyStrategy):
        assert engine.get_strategy("toy") is toy
        assert engine.get_strategy("missing") is None
        assert engine.get_registered_strategies() == ["toy"]

    def test_duplicate_registration_raises(self, engine: StateMachineEngine, persistence):
        with pytest.raises(StrategyAlreadyRegisteredError):
            engine.register_strategy(ToyStrategy(persistence))

    def test_default_persistence_is_in_memory(self):
        engine = StateMachineEngine()

        assert isinstance(engine.persistence, InMemoryStatePersistence)

    def test_empty_store_is_kept(self):
        store = InMemoryStatePersistence()

        assert StateMachineEngine(store).persistence is store


class TestTaskCreation:
    """Test create_task and get_or_create_task."""

    @pytest.mark.asyncio
    async def test_create_task(self, engine: StateMachineEngine):
        task = await engine.create_task("toy", "t1", {"k": "v"})

        assert task.status == "NEW"
        assert (await engine.get_task("t1", task_type="toy")).context == {"k": "v"}

    @pytest.mark.asyncio
    async def test_unknown_type_raises(self, engine: StateMachineEngine):
        with pytest.raises(StrategyNotFoundError) as exc_info:
            await engine.create_task("nope", "t1")

        assert exc_info.value.available == ["toy"]

    @pytest.mark.asyncio
    async def test_duplicate_raises(self, engine: StateMachineEngine):
        await engine.create_task("toy", "t1")

        with pytest.raises(TaskAlreadyExistsError):
            await engine.create_task("toy", "t1")

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, engine: StateMachineEngine):
        first = await engine.get_or_create_task("toy", "t1", {"n": 1})
        second = await engine.get_or_create_task("toy", "t1", {"n": 2})

        assert first.created_at == second.created_at
        assert second.context == {"n": 1}
        assert len(await engine.get_tasks_by_type("toy")) == 1

    @pytest.mark.asyncio
    async def test_create_locks_are_per_task(self, engine: StateMachineEngine):
        async with engine._create_lock("toy", "a"):
            task = await asyncio.wait_for(engine.create_task("toy", "b"), timeout=0.2)

        assert task.id == "b"

    @pytest.mark.asyncio
    async def test_concurrent_get_or_create_same_key(self, engine: StateMachineEngine):
        tasks = await asyncio.gather(
            *(engine.get_or_create_task("toy", "t1", {"n": n}) for n in range(5))
        )

        assert len({task.context["n"] for task in tasks}) == 1
        assert len(await engine.get_tasks_by_type("toy")) == 1

    @pytest.mark.asyncio
    async def test_create_tasks_skips_failures(self, engine: StateMachineEngine):
        await engine.create_task("toy", "b")

        created = await engine.create_tasks("toy", ["a", "b", "c"], lambda tid: {"id": tid})

        assert [t.id for t in created] == ["a", "c"]
        assert created[0].context == {"id": "a"}


class TestTransitions:
    """Test transition_state, cancel_task and retry_task."""

    @pytest.mark.asyncio
    async def test_transition_state(self, engine: StateMachineEngine):
        await engine.create_task("toy", "t1")

        assert await engine.transition_state("t1", "start") is True
        assert await engine.transition_state("t1", "start") is False
        assert (await engine.get_task("t1")).status == "RUNNING"

    @pytest.mark.asyncio
    async def test_transition_unknown_task(self, engine: StateMachineEngine):
        assert await engine.transition_state("ghost", "start") is False

    @pytest.mark.asyncio
    async def test_transition_without_strategy(self, persistence, clock):
        engine = StateMachineEngine(persistence)
        await ToyStrategy(persistence, clock=clock).create_task("t1")

        assert await engine.transition_state("t1", "start") is False

    @pytest.mark.asyncio
    async def test_cancel_task(self, engine: StateMachineEngine):
        await engine.create_task("toy", "t1")

        assert await engine.cancel_task("t1") is True
        assert (await engine.get_task("t1")).status == "CANCELLED"
        assert await engine.cancel_task("t1") is False

    @pytest.mark.asyncio
    async def test_retry_task_executes_after_transition(
        self, engine: StateMachineEngine, toy: ToyStrategy
    ):
        await engine.create_task("toy", "t1")
        await engine.transition_state("t1", "start")
        await engine.transition_state("t1", "fail")

        assert await engine.retry_task("t1") is True

        assert (await engine.get_task("t1")).status == "DONE"
        assert toy.executed == ["t1"]

    @pytest.mark.asyncio
    async def test_retry_rejected_does_not_execute(
        self, engine: StateMachineEngine, toy: ToyStrategy
    ):
        await engine.create_task("toy", "t1")

        assert await engine.retry_task("t1") is False
        assert toy.executed == []

    @pytest.mark.asyncio
    async def test_failed_retry_returns_false(self, engine: StateMachineEngine, toy: ToyStrategy):
        await engine.create_task("toy", "bad")
        await engine.transition_state("bad", "start")
        await engine.transition_state("bad", "fail")

        assert await engine.retry_task("bad") is False

        task = await engine.get_task("bad")
        assert task.status == "FAILED"
        assert task.error == "toy failure for bad"
        assert toy.executed == ["bad"]


class TestExecution:
    """Test execute_task and execute_tasks."""

    @pytest.mark.asyncio
    async def test_execute_success(self, engine: StateMachineEngine):
        await engine.create_task("toy", "t1")

        await engine.execute_task("t1")

        task = await engine.get_task("t1")
        assert task.status == "DONE"
        assert task.progress == 100
        assert task.completed_at is not None

    @pytest.mark.asyncio
    async def test_execute_missing_task_raises(self, engine: StateMachineEngine):
        with pytest.raises(TaskNotFoundError):
            await engine.execute_task("ghost")

    @pytest.mark.asyncio
    async def test_execute_failure_delegates_and_reraises(self, engine: StateMachineEngine):
        await engine.create_task("toy", "bad")

        with pytest.raises(RuntimeError, match="toy failure"):
            await engine.execute_task("bad")

        task = await engine.get_task("bad")
        assert task.status == "FAILED"
        assert task.error == "toy failure for bad"

    @pytest.mark.asyncio
    async def test_failing_error_handler_keeps_original_error(self, persistence, clock):
        engine = StateMachineEngine(persistence)
        engine.register_strategy(BrokenHandlerStrategy(persistence, clock=clock, failing={"t1"}))
        await engine.create_task("broken", "t1")

        with pytest.raises(RuntimeError, match="toy failure"):
            await engine.execute_task("t1")

    @pytest.mark.asyncio
    async def test_handle_task_error(self, engine: StateMachineEngine):
        await engine.create_task("toy", "t1")
        await engine.transition_state("t1", "start")

        await engine.handle_task_error("t1", RuntimeError("external"))

        task = await engine.get_task("t1")
        assert task.status == "FAILED"
        assert task.error == "external"

    @pytest.mark.asyncio
    async def test_handle_error_for_unknown_task_is_dropped(self, engine: StateMachineEngine):
        await engine.handle_task_error("ghost", RuntimeError("late"))

        assert await engine.get_task("ghost") is None

    @pytest.mark.asyncio
    async def test_execute_tasks_reports_per_task(self, engine: StateMachineEngine):
        for task_id in ["a", "bad", "c"]:
            await engine.create_task("toy", task_id)

        outcome = await engine.execute_tasks(["a", "bad", "c"])

        assert outcome["a"] is None
        assert outcome["c"] is None
        assert isinstance(outcome["bad"], RuntimeError)
        assert (await engine.get_task("c")).status == "DONE"


class TestMaintenance:
    """Test cleanup and statistics."""

    @pytest.mark.asyncio
    async def test_cleanup_uses_strategy_terminals(
        self, engine: StateMachineEngine, clock: FakeClock
    ):
        await engine.create_task("toy", "done")
        await engine.execute_task("done")
        await engine.create_task("toy", "pending")
        clock.advance(10_000)

        assert await engine.cleanup_expired_tasks(older_than_ms=5_000) == 1
        assert await engine.get_task("done") is None
        assert await engine.get_task("pending") is not None

    @pytest.mark.asyncio
    async def test_cleanup_respects_retention(self, engine: StateMachineEngine, clock: FakeClock):
        await engine.create_task("toy", "done")
        await engine.execute_task("done")
        clock.advance(1_000)

        # Default retention is one day
        assert await engine.cleanup_expired_tasks() == 0

    @pytest.mark.asyncio
    async def test_task_stats_per_type(self, engine: StateMachineEngine, persistence, clock):
        engine.register_strategy(OtherStrategy(persistence, clock=clock))
        await engine.create_task("toy", "a")
        await engine.create_task("toy", "b")
        await engine.execute_task("b", task_type="toy")
        await engine.create_task("other", "a")

        stats = await engine.get_task_stats()

        assert stats == {"toy": {"NEW": 1, "DONE": 1}, "other": {"NEW": 1}}

    @pytest.mark.asyncio
    async def test_same_id_across_types(self, engine: StateMachineEngine, persistence, clock):
        engine.register_strategy(OtherStrategy(persistence, clock=clock))
        await engine.create_task("toy", "shared")
        clock.advance(1)
        await engine.create_task("other", "shared")

        await engine.execute_task("shared", task_type="other")

        assert (await engine.get_task("shared", task_type="other")).status == "DONE"
        assert (await engine.get_task("shared", task_type="toy")).status == "NEW"
        assert (await engine.get_task("shared")).task_type == "toy"

    @pytest.mark.asyncio
    async def test_cleanup_prunes_history_and_locks(
        self, engine: StateMachineEngine, clock: FakeClock
    ):
        await engine.create_task("toy", "done")
        await engine.execute_task("done")
        await engine.create_task("toy", "pending")
        await engine.pause_task("pending")
        clock.advance(10_000)

        await engine.cleanup_expired_tasks(older_than_ms=5_000)

        assert engine.get_transition_history("done") == []
        assert [e.event for e in engine.get_transition_history("pending")] == ["pause"]
        assert engine._create_locks == {}

    @pytest.mark.asyncio
    async def test_global_metrics(
        self, engine: StateMachineEngine, toy: ToyStrategy, clock: FakeClock
    ):
        await engine.create_task("toy", "fast")
        await toy.mark_task_started("fast")
        await engine.transition_state("fast", "start")
        clock.advance(40)
        await engine.transition_state("fast", "finish")
        await engine.create_task("toy", "retried")
        await engine.persistence.update_task("retried", "toy", {"retries": 1})

        metrics = await engine.get_global_metrics()

        assert metrics.total_tasks == 2
        assert metrics.tasks_by_status == {"DONE": 1, "NEW": 1}
        assert metrics.tasks_by_type == {"toy": 2}
        assert metrics.average_execution_ms == 40.0
        assert metrics.retry_rate == 0.5

    @pytest.mark.asyncio
    async def test_global_metrics_when_empty(self, engine: StateMachineEngine):
        metrics = await engine.get_global_metrics()

        assert metrics.total_tasks == 0
        assert metrics.average_execution_ms == 0.0
        assert metrics.retry_rate == 0.0


class TestPauseResume:
    """Test pause_task, resume_task and paused execution."""

    @pytest.mark.asyncio
    async def test_paused_task_is_not_executed(self, engine: StateMachineEngine, toy: ToyStrategy):
        await engine.create_task("toy", "t1")

        assert await engine.pause_task("t1") is True
        await engine.execute_task("t1")

        assert (await engine.get_task("t1")).status == "PAUSED"
        assert toy.executed == []

    @pytest.mark.asyncio
    async def test_resume_executes(self, engine: StateMachineEngine, toy: ToyStrategy):
        await engine.create_task("toy", "t1")
        await engine.pause_task("t1")

        assert await engine.resume_task("t1") is True

        assert (await engine.get_task("t1")).status == "DONE"
        assert toy.executed == ["t1"]

    @pytest.mark.asyncio
    async def test_resume_rejected_when_not_paused(
        self, engine: StateMachineEngine, toy: ToyStrategy
    ):
        await engine.create_task("toy", "t1")

        assert await engine.resume_task("t1") is False
        assert toy.executed == []

    @pytest.mark.asyncio
    async def test_failed_resume_returns_false(self, engine: StateMachineEngine):
        await engine.create_task("toy", "bad")
        await engine.pause_task("bad")

        assert await engine.resume_task("bad") is False
        assert (await engine.get_task("bad")).status == "FAILED"

    @pytest.mark.asyncio
    async def test_pause_rejected_while_running(self, engine: StateMachineEngine):
        await engine.create_task("toy", "t1")
        await engine.transition_state("t1", "start")

        assert await engine.pause_task("t1") is False


class TestTransitionHistory:
    """Test transition history lookups through the engine."""

    @pytest.mark.asyncio
    async def test_history_in_order(self, engine: StateMachineEngine, clock: FakeClock):
        await engine.create_task("toy", "t1")
        await engine.transition_state("t1", "start")
        clock.advance(1)
        await engine.transition_state("t1", "start")
        clock.advance(1)
        await engine.transition_state("t1", "finish")

        history = engine.get_transition_history("t1")

        assert [(e.event, e.success) for e in history] == [
            ("start", True),
            ("start", False),
            ("finish", True),
        ]
        assert [e.event for e in engine.get_transition_history("t1", limit=1)] == ["finish"]

    @pytest.mark.asyncio
    async def test_history_per_type(self, engine: StateMachineEngine, persistence, clock):
        engine.register_strategy(OtherStrategy(persistence, clock=clock))
        await engine.create_task("toy", "shared")
        await engine.create_task("other", "shared")
        await engine.transition_state("shared", "start", task_type="toy")
        clock.advance(1)
        await engine.transition_state("shared", "finish", task_type="other")

        assert [e.event for e in engine.get_transition_history("shared")] == ["start", "finish"]
        assert [
            e.event for e in engine.get_transition_history("shared", task_type="other")
        ] == ["finish"]
        assert engine.get_transition_history("shared", task_type="missing") == []

    def test_unknown_task_has_empty_history(self, engine: StateMachineEngine):
        assert engine.get_transition_history("ghost") == []
