"""Small strategies used to exercise the generic engine."""

from docsync.state_machine.strategy import BaseStrategy


class ToyStrategy(BaseStrategy):
    """NEW -> RUNNING -> DONE, with FAILED/retry, pause and cancel edges."""

    strategy_id = "toy"
    transitions = {
        "NEW": {"start": "RUNNING", "pause": "PAUSED", "cancel": "CANCELLED"},
        "RUNNING": {"finish": "DONE", "fail": "FAILED", "cancel": "CANCELLED"},
        "FAILED": {"retry": "RUNNING", "pause": "PAUSED", "cancel": "CANCELLED"},
        "PAUSED": {"resume": "NEW", "cancel": "CANCELLED"},
    }

    def __init__(self, persistence, *, clock=None, failing=()):
        super().__init__(persistence, clock=clock)
        self.failing = set(failing)
        self.executed: list[str] = []

    async def execute_task(self, task_id: str) -> None:
        task = await self.require_task(task_id)
        self.executed.append(task_id)
        if task.status == "NEW":
            await self.mark_task_started(task_id)
            await self.handle_transition(task_id, "start")
        if task_id in self.failing:
            raise RuntimeError(f"toy failure for {task_id}")
        await self.update_progress(task_id, 100)
        await self.handle_transition(task_id, "finish")

    async def handle_error(self, task_id: str, error: Exception) -> None:
        await super().handle_error(task_id, error)
        await self.handle_transition(task_id, "fail")


class OtherStrategy(BaseStrategy):
    """Second task type sharing ids with :class:`ToyStrategy`."""

    strategy_id = "other"
    transitions = {"NEW": {"finish": "DONE"}}

    async def execute_task(self, task_id: str) -> None:
        await self.handle_transition(task_id, "finish")


class BrokenHandlerStrategy(ToyStrategy):
    """Error handler that itself fails."""

    strategy_id = "broken"

    async def handle_error(self, task_id: str, error: Exception) -> None:
        raise ValueError("handler exploded")
