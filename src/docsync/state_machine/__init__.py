"""Generic task state-machine engine.

The engine tracks tasks of any type and routes lifecycle calls to the
strategy registered for that type. Task records live in a pluggable store:
in memory by default, or a SQLAlchemy table for restart-survivable state.
"""

from docsync.state_machine.engine import StateMachineEngine
from docsync.state_machine.models import (
    EngineMetrics,
    Task,
    TransitionLogEntry,
    TransitionResult,
)
from docsync.state_machine.persistence import InMemoryStatePersistence
from docsync.state_machine.protocols import StatePersistence, TaskStrategy
from docsync.state_machine.sql_persistence import SQLAlchemyStatePersistence
from docsync.state_machine.strategy import BaseStrategy

__all__ = [
    "BaseStrategy",
    "EngineMetrics",
    "InMemoryStatePersistence",
    "SQLAlchemyStatePersistence",
    "StateMachineEngine",
    "StatePersistence",
    "Task",
    "TaskStrategy",
    "TransitionLogEntry",
    "TransitionResult",
]
