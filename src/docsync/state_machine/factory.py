"""Factory for task stores."""

from docsync.config.components import PersistenceConfig
from docsync.state_machine.persistence import InMemoryStatePersistence
from docsync.state_machine.protocols import StatePersistence
from docsync.state_machine.sql_persistence import SQLAlchemyStatePersistence
from docsync.utils.clock import ClockProtocol
from docsync.utils.exceptions import InvalidConfigurationError


def create_state_persistence(
    config: PersistenceConfig | None = None,
    clock: ClockProtocol | None = None,
) -> StatePersistence:
    """Create the task store selected by ``config.backend``."""
    config = config or PersistenceConfig()
    if config.backend == "memory":
        return InMemoryStatePersistence(clock)
    if config.backend == "sqlalchemy":
        return SQLAlchemyStatePersistence(config.database_url, clock=clock, echo=config.echo_sql)
    raise InvalidConfigurationError("persistence.backend", config.backend, "memory or sqlalchemy")
