"""Durable task store backed by SQLAlchemy.

Task records are stored verbatim in a single table so that task state
survives a process restart. SQLAlchemy sessions are synchronous; every public
method runs its session work in a worker thread via :func:`asyncio.to_thread`
so the event loop is never blocked by database I/O.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Collection, Mapping
from pathlib import Path
from typing import Any, TypeVar

from sqlalchemy import (
    JSON,
    BigInteger,
    Index,
    Integer,
    String,
    Text,
    and_,
    create_engine,
    delete,
    make_url,
    or_,
    select,
)
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from docsync.state_machine.models import TASK_FIELDS, Task
from docsync.utils.clock import ClockProtocol, SystemClock
from docsync.utils.exceptions import PersistenceError, TaskNotFoundError
from docsync.utils.logging_utils import get_logger

logger = get_logger()

T = TypeVar("T")


class Base(DeclarativeBase):
    """Base class for task store models."""

    pass


class TaskRecord(Base):
    """Row representation of a :class:`Task`."""

    __tablename__ = "state_machine_tasks"

    task_type: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    retries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[int | None] = mapped_column(BigInteger)
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    started_at: Mapped[int | None] = mapped_column(BigInteger)
    completed_at: Mapped[int | None] = mapped_column(BigInteger)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    context: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_state_machine_tasks_status", "status"),
        Index("ix_state_machine_tasks_updated_at", "updated_at"),
    )

    def to_task(self) -> Task:
        return Task(
            id=self.id,
            task_type=self.task_type,
            status=self.status,
            retries=self.retries,
            last_attempt_at=self.last_attempt_at,
            error=self.error,
            created_at=self.created_at,
            updated_at=self.updated_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            progress=self.progress,
            context=dict(self.context or {}),
        )

    def apply(self, values: Mapping[str, Any]) -> None:
        for name, value in values.items():
            if name in ("id", "task_type"):
                continue
            setattr(self, name, dict(value) if name == "context" else value)

    def __repr__(self) -> str:
        return f"<TaskRecord(type='{self.task_type}', id='{self.id}', status={self.status})>"


def _is_locked_error(exc: BaseException) -> bool:
    return isinstance(exc, OperationalError) and "locked" in str(exc).lower()


# SQLite reports concurrent writers as "database is locked"; those are retried.
_retry_on_lock = retry(
    retry=retry_if_exception(_is_locked_error),
    wait=wait_exponential(multiplier=0.05, max=1),
    stop=stop_after_attempt(5),
    before_sleep=before_sleep_log(logging.getLogger("docsync"), logging.WARNING),
    reraise=True,
)


class SQLAlchemyStatePersistence:
    """Table-backed task store."""

    def __init__(
        self,
        database_url: str = "sqlite:///.docsync/state.db",
        *,
        clock: ClockProtocol | None = None,
        echo: bool = False,
    ) -> None:
        """Initialize the store and create the schema if needed.

        Args:
            database_url: SQLAlchemy database URL
            clock: Clock used to stamp ``updated_at``
            echo: Log all SQL statements
        """
        engine_kwargs: dict[str, Any] = {"echo": echo}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every worker thread sees the same database
                engine_kwargs["poolclass"] = StaticPool
            else:
                db_file = make_url(database_url).database
                if db_file:
                    Path(db_file).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._clock = clock or SystemClock()
        # Serializes session work when the static pool shares one connection
        self._lock = asyncio.Lock() if engine_kwargs.get("poolclass") is StaticPool else None

        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    async def _run(self, operation: str, func: Callable[[Session], T]) -> T:
        @_retry_on_lock
        def _in_session() -> T:
            with self.get_session() as session:
                result = func(session)
                session.commit()
                return result

        try:
            if self._lock is None:
                return await asyncio.to_thread(_in_session)
            async with self._lock:
                return await asyncio.to_thread(_in_session)
        except TaskNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Task store {operation} failed: {e}")
            raise PersistenceError(operation, original_error=e) from e

    async def get_task(self, task_id: str, task_type: str | None = None) -> Task | None:
        def _get(session: Session) -> Task | None:
            if task_type is not None:
                record = session.get(TaskRecord, (task_type, task_id))
            else:
                record = session.scalars(
                    select(TaskRecord)
                    .where(TaskRecord.id == task_id)
                    .order_by(TaskRecord.created_at)
                    .limit(1)
                ).first()
            return record.to_task() if record else None

        return await self._run("get", _get)

    async def get_tasks_by_status(
        self, status: str, task_type: str | None = None
    ) -> list[Task]:
        def _query(session: Session) -> list[Task]:
            stmt = select(TaskRecord).where(TaskRecord.status == status)
            if task_type is not None:
                stmt = stmt.where(TaskRecord.task_type == task_type)
            return [r.to_task() for r in session.scalars(stmt.order_by(TaskRecord.created_at))]

        return await self._run("query", _query)

    async def get_tasks_by_type(self, task_type: str) -> list[Task]:
        def _query(session: Session) -> list[Task]:
            stmt = (
                select(TaskRecord)
                .where(TaskRecord.task_type == task_type)
                .order_by(TaskRecord.created_at)
            )
            return [r.to_task() for r in session.scalars(stmt)]

        return await self._run("query", _query)

    async def get_all_tasks(self) -> list[Task]:
        def _query(session: Session) -> list[Task]:
            stmt = select(TaskRecord).order_by(TaskRecord.created_at)
            return [r.to_task() for r in session.scalars(stmt)]

        return await self._run("query", _query)

    async def save_task(self, task: Task) -> None:
        values = {name: getattr(task, name) for name in TASK_FIELDS}

        def _save(session: Session) -> None:
            record = session.get(TaskRecord, (task.task_type, task.id))
            if record is None:
                record = TaskRecord(id=task.id, task_type=task.task_type)
                session.add(record)
            record.apply(values)

        await self._run("save", _save)

    async def update_task(
        self, task_id: str, task_type: str, updates: Mapping[str, Any]
    ) -> Task:
        values = {**updates, "updated_at": self._clock.now_ms()}

        def _update(session: Session) -> Task:
            record = session.get(TaskRecord, (task_type, task_id))
            if record is None:
                raise TaskNotFoundError(task_id, task_type)
            record.apply(values)
            session.flush()
            return record.to_task()

        return await self._run("update", _update)

    async def delete_task(self, task_id: str, task_type: str) -> None:
        def _delete(session: Session) -> None:
            record = session.get(TaskRecord, (task_type, task_id))
            if record is None:
                raise TaskNotFoundError(task_id, task_type)
            session.delete(record)

        await self._run("delete", _delete)

    async def cleanup_expired_tasks(
        self,
        older_than_ms: int,
        terminal_statuses: Mapping[str, Collection[str]],
    ) -> int:
        cutoff = self._clock.now_ms() - older_than_ms
        conditions = [
            and_(TaskRecord.task_type == task_type, TaskRecord.status.in_(list(statuses)))
            for task_type, statuses in terminal_statuses.items()
            if statuses
        ]
        if not conditions:
            return 0

        def _cleanup(session: Session) -> int:
            result = session.execute(
                delete(TaskRecord).where(TaskRecord.updated_at < cutoff, or_(*conditions))
            )
            return result.rowcount or 0

        deleted = await self._run("cleanup", _cleanup)
        if deleted:
            logger.info(f"Removed {deleted} expired tasks from the task store")
        return deleted

    def close(self) -> None:
        """Dispose of the connection pool."""
        self.engine.dispose()
