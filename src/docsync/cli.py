#!/usr/bin/env python3
"""Operator CLI for inspecting and maintaining durable sync job state."""

import asyncio
import os
import sys
from dataclasses import replace
from datetime import UTC, datetime
from enum import Enum

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from docsync.config import DocSyncConfig
from docsync.state_machine.models import Task
from docsync.state_machine.sql_persistence import SQLAlchemyStatePersistence
from docsync.sync.models import DOCUMENT_SYNC_TASK_TYPE, TERMINAL_STATUSES, SyncJobStatus
from docsync.utils.exceptions import DocSyncError
from docsync.utils.logging_utils import configure_logging, get_logger

logger = get_logger()

console = Console()

app = typer.Typer(
    name="docsync",
    help="Inspect and maintain document sync jobs",
    add_completion=False,
    context_settings={"help_option_names": ["--help", "-h"]},
)

STATUS_STYLES = {
    SyncJobStatus.SYNCED.value: "green",
    SyncJobStatus.DEAD.value: "red",
    SyncJobStatus.FAILED.value: "yellow",
    SyncJobStatus.RETRYING.value: "yellow",
    SyncJobStatus.PAUSED.value: "blue",
}


class LogLevel(str, Enum):
    """Log levels for the CLI."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class GlobalState:
    """Global state for the CLI."""

    database_url: str | None = None


state = GlobalState()


def _open_store() -> SQLAlchemyStatePersistence:
    config = DocSyncConfig.from_env()
    database_url = state.database_url or config.persistence.database_url
    logger.debug(f"Opening task store at {database_url}", subsystem="CLI")
    return SQLAlchemyStatePersistence(database_url, echo=config.persistence.echo_sql)


def _format_ms(value: int | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M:%S")


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


@app.callback()
def main(
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        "-d",
        help="SQLAlchemy URL of the task store (defaults to DOCSYNC_DATABASE_URL)",
    ),
    log_level: LogLevel | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Set the logging level (defaults to DOCSYNC_LOG_LEVEL, else WARNING)",
    ),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON"),
) -> None:
    """Inspect and maintain document sync jobs."""
    load_dotenv()
    logging_config = DocSyncConfig.from_env().logging
    configure_logging(
        replace(
            logging_config,
            level=log_level.value if log_level else os.getenv("DOCSYNC_LOG_LEVEL", "WARNING"),
            json_logs=json_logs or logging_config.json_logs,
        )
    )
    state.database_url = database_url


@app.command()
def jobs(
    status: SyncJobStatus | None = typer.Option(
        None, "--status", "-s", help="Only show jobs with this status"
    ),
    limit: int = typer.Option(50, "--limit", "-n", min=1, help="Maximum rows to show"),
) -> None:
    """List sync jobs."""
    store = _open_store()
    try:
        if status is None:
            tasks = asyncio.run(store.get_tasks_by_type(DOCUMENT_SYNC_TASK_TYPE))
        else:
            tasks = asyncio.run(store.get_tasks_by_status(status.value, DOCUMENT_SYNC_TASK_TYPE))
    except DocSyncError as e:
        _fail(str(e))
        return
    finally:
        store.close()

    if not tasks:
        console.print("[yellow]No sync jobs found[/yellow]")
        return

    table = Table(title=f"Sync Jobs ({len(tasks)})")
    table.add_column("Document", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Retries", justify="right", style="magenta")
    table.add_column("Progress", justify="right", style="blue")
    table.add_column("Updated", style="yellow")
    table.add_column("Error", style="white")

    for task in sorted(tasks, key=lambda t: t.updated_at, reverse=True)[:limit]:
        style = STATUS_STYLES.get(task.status, "white")
        table.add_row(
            task.id,
            f"[{style}]{task.status}[/{style}]",
            str(task.retries),
            f"{task.progress}%",
            _format_ms(task.updated_at),
            task.error or "",
        )
    console.print(table)


@app.command()
def show(doc_id: str = typer.Argument(..., help="Document id")) -> None:
    """Show one sync job in detail."""
    store = _open_store()
    try:
        task: Task | None = asyncio.run(store.get_task(doc_id, DOCUMENT_SYNC_TASK_TYPE))
    finally:
        store.close()

    if task is None:
        _fail(f"No sync job for document {doc_id}")
        return

    table = Table(title=f"Sync Job {doc_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field_name, value in task.to_dict().items():
        if field_name.endswith("_at"):
            value = _format_ms(value)
        table.add_row(field_name, str(value))
    console.print(table)


@app.command()
def stats() -> None:
    """Show the number of sync jobs in each status."""
    store = _open_store()
    try:
        tasks = asyncio.run(store.get_tasks_by_type(DOCUMENT_SYNC_TASK_TYPE))
    finally:
        store.close()

    table = Table(title="Sync Job Status")
    table.add_column("Status", style="cyan")
    table.add_column("Jobs", justify="right", style="magenta")
    for job_status in SyncJobStatus:
        count = sum(1 for t in tasks if t.status == job_status.value)
        table.add_row(job_status.value, str(count))
    table.add_row("[bold]TOTAL[/bold]", f"[bold]{len(tasks)}[/bold]")
    console.print(table)


@app.command()
def cleanup(
    older_than_hours: float = typer.Option(
        24.0, "--older-than-hours", "-o", min=0, help="Retention window in hours"
    ),
) -> None:
    """Delete SYNCED and DEAD jobs older than the retention window."""
    store = _open_store()
    try:
        deleted = asyncio.run(
            store.cleanup_expired_tasks(
                int(older_than_hours * 3600 * 1000),
                {DOCUMENT_SYNC_TASK_TYPE: TERMINAL_STATUSES},
            )
        )
    except DocSyncError as e:
        _fail(str(e))
        return
    finally:
        store.close()

    console.print(f"[green]Removed {deleted} finished sync jobs[/green]")


if __name__ == "__main__":
    app()
