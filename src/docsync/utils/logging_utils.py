"""Logging utilities for docsync.

Structured logging is provided by structlog. Console output is rendered in a
compact column layout; JSON rendering is used for log files and whenever
``json_logs`` is requested, so that task and retry context can be shipped to a
log collector unchanged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import structlog
from structlog.dev import Column
from structlog.processors import CallsiteParameter, CallsiteParameterAdder

if TYPE_CHECKING:
    from docsync.config.components import LoggingConfig

# Prevent logging output before setup_logging configures handlers
logging.getLogger().addHandler(logging.NullHandler())

NOISY_LOGGERS = ["sqlalchemy.engine", "httpx", "urllib3", "openai"]


class DocSyncLogger:
    """Logger adapter that tags records with a subsystem and structured extras.

    Keyword arguments that the standard library does not understand are moved
    into ``extra`` so callers can write ``logger.info("msg", doc_id=doc_id)``.
    """

    _STDLIB_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def __init__(self, base_logger: logging.Logger) -> None:
        self._base_logger = base_logger

    def log(
        self,
        level: int,
        msg: str,
        *args: Any,
        subsystem: str = "DocSync",
        **kwargs: Any,
    ) -> None:
        """Log a message with optional subsystem context."""
        extra = dict(kwargs.pop("extra", None) or {})
        for key in [k for k in kwargs if k not in self._STDLIB_KWARGS]:
            extra[key] = kwargs.pop(key)
        extra["subsystem"] = subsystem
        stacklevel = kwargs.pop("stacklevel", 1)
        self._base_logger.log(
            level,
            msg,
            *args,
            extra=extra,
            stacklevel=stacklevel + 1,
            **kwargs,
        )

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, *args, stacklevel=2, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.INFO, msg, *args, stacklevel=2, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.WARNING, msg, *args, stacklevel=2, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.ERROR, msg, *args, stacklevel=2, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Delegate ``ERROR`` messages with exception info."""
        kwargs.setdefault("exc_info", True)
        self.log(logging.ERROR, msg, *args, stacklevel=2, **kwargs)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._base_logger, name)


_base_logger: logging.Logger = logging.getLogger("docsync")

logger: DocSyncLogger = DocSyncLogger(_base_logger)


def uppercase_level(
    _logger: logging.Logger, _name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Ensure the ``level`` field is uppercase."""
    level = event_dict.get("level")
    if level is not None:
        event_dict["level"] = str(level).upper()
    return event_dict


def insert_logger_name(
    _logger: logging.Logger, _name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Render the subsystem in place of the dotted logger name when present."""
    subsystem = event_dict.pop("subsystem", None)
    logger_name = event_dict.pop("logger", None)
    if subsystem or logger_name:
        event_dict["logger_name"] = subsystem or logger_name
    return event_dict


def format_location(
    _logger: logging.Logger, _name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Format filename and line number as (file.py:123)."""
    filename = event_dict.pop("filename", None)
    lineno = event_dict.pop("lineno", None)

    if filename and lineno:
        event_dict["location"] = f"({filename}:{lineno})"

    return event_dict


def _console_columns() -> list[Column]:
    def plain(_key: str, value: Any) -> str:
        return str(value) if value is not None else ""

    def bracketed(_key: str, value: Any) -> str:
        return f"[{value}]" if value else ""

    def dimmed(_key: str, value: Any) -> str:
        return f"\033[90m{value}\033[0m" if value else ""

    return [
        Column("timestamp", dimmed),
        Column("level", bracketed),
        Column("logger_name", bracketed),
        Column("event", plain),
        Column("location", dimmed),
        Column(
            "",
            structlog.dev.KeyValueColumnFormatter(
                key_style=None, value_style="", reset_style="", value_repr=str
            ),
        ),
    ]


def setup_logging(
    log_file: str | None = None,
    log_level: int = logging.INFO,
    json_logs: bool = False,
) -> None:
    """Configure structlog and standard logging.

    Args:
        log_file: Optional path to a log file. File output is always JSON.
        log_level: Logging level.
        json_logs: Emit JSON logs to the console if True.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    timestamper = structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S")
    callsite = CallsiteParameterAdder(
        [CallsiteParameter.FILENAME, CallsiteParameter.LINENO],
        additional_ignores=["docsync.utils.logging_utils"],
    )

    pre_chain = [
        structlog.stdlib.add_log_level,
        uppercase_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        timestamper,
        callsite,
        insert_logger_name,
        format_location,
    ]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=pre_chain,
            ),
        )
        root_logger.addHandler(file_handler)

    console_processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(
            colors=True, sort_keys=False, columns=_console_columns()
        )
    )
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=console_processor,
            foreign_pre_chain=pre_chain,
        ),
    )
    root_logger.addHandler(console_handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            uppercase_level,
            timestamper,
            callsite,
            insert_logger_name,
            format_location,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )


def get_logger() -> DocSyncLogger:
    """Get the configured docsync logger."""
    return logger


def configure_logging(config: LoggingConfig) -> None:
    """Apply a :class:`~docsync.config.components.LoggingConfig`."""
    setup_logging(
        log_file=config.log_file,
        log_level=getattr(logging, config.level.upper(), logging.INFO),
        json_logs=config.json_logs,
    )
