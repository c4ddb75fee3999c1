"""structlog setup and event helpers shared by breakers, listeners and jobs."""

from __future__ import annotations

import logging
import sys
from typing import Literal, Protocol

import structlog

_LEVEL_NAMES = ("CRITICAL", "DEBUG", "ERROR", "INFO", "WARNING")

_StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]


class StructuredLogger(Protocol):
    """Anything accepting an event name plus keyword fields."""

    def info(self, event: str, **kwargs: object) -> None: ...

    def warning(self, event: str, **kwargs: object) -> None: ...

    def exception(self, event: str, **kwargs: object) -> None: ...


LoggerLike = StructuredLogger | _StdlibLogger


def get_log_level_value(level: str) -> int:
    """Translate a level name such as ``"info"`` into its stdlib number."""
    name = level.strip().upper()
    if name not in _LEVEL_NAMES:
        raise ValueError(f"log_level must be one of: {', '.join(_LEVEL_NAMES)}")
    return logging.getLevelNamesMapping()[name]


def _emit(
    logger: LoggerLike,
    method: Literal["info", "warning", "exception"],
    event: str,
    fields: dict[str, object],
) -> None:
    # stdlib loggers reject arbitrary keywords; fields travel as record attributes.
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        getattr(logger, method)(event, extra=fields)
    else:
        getattr(logger, method)(event, **fields)


def log_info(logger: LoggerLike, event: str, **fields: object) -> None:
    _emit(logger, "info", event, fields)


def log_warning(logger: LoggerLike, event: str, **fields: object) -> None:
    _emit(logger, "warning", event, fields)


def log_exception(logger: LoggerLike, event: str, **fields: object) -> None:
    """Log ``event`` with the exception currently being handled attached."""
    _emit(logger, "exception", event, fields)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.stdlib.get_logger(name)


def configure_structlog(*, log_level: str) -> structlog.stdlib.BoundLogger:
    """Route structlog and stdlib records through one stderr handler.

    Output is rendered for humans on a terminal and as JSON lines otherwise.
    Calling it again replaces the previous root handler.
    """
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty()
        else structlog.processors.JSONRenderer()
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_log_level,
                timestamper,
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    logging.basicConfig(
        format="%(message)s",
        handlers=[handler],
        level=get_log_level_value(log_level),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.get_logger()
