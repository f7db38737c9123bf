from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from enum import StrEnum
from typing import Literal, Protocol

import structlog

_LOG_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Substrings of event keys whose values never reach the log output.
_SECRET_KEY_MARKERS = ("token", "password", "secret", "authorization")
_REDACTED = "***"

_StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]
_Level = Literal["info", "warning", "error", "exception", "critical"]


class LogFormat(StrEnum):
    """Renderer selection for process log output."""

    AUTO = "auto"
    JSON = "json"
    CONSOLE = "console"


class StructuredLogger(Protocol):
    """Anything that accepts an event name plus keyword fields per level."""

    def info(self, event: str, **kwargs: object) -> None: ...

    def warning(self, event: str, **kwargs: object) -> None: ...

    def error(self, event: str, **kwargs: object) -> None: ...

    def exception(self, event: str, **kwargs: object) -> None: ...

    def critical(self, event: str, **kwargs: object) -> None: ...


def get_log_level_value(level: str) -> int:
    """Map a level name such as ``" info "`` to its stdlib constant."""
    try:
        return _LOG_LEVELS[level.strip().upper()]
    except KeyError as error:
        choices = ", ".join(sorted(_LOG_LEVELS))
        raise ValueError(f"log_level must be one of: {choices}") from error


def redact_secrets(
    _: object,
    __: str,
    event_dict: MutableMapping[str, object],
) -> MutableMapping[str, object]:
    """Mask values of credential-looking keys before rendering."""
    for key in event_dict:
        lowered = key.lower()
        if any(marker in lowered for marker in _SECRET_KEY_MARKERS):
            event_dict[key] = _REDACTED
    return event_dict


def _emit(
    logger: StructuredLogger | _StdlibLogger,
    level: _Level,
    event: str,
    fields: dict[str, object],
) -> None:
    method = getattr(logger, level)
    # stdlib loggers take structured fields through ``extra``; structlog and
    # the test doubles take them as keywords.
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        method(event, extra=fields)
    else:
        method(event, **fields)


def log_info(
    logger: StructuredLogger | _StdlibLogger, event: str, **fields: object
) -> None:
    _emit(logger, "info", event, fields)


def log_warning(
    logger: StructuredLogger | _StdlibLogger, event: str, **fields: object
) -> None:
    _emit(logger, "warning", event, fields)


def log_error(
    logger: StructuredLogger | _StdlibLogger, event: str, **fields: object
) -> None:
    _emit(logger, "error", event, fields)


def log_exception(
    logger: StructuredLogger | _StdlibLogger, event: str, **fields: object
) -> None:
    """Like :func:`log_error` but attaches the active traceback."""
    _emit(logger, "exception", event, fields)


def log_critical(
    logger: StructuredLogger | _StdlibLogger, event: str, **fields: object
) -> None:
    """Log an event that needs operator attention, e.g. a stuck job."""
    _emit(logger, "critical", event, fields)


@contextmanager
def sync_log_context(*, sync_job_id: str, job_type: str) -> Iterator[None]:
    """Tag every event logged inside the block with the running sync job."""
    with structlog.contextvars.bound_contextvars(
        sync_job_id=sync_job_id, job_type=job_type
    ):
        yield


def _renderer_for(log_format: LogFormat) -> structlog.types.Processor:
    if log_format == LogFormat.CONSOLE:
        return structlog.dev.ConsoleRenderer()
    if log_format == LogFormat.JSON:
        return structlog.processors.JSONRenderer()
    if sys.stderr.isatty():
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_structlog(
    *,
    log_level: str,
    log_format: LogFormat | str = LogFormat.AUTO,
) -> structlog.stdlib.BoundLogger:
    """Route structlog and stdlib logging through one stderr handler.

    Safe to call repeatedly; the root handler is replaced each time. Values
    bound with ``structlog.contextvars`` (see :func:`sync_log_context`) and
    stdlib ``extra`` fields both end up in the rendered event, and
    credential-looking keys are masked.

    Args:
        log_level: Level name, case-insensitive.
        log_format: ``auto`` picks the console renderer on a TTY and JSON
            otherwise.
    """
    level_value = get_log_level_value(log_level)
    renderer = _renderer_for(LogFormat(log_format))
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    foreign_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.ExtraAdder(),
        structlog.stdlib.add_log_level,
        timestamper,
        redact_secrets,
    ]
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=foreign_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    logging.basicConfig(
        format="%(message)s", handlers=[handler], level=level_value, force=True
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            timestamper,
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.get_logger()
