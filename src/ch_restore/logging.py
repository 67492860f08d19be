"""Structured logging for ch-restore using structlog.

Every restore binds ``backup=`` and ``phase=`` into the context so that each
event of a run can be traced back to the backup and step that produced it.
"""

from __future__ import annotations

import logging
import logging.handlers
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

from ch_restore.core.models import LogFormat

_SECRET_KEYS = ("password", "secret", "token", "authorization", "clickhouse_key")
_SQL_KEYS = frozenset({"query", "sql", "create_query"})
# Dictionary sources and CREATE USER statements carry credentials inline.
_SQL_SECRET_RE = re.compile(
    r"(\b(?:PASSWORD|IDENTIFIED(?:\s+WITH\s+\w+)?\s+BY)\s+)'(?:[^'\\]|\\.)*'",
    re.IGNORECASE,
)
_REDACTED = "***REDACTED***"
_NOISY_LOGGERS = ("httpx", "httpcore")
_LOG_FILE_BYTES = 10 * 1024 * 1024
_LOG_FILE_BACKUPS = 5


def redact_secrets(
        _logger: logging.Logger,
        _method: str,
        event_dict: dict,
) -> dict:
    """Hide credential values and inline SQL credentials."""
    for key, value in event_dict.items():
        lowered = key.lower().replace("-", "_")
        if any(s in lowered for s in _SECRET_KEYS):
            event_dict[key] = _REDACTED
        elif lowered in _SQL_KEYS and isinstance(value, str):
            event_dict[key] = _SQL_SECRET_RE.sub(rf"\1'{_REDACTED}'", value)
    return event_dict


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )


def _console_renderer(log_format: LogFormat) -> structlog.types.Processor:
    if log_format == LogFormat.JSON:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(
        level: str = "INFO",
        log_format: LogFormat = LogFormat.CONSOLE,
        log_file: Path | None = None,
) -> None:
    """Route structlog events through stdlib logging to stderr and, optionally, a file.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Rendering of stderr output. The log file is always JSON.
        log_file: Optional rotating log file. Parent dirs are created.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            redact_secrets,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_formatter(_console_renderer(log_format)))
    handlers: list[logging.Handler] = [stderr_handler]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=_LOG_FILE_BYTES, backupCount=_LOG_FILE_BACKUPS, encoding="utf-8"
        )
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers[:] = handlers
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # one INFO line per HTTP round trip otherwise
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_restore_context(backup: str) -> None:
    """Start a new logging context for a restore of *backup*."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(backup=backup)


@contextmanager
def restore_phase(phase: str) -> Iterator[None]:
    """Tag events emitted inside the block with ``phase=``."""
    with structlog.contextvars.bound_contextvars(phase=phase):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
