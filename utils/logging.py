# utils/logging.py

"""Logging setup for the generation core.

structlog renders keyword events into stdlib ``logging`` records, so the
handlers configured here receive every message from both worlds.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

import structlog
from config import settings
from rich.logging import RichHandler

logger = structlog.get_logger(__name__)

__all__ = ["setup_logging"]

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Chatty at INFO; only their warnings are worth keeping.
NOISY_LOGGERS = (
    "neo4j",
    "neo4j.notifications",
    "httpx",
    "httpcore",
    "qdrant_client",
)

_PROCESSORS = [
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
    structlog.stdlib.render_to_log_kwargs,
]


def _plain_formatter() -> logging.Formatter:
    return logging.Formatter(settings.LOG_FORMAT, datefmt=settings.LOG_DATE_FORMAT)


def _resolve_log_path(log_file: str) -> Path:
    path = Path(log_file)
    if not path.is_absolute():
        path = Path(settings.BASE_OUTPUT_DIR) / path
    return path


def _file_handler(log_file: str) -> logging.Handler | None:
    path = _resolve_log_path(log_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
    except OSError as e:  # pragma: no cover - path issues
        logger.error("Could not open log file", path=str(path), error=str(e))
        return None
    handler.setFormatter(_plain_formatter())
    return handler


def _console_handler() -> logging.Handler:
    if settings.ENABLE_RICH_CONSOLE:
        return RichHandler(
            level=settings.LOG_LEVEL_STR,
            rich_tracebacks=True,
            show_path=False,
            markup=False,
        )
    handler = logging.StreamHandler()
    handler.setFormatter(_plain_formatter())
    return handler


def setup_logging() -> None:
    """Route structlog through stdlib logging and install the handlers.

    Safe to call more than once; existing root handlers are replaced.
    """
    structlog.configure(
        processors=list(_PROCESSORS),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(settings.LOG_LEVEL_STR)

    if settings.LOG_FILE:
        file_handler = _file_handler(settings.LOG_FILE)
        if file_handler is not None:
            root_logger.addHandler(file_handler)
    root_logger.addHandler(_console_handler())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger().info(
        "Logging configured",
        level=settings.LOG_LEVEL_STR,
        log_file=settings.LOG_FILE or None,
        rich_console=settings.ENABLE_RICH_CONSOLE,
    )
