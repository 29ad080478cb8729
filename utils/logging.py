# utils/logging.py

"""Logging helpers for the story-sync system."""

from __future__ import annotations

import logging
import logging.handlers
import os

import structlog
from config import settings
from rich.logging import RichHandler

logger = structlog.get_logger(__name__)

# Third-party loggers that are only interesting when something goes wrong.
QUIET_LOGGERS = ("neo4j", "neo4j.notifications", "httpx", "httpcore")

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

__all__ = ["setup_logging"]


def _log_file_path() -> str | None:
    if not settings.LOG_FILE:
        return None
    if os.path.isabs(settings.LOG_FILE):
        return settings.LOG_FILE
    return os.path.join(settings.LOCAL_STORE_DIR, settings.LOG_FILE)


def _file_handler(path: str) -> logging.Handler:
    log_dir = os.path.dirname(path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(
        logging.Formatter(settings.LOG_FORMAT, datefmt=settings.LOG_DATE_FORMAT)
    )
    return handler


def _console_handler(level: str) -> logging.Handler:
    if settings.ENABLE_RICH_CONSOLE:
        # Queue ids contain brackets; markup would swallow them.
        return RichHandler(
            level=level, rich_tracebacks=True, show_path=False, markup=False
        )
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(settings.LOG_FORMAT, datefmt=settings.LOG_DATE_FORMAT)
    )
    return handler


def setup_logging(level: str | None = None) -> None:
    """Route structlog through stdlib logging to a rotating file and the console."""
    level = level or settings.LOG_LEVEL_STR
    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.render_to_log_kwargs,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    file_path = _log_file_path()
    if file_path:
        try:
            root_logger.addHandler(_file_handler(file_path))
        except Exception as e:
            logger.error("Error setting up file logger: %s", e)

    root_logger.addHandler(_console_handler(level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging setup complete.", log_level=level, log_file=file_path)
