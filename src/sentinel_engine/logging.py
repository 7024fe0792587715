"""Logging configuration for the Sentinel engine.

Every module logs through :func:`get_logger`. Events are snake_case strings
with keyword fields; raw user content is never passed as a field.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from sentinel_engine.config import Settings, get_settings

_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _rotating_handler(path: str, settings: Settings, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def _file_handlers(settings: Settings, level: int) -> list[logging.Handler]:
    """Build the JSON file handlers, or none if the log directory is unusable."""
    if not settings.log_to_file:
        return []
    try:
        Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        handlers: list[logging.Handler] = [
            _rotating_handler(settings.log_file_path, settings, level)
        ]
        if settings.log_error_file_enabled:
            handlers.append(
                _rotating_handler(settings.error_log_file_path, settings, logging.WARNING)
            )
    except OSError as e:
        # Fall back to console-only logging
        print(f"Warning: Could not setup file logging: {e}", file=sys.stderr)
        return []
    return handlers


def _formatter(*, pretty: bool) -> structlog.stdlib.ProcessorFormatter:
    renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if pretty
        else structlog.processors.JSONRenderer()
    )
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,  # type: ignore[list-item]
        ]
    )


def setup_logging(level: str | None = None) -> None:
    """Configure structured logging with console and file outputs.

    Args:
        level: Optional level name overriding ``SENTINEL_LOG_LEVEL``.
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    logging.root.setLevel(log_level)

    # Console: colored in dev, JSON otherwise
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(_formatter(pretty=settings.is_development))
    logging.root.addHandler(console_handler)

    # Files: always JSON
    for handler in _file_handlers(settings, log_level):
        handler.setFormatter(_formatter(pretty=False))
        logging.root.addHandler(handler)

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
