"""Structured logging for the watchdog process.

Transitions, liveliness events and diagnoses are logged as one JSON object
per line so that failure reports can be correlated with the heartbeat
history afterwards. ``console`` rendering is meant for interactive runs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import structlog

LOG_FORMATS = ("json", "console")


def resolve_level(level: str) -> int:
    """Map a level name such as ``"info"`` to its numeric value."""
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"unknown log level {level!r}")
    return value


def _renderer(log_format: str):
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=False)
    raise ValueError(f"unknown log format {log_format!r}, expected one of {LOG_FORMATS}")


def setup_logging(
    level: str = "INFO",
    node_id: Optional[str] = None,
    component: Optional[str] = None,
    log_path: Optional[str | Path] = None,
    log_format: str = "json",
) -> structlog.BoundLogger:
    """Route structlog through the stdlib root logger and return a bound logger.

    Events go to ``log_path`` when given (parent directories are created),
    otherwise to stderr.
    """
    renderer = _renderer(log_format)

    if log_path:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(path, encoding="utf-8")
    else:
        handler = logging.StreamHandler()

    logging.basicConfig(
        level=resolve_level(level),
        format="%(message)s",
        handlers=[handler],
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    if node_id:
        # Carried by every logger, including the module-level ones
        structlog.contextvars.bind_contextvars(node_id=node_id)

    logger = structlog.get_logger()
    if component:
        logger = logger.bind(component=component)
    return logger


def get_logger(name: str, **context: Any) -> structlog.BoundLogger:
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger
