"""
Structured Logging

Features:
- JSON or console rendered logs
- Level filtering from settings
- Context binding per component
"""

from enum import Enum
import logging
import sys

import structlog

from pawscript.config import EngineSettings, get_settings


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _level_number(level: str) -> int:
    try:
        return logging.getLevelName(LogLevel(level.lower()).value.upper())
    except ValueError:
        return logging.INFO


def configure_logging(settings: EngineSettings | None = None) -> None:
    """
    Install the structlog processor chain.

    Args:
        settings: Engine settings; defaults to the cached settings
    """
    settings = settings or get_settings()

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.log_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_level_number(settings.log_level)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str = None):
    """Get a structured logger, optionally bound to a component."""
    logger = structlog.get_logger("pawscript")
    if component:
        return logger.bind(component=component)
    return logger
