"""
Structured Logging

Configures structlog for the engine:
- JSON or console rendering
- Log level filtering
- Bound job/component context
"""

from enum import Enum
import logging
import sys

import structlog


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def configure_logging(level: str | LogLevel = LogLevel.INFO, json_logs: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level to emit
        json_logs: Render JSON lines instead of the console format
    """
    level_name = level.value if isinstance(level, LogLevel) else str(level)
    numeric_level = getattr(logging, level_name.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str | None = None, **context) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, optionally bound to a component and context."""
    logger = structlog.get_logger(component or "careflow")
    if component:
        context = {"component": component, **context}
    return logger.bind(**context) if context else logger
