"""
Structured Logging Module
=========================

Provides structured logging using structlog with JSON output for CI logs
and colored console output for interactive use.

Usage:
    from app_runner.utils.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Connected to device", platform="Xbox", target="192.168.1.100")
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import Processor

from app_runner import __version__
from app_runner.config import get_settings


def add_app_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """
    Add application context to log entries.

    Args:
        logger: The wrapped logger object.
        method_name: The name of the log method called.
        event_dict: The event dictionary to process.

    Returns:
        The modified event dictionary.
    """
    event_dict["app"] = "app-runner"
    event_dict["version"] = __version__
    return event_dict


def setup_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configure structured logging for the application.

    Sets up structlog with processors chosen by output mode:
    - Console: Colored output with rich tracebacks
    - JSON: One JSON object per line for log aggregation

    Args:
        level: Log level name; defaults to LOG_LEVEL.
        json_logs: Force JSON output; defaults to LOG_JSON.
    """
    settings = get_settings()
    level = (level or settings.logging.log_level).upper()
    if json_logs is None:
        json_logs = settings.logging.log_json

    # Shared processors for all output modes
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
    ]

    if json_logs:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.rich_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Also configure standard library logging for third-party libs
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level),
    )

    # Reduce noise from common libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("filelock").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: The name for the logger, typically __name__.

    Returns:
        A bound structlog logger instance.
    """
    return structlog.get_logger(name)


class LogContext:
    """
    Context manager for adding temporary context to logs.

    Usage:
        with LogContext(platform="Xbox", resource="Xbox-Default"):
            logger.info("Running app")  # Will include platform and resource
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        """Enter the context, binding variables."""
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit the context, unbinding variables."""
        structlog.contextvars.unbind_contextvars(*self.context.keys())
