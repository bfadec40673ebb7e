"""Centralized logging configuration for the synchronization job."""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from table_sync.models.config import LoggingConfig


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Configure structured logging for the application.

    This function sets up structlog with:
    - Context variables bound per table (table_name, run_id)
    - JSON formatting for production (when json_logs=True)
    - Console formatting for development (when json_logs=False)
    - Optional file output with rotation

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON logs. If False, use console format.
        log_file: Optional path to log file. If None, logs only to stdout.

    Example:
        >>> configure_logging(log_level="DEBUG", json_logs=False)
        >>> log = structlog.stdlib.get_logger()
        >>> log.info("sync_cycle_started", table_count=3)
    """
    # Convert log level string to logging constant
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Configure standard library logging; force replaces handlers from an earlier call
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        stream=sys.stdout,
        force=True,
    )

    # Add file handler if log_file is specified
    if log_file:
        from logging.handlers import RotatingFileHandler

        # Max size: 10MB, keep 5 backup files
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(numeric_level)
        logging.root.addHandler(file_handler)

    # Configure structlog processors
    processors: list[Any] = [
        # Merge table_name, run_id and attempt bound by bind_sync_context
        structlog.contextvars.merge_contextvars,
        # Add log level to event dict
        structlog.stdlib.add_log_level,
        # Add logger name to event dict
        structlog.stdlib.add_logger_name,
        # Add timestamp to event dict
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        # Add stack info for exceptions
        structlog.processors.StackInfoRenderer(),
        # Format exceptions
        structlog.processors.format_exc_info,
        # Add call site information (file, line, function)
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ],
        ),
    ]

    # Add appropriate renderer based on json_logs setting
    if json_logs:
        # JSON renderer for scheduled runs
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Console renderer for development
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    # Configure structlog
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging_from(config: LoggingConfig) -> None:
    """Configure logging from the `logging` section of the application config."""
    configure_logging(
        log_level=config.log_level,
        json_logs=config.json_logs,
        log_file=config.log_file,
    )


@contextmanager
def bind_sync_context(**context: Any) -> Iterator[None]:
    """
    Bind key/value pairs to every log event emitted inside the block.

    Example:
        >>> with bind_sync_context(table_name="EXAM_SUBJECTS"):
        ...     log.info("sync_table_started")
    """
    with structlog.contextvars.bound_contextvars(**context):
        yield

