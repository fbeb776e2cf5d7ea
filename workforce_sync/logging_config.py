"""
Structured logging configuration for the sync service and its CLI.

Uses structlog for JSON-formatted logs suitable for log aggregation systems.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    service_name: str = "workforce-sync",
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON format (production). If False, pretty console format (dev)
        service_name: Service name for log context
    """
    # stdlib handlers only carry the rendered line
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Processors every event passes through, whatever the output format
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,  # bound service / upload context
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,  # module that logged it
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,  # tracebacks from log_error
        structlog.processors.UnicodeDecoder(),  # bytes to str
    ]

    if json_logs:
        # One JSON object per line for the collector
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        # Local runs of the CLI
        shared_processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Every event is tagged with the service name
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_error(
    logger: structlog.BoundLogger,
    error: Exception,
    context: dict[str, Any] | None = None,
) -> None:
    """Log error with full context."""
    logger.error(
        "error_occurred",
        error_type=type(error).__name__,
        error_message=str(error),
        exc_info=True,
        **(context or {}),
    )


def log_ingestion(
    logger: structlog.BoundLogger,
    collection: str,
    source_file: str | None,
    written: int,
    matched: int,
    ambiguous: int,
    unmatched: int,
    **kwargs: Any,
) -> None:
    """Log the summary of one ingestion run."""
    logger.info(
        "ingestion_completed",
        collection=collection,
        source_file=source_file,
        written=written,
        matched=matched,
        ambiguous=ambiguous,
        unmatched=unmatched,
        **kwargs,
    )


def log_propagation(
    logger: structlog.BoundLogger,
    action: str,
    collection: str,
    doc_id: str,
    person_id: str | None,
    writes: int,
    **kwargs: Any,
) -> None:
    """Log one propagation decision."""
    logger.info(
        "propagation_handled",
        action=action,
        collection=collection,
        doc_id=doc_id,
        person_id=person_id,
        writes=writes,
        **kwargs,
    )
