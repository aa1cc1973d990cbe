"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import BoundLogger

from branchqueue.core.config import settings


def configure_logging() -> None:
    """Configure structured logging with JSON output."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.INFO if not settings.debug else logging.DEBUG,
    )

    # Set log levels for third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


def get_logger(name: str) -> BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_appointment(logger: BoundLogger, appointment_id: int, **extra: Any) -> BoundLogger:
    """Bind appointment context to a logger."""
    return logger.bind(appointment_id=appointment_id, **extra)


def log_error(logger: BoundLogger, error: Exception, request_id: str = None,
              context: dict[str, Any] = None) -> None:
    """Log error with enhanced context."""
    logger.error(
        "Application error",
        error=str(error),
        error_type=type(error).__name__,
        request_id=request_id,
        context=context or {}
    )
