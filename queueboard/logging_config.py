"""Structured logging configuration.

Purpose: JSON-formatted logs carrying clinic and request context.

Pattern: structlog with standard library integration, so module loggers
created with logging.getLogger(__name__) end up in the same stream.
"""
import logging
import sys
import uuid
from typing import Optional

import structlog


def setup_structured_logging(log_level: str = "INFO", stream=None):
    """
    Configure structured logging for the board.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        stream: Output stream (default: stdout)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )


def get_logger(name: str, clinic_id: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger, optionally bound to a clinic.

    Args:
        name: Logger name (usually __name__)
        clinic_id: Bound as ``clinic_id`` on every event

    Returns:
        Configured structlog logger
    """
    logger = structlog.get_logger(name)
    if clinic_id:
        logger = logger.bind(clinic_id=clinic_id)
    return logger


def generate_request_id() -> str:
    """Generate unique request ID."""
    return f"req-{uuid.uuid4().hex[:12]}"


class RequestIDMiddleware:
    """WSGI middleware that tags every request and response with an ID.

    An incoming X-Request-ID is kept so client and backend logs line up.
    """

    def __init__(self, app):
        self.app = app

    def __call__(self, environ, start_response):
        request_id = environ.get("HTTP_X_REQUEST_ID") or generate_request_id()
        environ["REQUEST_ID"] = request_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        def custom_start_response(status, headers, exc_info=None):
            headers.append(("X-Request-ID", request_id))
            return start_response(status, headers, exc_info)

        return self.app(environ, custom_start_response)
