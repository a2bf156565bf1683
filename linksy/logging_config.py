"""
Linksy Logging Configuration

structlog renders every record as one JSON line with an ISO timestamp and
level. Records from stdlib loggers (uvicorn, celery, sqlalchemy) go through
the same formatter, so API workers and Celery workers share one format.

Context bound with ``structlog.contextvars`` (the request id and path in the
API, the task name in Celery) is merged into every record.
"""

import logging
import sys
from typing import Any, Optional

import structlog

from linksy.config import settings

# Chatty third-party loggers and the level they are held at
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "httpx": logging.WARNING,
    "openai": logging.WARNING,
    "celery": logging.WARNING,
}


def configure_logging(level: Optional[str] = None) -> None:
    """Route structlog and stdlib logging to a JSON handler on stdout."""
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel((level or settings.LOG_LEVEL).upper())

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
