"""
Structured logging with structlog.

Every event is one JSON line carrying the service name and environment,
so redirect and background click events can be told apart from other
services in the same log stream.
"""
import logging
import sys

import structlog

from linklytics.config import settings


def _level() -> int:
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.INFO


def _add_service(logger, method_name, event_dict):
    event_dict.setdefault("service", settings.APP_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def configure_logging():
    """Route stdlib and structlog output to stdout as JSON."""
    level = _level()

    # uvicorn and SQLAlchemy log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_service,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger()


logger = configure_logging()


def get_logger(**context):
    """
    Logger with context bound, e.g. get_logger(link_id=7, stage="count_click").
    """
    return logger.bind(**context)
