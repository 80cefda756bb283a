import logging
from typing import Optional

import structlog

from storefront.core.config import settings

SERVICE_NAME = "storefront"

# Third-party loggers that are too chatty at INFO for request-level logs.
QUIET_LOGGERS = ("sqlalchemy.engine", "celery.app.trace", "kombu")


def add_service_context(logger, method_name, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def configure_logging(level: Optional[str] = None):
    """
    Configure structlog on top of stdlib logging.

    Log entries are event names with key/value context (``order_placed``,
    ``order_id=...``). Request middleware binds ``request_id`` and ``correlation_id`` through
    contextvars, so every entry logged while handling a request carries them.
    """
    level_name = (level or settings.LOG_LEVEL or ("DEBUG" if settings.DEBUG else "INFO")).upper()

    # Console renderer for development
    renderer = structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_service_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name, logging.INFO))

    if not settings.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
