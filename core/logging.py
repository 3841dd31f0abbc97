"""
Logging configuration
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any, Optional

from core.config import settings


LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Set by the request middleware; background work started by a request inherits it
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class ContextFormatter(logging.Formatter):
    """
    Append structured context passed via ``extra={"context": ...}``,
    plus the id of the request the record was logged under, if any.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = dict(getattr(record, "context", None) or {})
        request_id = request_id_var.get()
        if request_id and "request_id" not in context:
            context["request_id"] = request_id
        if context:
            pairs = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"{message} | {pairs}"
        return message


def setup_logging(level: str = None):
    """Configure application logging"""

    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ContextFormatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    # Reduce noise from libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {level_name} level")


def log_event(logger: logging.Logger, level: str, message: str, **context: Any):
    """
    Log a message with structured context.

    ``level`` is one of debug/info/warning/error/critical.
    """
    logger.log(LEVELS.get(level, logging.INFO), message, extra={"context": context})
