"""
Structured logging for the dashboard backend.
Every log line is a JSON object with an event name plus keyword context, e.g.
    {"event": "upstream_error", "source": "defillama", "status": 503, "level": "warning", ...}
"""
import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict

from app.core.config import get_settings


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = get_settings().PROJECT_NAME
    return event_dict


def setup_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """
    Configure stdlib logging and the structlog processor chain.
    Falls back to LOG_LEVEL / JSON_LOGS from settings when arguments are omitted.
    """
    settings = get_settings()
    level = level or settings.LOG_LEVEL
    json_logs = settings.JSON_LOGS if json_logs is None else json_logs

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
