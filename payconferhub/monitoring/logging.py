"""
Structured logging for PayConferHub.

structlog renders every event as JSON and hands it to the stdlib root logger,
whose single handler wraps it with python-json-logger. Events carry the
application name and environment of the settings that configured logging.
"""
import logging
import sys
from typing import Any, Callable, Dict, Optional, TextIO

import structlog
from pythonjsonlogger import jsonlogger

from payconferhub.config import Settings, get_settings

EventDict = Dict[str, Any]

# Kept at WARNING or above whatever log_level says
QUIET_LOGGERS = ("sqlalchemy.engine", "asyncio")


def app_context_processor(settings: Settings) -> Callable[[Any, str, EventDict], EventDict]:
    """Build a processor stamping each event with the app name and environment."""
    context = {"app_name": settings.app_name, "app_env": settings.app_env}

    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_app_context


def _json_handler(stream: TextIO) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def setup_logging(settings: Optional[Settings] = None, stream: Optional[TextIO] = None) -> None:
    """
    Configure structlog and the root logger.

    Args:
        settings: Log level and app context (defaults to the environment)
        stream: Destination of log lines (defaults to stdout)
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            app_context_processor(settings),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(_json_handler(stream or sys.stdout))
    root_logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.get_logger(__name__).info(
        "logging_configured", log_level=settings.log_level, app_env=settings.app_env
    )


def get_logger(name: str) -> Any:
    """Module logger that picks up whatever ``setup_logging`` configured last."""
    return structlog.get_logger(name)
