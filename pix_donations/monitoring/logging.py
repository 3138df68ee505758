"""
Structured logging for the donation service.

Events are emitted through structlog and handed to the standard library
root logger, whose single stdout handler writes one JSON object per line.
In debug mode events are rendered for humans instead.
"""
import logging
import sys
from typing import Any, Callable, Dict, List

import structlog
from pythonjsonlogger import jsonlogger

from pix_donations.config import Settings, get_settings

NOISY_LOGGERS = ("httpx", "httpcore", "sse_starlette", "uvicorn.access")

Processor = Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]


def service_fields(settings: Settings) -> Processor:
    """Processor stamping every event with the service name and environment."""
    fields = {"app_name": settings.app_name, "app_env": settings.app_env}

    def processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.update(fields)
        return event_dict

    return processor


def _processors(settings: Settings) -> List[Any]:
    renderer: Any = (
        structlog.dev.ConsoleRenderer()
        if settings.debug
        else structlog.processors.JSONRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        service_fields(settings),
        renderer,
    ]


def _stdout_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def setup_logging(settings: Settings | None = None) -> None:
    """
    Route structlog through stdlib logging with a JSON stdout handler.

    Safe to call more than once; the root logger's handlers are replaced.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers = [_stdout_handler()]
    root.setLevel(settings.log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        debug=settings.debug,
    )
