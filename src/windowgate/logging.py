"""structlog setup for the WindowGate service and embedding applications."""

import logging
import sys

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from windowgate.config import Settings, get_settings

# Chatty at INFO under load; admission decisions are logged by WindowGate itself
QUIET_LOGGERS = ("uvicorn.access", "redis")


def store_backend_processor(backend: str) -> Processor:
    """Stamp every event with the counter store backend in use."""

    def add_store_backend(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("store_backend", backend)
        return event_dict

    return add_store_backend


def build_processors(settings: Settings) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        store_backend_processor(settings.store_backend),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structlog and the stdlib root logger from settings.

    Host applications that mount the middleware may call this with their own
    Settings instance; the service calls it from the app lifespan.
    """
    settings = settings if settings is not None else get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {settings.log_level}")

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
