"""Run the WindowGate admission service under uvicorn."""

import structlog
import uvicorn

from windowgate.config import Settings, get_settings
from windowgate.logging import setup_logging

logger = structlog.get_logger()


def uvicorn_options(settings: Settings) -> dict:
    """Server options derived from settings."""
    options = {
        "host": settings.host,
        "port": settings.port,
        "log_level": settings.log_level.lower(),
        # Throttled requests are logged by the middleware
        "access_log": False,
        "log_config": None,
    }
    if settings.debug:
        options["reload"] = True
    else:
        options["workers"] = settings.workers
    return options


def main() -> None:
    """Run the WindowGate server."""
    settings = get_settings()
    setup_logging(settings)

    if settings.store_backend == "memory" and settings.workers > 1 and not settings.debug:
        # Each worker process gets its own counters
        logger.warning(
            "memory_store_with_multiple_workers",
            workers=settings.workers,
            effective_limit_multiplier=settings.workers,
        )

    logger.info(
        "windowgate_starting",
        host=settings.host,
        port=settings.port,
        store_backend=settings.store_backend,
    )
    uvicorn.run("windowgate.app:app", **uvicorn_options(settings))


if __name__ == "__main__":
    main()
