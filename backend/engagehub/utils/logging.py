# /engagehub/utils/logging.py

import logging
import sys
import structlog
from engagehub.config.settings import settings

# Structured logging (JSON outside development) shared by the API, the
# tracking pipeline and the external service adapters.

def setup_logging():
    """
    Configures structlog on top of the standard logging module so that
    both structlog loggers and plain logging.getLogger() loggers render
    through the same formatter under Gunicorn/Uvicorn.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "development":
        final_processor = structlog.dev.ConsoleRenderer()
    else:
        final_processor = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=final_processor,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    # Avoid stacking handlers when the lifespan runs more than once (tests)
    for existing in list(root_logger.handlers):
        if isinstance(existing.formatter, structlog.stdlib.ProcessorFormatter):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if settings.environment == "development" else logging.INFO)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)
    logging.getLogger("httpx").setLevel(logging.WARNING)
