"""
Structured logging configuration using structlog.

alloyvec is a library: the vectorstore modules log through structlog and
the storage modules through the standard library. setup_logging() renders
both the same way, JSON in production and a colored console in
development, so host applications get one consistent stream.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from alloyvec.config.settings import Settings, get_settings

# Third-party loggers that are chatty at DEBUG
QUIET_LOGGERS = ("asyncio", "asyncpg", "httpx", "httpcore", "google.auth", "urllib3")


def setup_logging(
    level: str | None = None,
    json_logs: bool | None = None,
    settings: Settings | None = None,
) -> None:
    """
    Configure structured logging for an application embedding alloyvec.

    Args:
        level: Root log level (settings.log_level if None)
        json_logs: Render JSON lines (on in production if None)
        settings: Settings to read defaults from

    Usage:
        setup_logging()
        logger = structlog.get_logger()
        logger.info("Searching", table="documents", k=10)
    """
    settings = settings or get_settings()
    level = level or settings.log_level
    if json_logs is None:
        json_logs = settings.is_production

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if json_logs:
        final_processors: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [structlog.dev.ConsoleRenderer(colors=True)]

    # stdlib records (storage layer, libraries) pass through the same chain
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *final_processors],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper()))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger (module name by convention)."""
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """
    Bind context variables to all subsequent log messages.

    Useful for tagging every line of a batch job with its table or run id.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
