"""Structured logging configuration using structlog."""

import logging
import sys

import structlog

# Third-party loggers that log every provider request at INFO
_QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog for the service.

    Request-scoped values bound with ``structlog.contextvars`` (request id,
    webhook event id) are merged into every event.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output or not sys.stderr.isatty():
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
