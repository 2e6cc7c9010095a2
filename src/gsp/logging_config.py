"""Structured logging setup.

Console output for development, JSON lines for production:

    from gsp.logging_config import setup_logging, get_logger

    setup_logging(log_format="json", log_level="INFO")
    logger = get_logger(__name__)
    logger.info("panel_sync_started", owner_id=5)
"""

import logging
import sys
from typing import Literal

import structlog


def setup_logging(
    log_format: Literal["json", "console"] = "console",
    log_level: str = "INFO",
) -> None:
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
        force=True,
    )

    processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
