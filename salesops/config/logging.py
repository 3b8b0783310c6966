"""
Logging Setup

structlog events routed through the stdlib root logger, rendered as JSON
lines or as coloured console output.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import add_log_level, ProcessorFormatter

from salesops.config.settings import get_settings


def _renderer(log_format: str):
    if log_format == "json":
        return JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(log_level: Optional[str] = None) -> None:
    """
    Configure structured logging for a report run.

    Args:
        log_level: Override of LOG_LEVEL (DEBUG, INFO, WARNING, ERROR)
    """
    settings = get_settings()
    level_name = (log_level or settings.monitoring.log_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=pre_chain + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdout carries the report payload
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(processor=_renderer(settings.monitoring.log_format), foreign_pre_chain=pre_chain)
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )

    structlog.get_logger(__name__).debug(
        "Logging configured",
        level=level_name,
        format=settings.monitoring.log_format,
        environment=settings.app_env,
    )
