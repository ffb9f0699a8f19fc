"""Structured logging setup shared by the API and the command-line scripts."""

from __future__ import annotations

import logging
import sys

import structlog

from app.config import Settings

_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARN': logging.WARNING,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
}


def configure_logging(config: Settings) -> None:
    """Route structlog through stdlib logging with the configured level and renderer.

    ``log_format`` selects ``json`` (one object per line, for log shippers) or
    ``console`` (key=value lines for local development).
    """
    level = _LEVELS.get(config.log_level.strip().upper(), logging.INFO)
    logging.basicConfig(
        format='%(message)s',
        level=level,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt='iso', utc=True),
        structlog.processors.format_exc_info,
    ]
    if config.log_format.strip().lower() == 'json':
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.KeyValueRenderer(key_order=['timestamp', 'level', 'event']))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
