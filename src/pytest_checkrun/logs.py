"""Structured logging configuration."""

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pytest_checkrun.settings import LogLevel


def configure_logging(level: 'LogLevel' = 'WARNING', fmt: str = 'console') -> None:
    """Configure structlog on top of the standard logging module.

    Events are written to stderr so reports printed on stdout stay
    machine-readable.

    Args:
        level: Minimal level of emitted events.
        fmt: Either `console` for human-readable lines or `json`.
    """
    logging.basicConfig(
        format='%(message)s',
        stream=sys.stderr,
        level=getattr(logging, level),
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == 'json'
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt='iso'),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
