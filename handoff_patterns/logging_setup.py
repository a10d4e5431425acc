"""
Structured logging setup.

Log records from this pipeline must never carry note text or patient, circle,
handoff or user identifiers: notes may contain protected health information.
Callers log counts, positional indexes, categories and exception class names.
"""

import logging
import sys

import structlog

from handoff_patterns.config import LoggingConfig


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Configure structlog on top of stdlib logging."""
    config = config or LoggingConfig()

    logging.basicConfig(
        level=getattr(logging, config.level),
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )

    renderer: structlog.typing.Processor
    if config.format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
