"""Structured logging setup shared by the API server and the CLI."""

import logging
import sys

import structlog

from vitaltrend.config import LoggingConfig


def configure_logging(config: LoggingConfig) -> None:
    """Install the structlog processor chain for the configured level and format."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=config.level)
    logging.getLogger().setLevel(config.level)

    renderer = (
        structlog.processors.JSONRenderer()
        if config.format == "json"
        else structlog.dev.ConsoleRenderer()
    )

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
