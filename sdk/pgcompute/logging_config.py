"""
Logging setup for applications embedding pg_compute.

The library itself only emits through module loggers
(``logging.getLogger(__name__)``); setup_logging() is for applications
that want the same output format the library's own tools use.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import LoggingConfig

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: LoggingConfig) -> None:
    """Configure the root logger from configuration.

    Args:
        config: Logging configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
