"""
Logging setup for processes embedding the Kinesis stream client.

Library modules only create loggers; handlers are installed here, once, by the
hosting process (the CLI tool calls this on start-up).

Beyond the root handler, setup_logging pins the botocore, aiobotocore and
aiohttp loggers at WARNING; --verbose does not surface their per-request
DEBUG records.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import ObservabilityConfig


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Observability configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
