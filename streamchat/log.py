"""Logging configuration.

Log records go to stderr; stdout carries the conversation.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: str = "WARNING") -> None:
    """Configure the streamchat logger.

    Args:
        level: Log level name, e.g. "INFO" or "DEBUG".
    """
    logger = logging.getLogger("streamchat")
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    logger.handlers.clear()

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)

    logger.propagate = False
    logger.debug("Logging initialized - Level: %s", level.upper())
