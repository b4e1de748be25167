"""Logging utilities for the X-Ray engine."""
import logging
import os
from rich.logging import RichHandler
from rich.console import Console

# Log to stderr so CLI tables on stdout stay clean
console = Console(stderr=True)

DEFAULT_LEVEL = os.getenv("XRAY_LOG_LEVEL", "INFO").upper()


def setup_logger(name: str, level: int | str = DEFAULT_LEVEL) -> logging.Logger:
    """Set up a logger with rich formatting.

    Args:
        name: Logger name, usually the module's ``__name__``
        level: Logging level name or number

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # One handler per logger, even when modules are re-imported
    if not logger.handlers:
        handler = RichHandler(
            rich_tracebacks=True,
            console=console,
            show_time=True,
            show_path=False
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)

    return logger
