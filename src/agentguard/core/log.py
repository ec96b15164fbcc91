"""Logging setup: route the ``agentguard`` logger through rich."""

from __future__ import annotations

import logging
import os

from rich.logging import RichHandler

LOGGER_NAME = "agentguard"


def setup_logging(level: str | None = None) -> logging.Logger:
    """Attach a RichHandler to the package logger.

    The level comes from *level*, then ``AGENTGUARD_LOG_LEVEL``, then WARNING.
    Calling this twice does not stack handlers.
    """
    name = (level or os.getenv("AGENTGUARD_LOG_LEVEL") or "WARNING").upper()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, name, logging.WARNING))
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.propagate = False
    return logger
