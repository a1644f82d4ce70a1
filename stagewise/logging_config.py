"""Logging setup for the command line entry point."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

DEBUG_MODE = os.environ.get("STAGEWISE_DEBUG", "").lower() in ("1", "true", "yes")


def setup_logging(level: Optional[int] = None) -> logging.Logger:
    """Attach a stderr handler to the ``stagewise`` logger.

    Args:
        level: Logging level (default: DEBUG if STAGEWISE_DEBUG, else WARNING)
    """
    if level is None:
        level = logging.DEBUG if DEBUG_MODE else logging.WARNING

    logger = logging.getLogger("stagewise")
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if level <= logging.DEBUG:
        fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    else:
        fmt = "%(levelname)s: %(message)s"
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)
    return logger
