"""
Centralized logging for the bitwise workbench backend.

All modules log through the standard logging module; the root handler is
configured once at startup from main.py.

Usage:
    from api.shared.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Loaded %d bits into %s", len(bits), file_id)
    logger.warning("Detector %s failed: %s", detector_id, err)
"""

import logging
import os
import sys

_configured = False


def setup_logging(level: str | None = None) -> None:
    """Configure root logging for the backend.

    The level defaults to the BITWISE_LOG_LEVEL environment variable, then INFO.
    Subsequent calls are no-ops.
    """
    global _configured
    if _configured:
        return

    level = level or os.environ.get("BITWISE_LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger for a backend module.

    Args:
        name: Module name (typically ``__name__``).
    """
    return logging.getLogger(name)
