"""
Centralized logging for the simulation playback backend.

All modules log through the standard ``logging`` package with a single
root configuration applied at startup.

Usage:
    from api.shared.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Session %s installed %d frames", session_id, count)
    logger.warning("Backend returned status %d", status)
"""

import logging
import sys

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for the backend.

    Call once at startup (main.py). Subsequent calls are no-ops.
    """
    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    # httpx logs every request at INFO; the tick loop does not need that noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the given module.

    Args:
        name: Module name (typically ``__name__``).
    """
    return logging.getLogger(name)
