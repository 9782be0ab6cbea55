"""
Logging helpers

All modules obtain their logger through get_logger(__name__) so that every
record lands under the "tagtrail" hierarchy and shares one handler.
"""

import logging
import os
import sys

_ROOT_LOGGER_NAME = "tagtrail"
_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def _configure_root_logger() -> None:
    global _configured
    if _configured:
        return

    root = logging.getLogger(_ROOT_LOGGER_NAME)
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)

    _configured = True


def get_logger(name: str = _ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger under the tagtrail hierarchy

    Args:
        name: Usually the caller's __name__

    Returns:
        Configured logger instance
    """
    _configure_root_logger()
    if name != _ROOT_LOGGER_NAME and not name.startswith(f"{_ROOT_LOGGER_NAME}."):
        name = f"{_ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
