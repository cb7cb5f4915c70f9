"""Logging configuration for watchstreak."""

import logging
import os
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
ROOT_LOGGER_NAME = "watchstreak"

_configured = False


def configure_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Attaches a single stream handler to the package logger.

    Calling it again only adjusts the level. WATCHSTREAK_LOG_LEVEL wins over
    the level passed in.
    """
    global _configured

    env_level = os.environ.get("WATCHSTREAK_LOG_LEVEL")
    resolved = env_level or level or logging.INFO
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(resolved)
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
        _configured = True
    return logger
