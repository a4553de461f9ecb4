from __future__ import annotations

import logging
import sys
import time
from typing import Optional, Union

from .config import LOG_LEVEL


ROOT_LOGGER_NAME = "akeditor"


def configure_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Attach a single stderr handler with UTC timestamps to the package logger.

    Library modules only create loggers; the command-line entry points call this
    once so that warnings (for example storage write failures) reach the operator.
    Calling it again only adjusts the level.

    Args:
        level: Logging level name or number. Defaults to AKEDITOR_LOG_LEVEL.

    Returns:
        The configured "akeditor" logger.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level if level is not None else LOG_LEVEL)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        formatter = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%SZ",
        )
        formatter.converter = time.gmtime
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
