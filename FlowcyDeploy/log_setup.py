"""
Logging Setup Module

Responsibility:
- Attach one colored console handler (colorlog) to the root logger
- Take the level from DEPLOY_CONFIG unless the caller passes one
- Stay idempotent: a second call only adjusts the level
"""

import logging
import sys

from colorlog import ColoredFormatter

from settings import DEPLOY_CONFIG

LOGGER_NAME = "flowcy"


def setup_logging(level=None):
    """
    Attach a colored console handler to the root logger.

    Module loggers (logging.getLogger(__name__)) propagate here. Calling this
    twice does not add a second handler.
    """
    level_name = (level or DEPLOY_CONFIG["log_level"]).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)

    handler = next((h for h in root.handlers if getattr(h, "name", None) == LOGGER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(LOGGER_NAME)
        handler.setFormatter(ColoredFormatter(
            "%(log_color)s[%(levelname)s] %(name)s: %(message)s",
            log_colors={
                "DEBUG":    "cyan",
                "INFO":     "green",
                "WARNING":  "yellow",
                "ERROR":    "red",
                "CRITICAL": "red,bg_white",
            }
        ))
        root.addHandler(handler)

    handler.setLevel(log_level)
    return root
