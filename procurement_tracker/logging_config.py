"""
Logging configuration for the procurement tracker.
"""

from __future__ import annotations

import logging
import sys

from flask import Flask

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(app: Flask) -> logging.Logger:
    """
    Configure the package logger from app.config["LOG_LEVEL"].

    Handlers are attached once; calling this again (e.g. one app per test)
    only adjusts the level.
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    logger = logging.getLogger("procurement_tracker")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return logger
