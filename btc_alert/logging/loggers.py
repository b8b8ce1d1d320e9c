"""Named loggers for signal and alert events."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s | {tag} | %(levelname)s | %(message)s"


def _tagged_logger(name: str, tag: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT.format(tag=tag)))
        logger.addHandler(handler)
        logger.setLevel(os.environ.get("BTC_ALERT_LOG_LEVEL", "INFO").upper())
    return logger


def get_signal_logger() -> logging.Logger:
    """Logger for per-tick signal decisions."""
    return _tagged_logger("signal_log", "SIGNAL")


def get_alert_logger() -> logging.Logger:
    """Logger for notification dispatch."""
    return _tagged_logger("alert_log", "ALERT")
