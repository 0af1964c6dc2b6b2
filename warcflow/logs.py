"""
Logging setup: a console handler plus an optional rotating file handler on the
package logger. Modules log through `logging.getLogger(__name__)`, which makes
them children of the `warcflow` logger configured here.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import LoggingConfig

LOGGER_NAME = "warcflow"
_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(name)s - %(message)s"


def init_logging(cfg: Optional[LoggingConfig] = None) -> logging.Logger:
    """Configure the package logger; safe to call more than once."""
    cfg = cfg or LoggingConfig()
    log_level = getattr(logging, cfg.level.upper(), logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)
    logger.propagate = False  # avoid duplicate logs if root has handlers

    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    # Console
    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(ch)

    # File (rotating)
    if cfg.log_file:
        log_file = Path(cfg.log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(log_file, maxBytes=cfg.max_bytes, backupCount=cfg.backup_count)
        fh.setLevel(log_level)
        fh.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(fh)

    return logger
