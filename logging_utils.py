#!/usr/bin/env python3
"""
Shared logger setup helpers for the scaler CLI.
"""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """Attach console and optional file handlers to the root logger.

    Every module logs through ``logging.getLogger(__name__)``, so handlers
    live on the root logger. Calling this again only adjusts the level.
    An unwritable log file raises ``OSError``.
    """
    global _configured
    root = logging.getLogger()
    root.setLevel(level)
    if _configured:
        return root

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file and log_file != os.devnull:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    _configured = True
    return root


def log_separator(logger: logging.Logger, title: str = "") -> None:
    line = "=" * 60
    if title:
        logger.info(line)
        logger.info(title)
    logger.info(line)
