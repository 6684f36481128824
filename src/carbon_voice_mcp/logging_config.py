"""Logging setup shared by the HTTP and stdio entry points.

Log output always goes to stderr. In stdio mode stdout carries JSON-RPC
frames, so any handler writing there would corrupt the protocol stream.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5

# Chatty third-party loggers kept at WARNING unless debugging
_NOISY_LOGGERS = ("httpx", "httpcore", "mcp.server.lowlevel.server")


def configure_logging(
    level: str = "info",
    stdio_mode: bool = False,
    log_dir: str | Path | None = None,
) -> None:
    """Install handlers on the root logger.

    Args:
        level: debug, info, warning or error
        stdio_mode: Strip handlers other libraries installed on any logger
        log_dir: Directory for rotating error.log / combined.log files
    """
    root_logger = logging.getLogger()
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if stdio_mode:
        for logger_name in list(logging.Logger.manager.loggerDict.keys()):
            logger_instance = logging.getLogger(logger_name)
            for handler in logger_instance.handlers[:]:
                logger_instance.removeHandler(handler)
            logger_instance.propagate = True

    formatter = logging.Formatter(LOG_FORMAT)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    root_logger.addHandler(stderr_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)

        error_handler = RotatingFileHandler(
            path / "error.log", maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        root_logger.addHandler(error_handler)

        combined_handler = RotatingFileHandler(
            path / "combined.log", maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT
        )
        combined_handler.setFormatter(formatter)
        root_logger.addHandler(combined_handler)

    root_logger.setLevel(numeric_level)

    if numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
