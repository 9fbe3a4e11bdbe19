# src/streamsnap_app/logging_setup.py

import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

import colorlog

from streamsnap_library.utils.paths import get_logs_dir

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3


# Ensure the debug handler ONLY gets DEBUG messages from the account library
class LibraryDebugFilter(logging.Filter):
    def filter(self, record):
        return record.levelno == logging.DEBUG and record.name.startswith(
            "streamsnap_library"
        )


def setup_logging(
    data_dir: Optional[Union[Path, str]] = None, console_level: str = "INFO"
) -> Path:
    """
    Configure root logging: colored console, rotating info and debug files.

    Returns:
        The logs directory
    """
    log_dir = get_logs_dir(data_dir)

    console_handler = colorlog.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, console_level, logging.INFO))
    console_handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(message)s",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )

    info_file_handler = RotatingFileHandler(
        log_dir / "streamsnap.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    info_file_handler.setLevel(logging.INFO)
    info_file_handler.setFormatter(logging.Formatter(FILE_FORMAT))

    debug_file_handler = RotatingFileHandler(
        log_dir / "streamsnap_debug.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    debug_file_handler.setLevel(logging.DEBUG)
    debug_file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    debug_file_handler.addFilter(LibraryDebugFilter())

    # Root at DEBUG so the library debug file sees everything
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.addHandler(info_file_handler)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(debug_file_handler)

    # Request lines would leak bearer-protected URLs into the console
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return log_dir
