"""
Logging configuration using loguru.
"""

import logging
import sys
from pathlib import Path

from loguru import logger

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"

# Third-party loggers that log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging(log_dir: Path, verbose: bool = False) -> logger:
    """
    Configure meshprobe logging.

    Measurement results own the terminal, so the stderr handler only shows
    warnings unless verbose output is requested. Everything is kept in
    ``meshprobe.log``; errors also go to ``meshprobe_errors.log``.

    Args:
        log_dir: Directory for log files
        verbose: Show debug messages on stderr

    Returns:
        Configured logger instance
    """
    logger.remove()
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
    )

    log_file = log_dir / "meshprobe.log"
    logger.add(log_file, rotation="10 MB", retention="30 days", level="DEBUG", format=FILE_FORMAT)

    error_log = log_dir / "meshprobe_errors.log"
    logger.add(error_log, rotation="10 MB", retention="90 days", level="ERROR", format=FILE_FORMAT)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging to {log_file}")
    return logger
