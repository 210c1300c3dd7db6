"""Console and file logging for the EBS compliance toolkit."""
from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[90m",
    logging.INFO: "\033[0;32m",
    logging.WARNING: "\033[1;33m",
    logging.ERROR: "\033[0;31m",
    logging.CRITICAL: "\033[0;31m",
}

CONSOLE_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

PACKAGE_LOGGER = "ebs_compliance"


class ColorFormatter(logging.Formatter):
    """Prefix the level name with an ANSI colour when writing to a terminal."""

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_color: bool = True) -> None:
        super().__init__(fmt, datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if not self.use_color:
            return message
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{RESET}"


def configure_logging(
    log_file: Optional[str],
    *,
    verbose: bool = False,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Attach console and file handlers to the package logger.

    The log file is opened in write mode, so each process starts with an empty
    file. Calling this again replaces previously installed handlers.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    stream = stream or sys.stderr
    console = logging.StreamHandler(stream)
    use_color = bool(getattr(stream, "isatty", lambda: False)())
    console.setFormatter(ColorFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_color=use_color))
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
        logger.addHandler(file_handler)

    return logger


__all__ = ["ColorFormatter", "configure_logging"]
