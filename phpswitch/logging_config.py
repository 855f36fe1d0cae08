"""
Logging setup for phpswitch.

Console diagnostics always go to stderr: stdout belongs to --json output and
to the PATH command that --auto-mode prints for the shell hook to eval. The
hook discards stderr, so PHPSWITCH_LOG_FILE can point at a file to capture
what auto mode does.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .common import is_debug_enabled


LOGGER_NAME = "phpswitch"
LOG_FILE_ENV = "PHPSWITCH_LOG_FILE"

FILE_FORMAT = "%(asctime)s %(process)d [%(levelname)s] %(message)s"

_logger: Optional[logging.Logger] = None


class ColoredFormatter(logging.Formatter):
    """
    Prefix each message with its level, colored on terminals.

    Plain output is "[LEVEL] message" so it stays grep-able in logs and CI.
    """

    STYLES = {
        logging.DEBUG: ("\033[2m", "·"),
        logging.INFO: ("\033[36m", "ℹ"),
        logging.WARNING: ("\033[33m", "⚠"),
        logging.ERROR: ("\033[31m", "✗"),
        logging.CRITICAL: ("\033[1;31m", "✗"),
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str = "%(levelname_colored)s %(message)s", use_colors: bool = True):
        super().__init__(fmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if self.use_colors:
            color, symbol = self.STYLES.get(record.levelno, ("", ""))
            record.levelname_colored = f"{color}{symbol} {record.levelname.lower()}{self.RESET}"
        else:
            record.levelname_colored = f"[{record.levelname}]"
        return super().format(record)


def _colors_wanted(stream) -> bool:
    if os.environ.get("PHPSWITCH_COLOR", "1") != "1" or os.environ.get("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def _file_handler(log_file: str) -> logging.Handler:
    path = Path(os.path.expanduser(log_file))
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    verbose: bool = False,
    quiet: bool = False,
    propagate: bool = False,
) -> logging.Logger:
    """
    Configure the phpswitch logger.

    Calling it again replaces the previous handlers, so the CLI can
    reconfigure per invocation.

    Args:
        level: Console log level name
        log_file: Extra log file (PHPSWITCH_LOG_FILE when not given)
        verbose: Log DEBUG messages (also enabled by PHPSWITCH_DEBUG=1)
        quiet: No console handler; only the log file receives messages
        propagate: Pass records to the root logger (pytest's caplog needs it)

    Returns:
        The configured logger
    """
    global _logger

    if verbose or is_debug_enabled():
        threshold = logging.DEBUG
    elif quiet:
        threshold = logging.WARNING
    else:
        threshold = logging.getLevelName(level.upper())

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(threshold)

    if not quiet:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(threshold)
        console.setFormatter(ColoredFormatter(use_colors=_colors_wanted(sys.stderr)))
        logger.addHandler(console)

    log_file = log_file or os.environ.get(LOG_FILE_ENV)
    if log_file:
        logger.addHandler(_file_handler(log_file))

    logger.propagate = propagate
    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Return the phpswitch logger, configuring defaults on first use."""
    global _logger
    if _logger is None:
        _logger = setup_logging()
    return _logger
