"""
Logging setup: colored console output plus a daily log file

Registrar credentials travel in the query string, so every handler installed
here masks `api-key` values before a record is written anywhere.
"""

import logging
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import colorlog


LOGS_DIR = Path(os.environ.get("RESELLERSYNC_LOG_DIR", "logs"))

CONSOLE_FORMAT = "%(log_color)s%(levelname)-8s%(reset)s %(blue)s[%(name)s]%(reset)s %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}

# httpx logs every request URL at INFO, auth parameters included
NOISY_LOGGERS = ("httpx", "httpcore")

SECRET_PARAM = re.compile(r"(api-key=)[^&\s'\"]+", re.IGNORECASE)


class RedactSecretsFilter(logging.Filter):
    """Replace api-key values in the rendered message with ***."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = SECRET_PARAM.sub(r"\1***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    return getattr(logging, name, logging.INFO)


def _daily_log_file() -> str:
    return f"resellersync_{datetime.now().strftime('%Y-%m-%d')}.log"


def _quiet_http_libraries() -> None:
    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        if noisy.level == logging.NOTSET:
            noisy.setLevel(logging.WARNING)


def setup_logger(
    name: str,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    console: bool = True
) -> logging.Logger:
    """
    Set up a logger with colored console output and optional file logging.

    Args:
        name: Logger name (typically __name__ of the module)
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
               Falls back to the LOG_LEVEL environment variable.
        log_file: Optional log file name (written under LOGS_DIR)
        console: Whether to output to console

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))

    # Handlers are installed once per logger name
    if logger.handlers:
        return logger

    redact = RedactSecretsFilter()

    if console:
        console_handler = colorlog.StreamHandler(sys.stdout)
        console_handler.setLevel(_resolve_level(level))
        console_handler.setFormatter(colorlog.ColoredFormatter(CONSOLE_FORMAT, reset=True, log_colors=LOG_COLORS))
        console_handler.addFilter(redact)
        logger.addHandler(console_handler)

    if log_file:
        LOGS_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(LOGS_DIR / log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # Everything goes to the file
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        file_handler.addFilter(redact)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Get a module logger writing to the console and today's log file."""
    _quiet_http_libraries()
    return setup_logger(name=name, level=level, log_file=_daily_log_file(), console=True)
