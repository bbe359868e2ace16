"""Logging configuration for sqldelta.

Logs go to stderr so command output on stdout stays pipeable.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

import colorlog

BASE_LOG_FORMAT = "%(asctime)s %(levelname)8s %(message)s"
DATE_FORMAT = "%m-%d %H:%M:%S"

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def parse_level(level: Union[int, str]) -> int:
    """Return the numeric logging level for *level* (``"info"``, ``20``...)."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise SystemExit(f"ERROR: unknown log level: {level}")
    return value


def setup_logging(
    level: Union[int, str] = logging.INFO,
    use_colors: Optional[bool] = None,
    format_string: Optional[str] = None,
) -> None:
    """Configure the root logger with one console handler on stderr.

    Args:
        level: Logging level, numeric or by name.
        use_colors: Colored output; defaults to whether stderr is a TTY.
        format_string: Custom format string for log messages.
    """
    if use_colors is None:
        use_colors = sys.stderr.isatty()

    console_format = format_string or _get_console_format(use_colors)
    logging.basicConfig(
        level=parse_level(level),
        handlers=[_create_console_handler(console_format, use_colors)],
        force=True,
    )


def _get_console_format(use_colors: bool) -> str:
    if use_colors:
        return "%(asctime)s %(log_color)s%(levelname)8s%(reset)s %(message)s"
    return BASE_LOG_FORMAT


def _create_console_handler(format_string: str, use_colors: bool) -> logging.Handler:
    console_handler = logging.StreamHandler(sys.stderr)

    if use_colors:
        console_formatter: logging.Formatter = colorlog.ColoredFormatter(
            format_string,
            datefmt=DATE_FORMAT,
            log_colors=LOG_COLORS,
            style="%",
        )
    else:
        console_formatter = logging.Formatter(format_string, datefmt=DATE_FORMAT)

    console_handler.setFormatter(console_formatter)
    return console_handler


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically for ``__name__``)."""
    return logging.getLogger(name)
