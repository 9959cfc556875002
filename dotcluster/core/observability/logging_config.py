"""
Logging configuration: one root logger setup per process.

main.py calls ``setup_logging`` once; modules only ever do
``logger = logging.getLogger(__name__)``.

Console level, highest precedence first:
    --debug / --verbose / --quiet  >  DOTCLUSTER_LOG_LEVEL  >  WARNING

A log file can be added with DOTCLUSTER_LOG_FILE, at its own level
(DOTCLUSTER_LOG_FILE_LEVEL) so a quiet console can still leave a full
trace of what git was asked to do.
"""

from __future__ import annotations

import logging
import os
import sys

LOG_LEVEL_ENV = "DOTCLUSTER_LOG_LEVEL"
LOG_FILE_ENV = "DOTCLUSTER_LOG_FILE"
LOG_FILE_LEVEL_ENV = "DOTCLUSTER_LOG_FILE_LEVEL"

_DEBUG_FORMAT = ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d %(message)s", "%H:%M:%S")

# (threshold, format, datefmt): the first threshold >= level is used
_CONSOLE_FORMATS = [
    (logging.DEBUG, *_DEBUG_FORMAT),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
]

_FILE_FORMAT = (_DEBUG_FORMAT[0], "%Y-%m-%d %H:%M:%S")


def resolve_level(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
) -> str:
    """Pick the console level from CLI flags, then the environment."""
    for flag, level in ((debug, "DEBUG"), (verbose, "INFO"), (quiet, "ERROR")):
        if flag:
            return level
    return os.environ.get(LOG_LEVEL_ENV, "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install the console handler and, optionally, a file handler.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Log file path (default: ``DOTCLUSTER_LOG_FILE``).
        log_file_level: File level (default: ``DOTCLUSTER_LOG_FILE_LEVEL``,
            else the console level).
    """
    console_level = _parse_level(level)
    handlers = [_console_handler(console_level)]

    log_file = log_file or os.environ.get(LOG_FILE_ENV)
    if log_file:
        file_level = _parse_level(
            log_file_level or os.environ.get(LOG_FILE_LEVEL_ENV) or level
        )
        handlers.append(_file_handler(log_file, file_level))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    # The root level must let through whatever the most verbose handler wants.
    root.setLevel(min(h.level for h in handlers))
    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = next(
        (f, d) for threshold, f, d in _CONSOLE_FORMATS if level <= threshold
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(*_FILE_FORMAT))
    return handler


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; unknown names mean WARNING."""
    numeric = logging.getLevelName(level.upper()) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
