"""Logging for chatbranch.

One package logger (``chatbranch``) with child loggers per component. Two
extra levels sit around the standard ones:

    TRACE (5)     per-token streaming and per-recompute events
    VERBOSE (15)  detailed diagnostics between DEBUG and INFO

Output goes to the file named by ``LoggingConfig.file`` or the CHATBRANCH_LOG
environment variable. Without a file, records go to stderr only when stderr is
an interactive console.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatbranch.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("chatbranch")

LOG_ENV_VAR = "CHATBRANCH_LOG"
LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

_initialized = False

# Index is the --verbose value: 0 = errors only, 4 = everything
_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def _level_from_name(name: str) -> int:
    name = name.upper()
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def resolve_level(config: LoggingConfig | None) -> int:
    """Resolve the effective level from a LoggingConfig.

    ``verbose`` takes precedence over ``level``. Verbosity above 4 means
    TRACE; unknown level names mean INFO.
    """
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = max(0, config.verbose)
        return _VERBOSITY_LEVELS[min(index, len(_VERBOSITY_LEVELS) - 1)]
    if config.level:
        return _level_from_name(config.level)
    return logging.INFO


def _open_file_handler(path: str) -> logging.Handler | None:
    try:
        return logging.FileHandler(os.path.expanduser(path), mode="a", encoding="utf-8")
    except OSError as e:
        if sys.stderr.isatty():
            print(f"[chatbranch] Failed to open log file {path}: {e}", file=sys.stderr)
        return None


def _console_handler() -> logging.Handler | None:
    # Pipes from an IDE or test runner stay quiet
    if not sys.stderr.isatty():
        return None
    return logging.StreamHandler(sys.stderr)


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure the package logger once at startup.

    Later calls are ignored until ``reset_logging()``.

    Args:
        config: Level, verbosity and file settings. ``None`` means INFO to
            CHATBRANCH_LOG or the console.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = resolve_level(config)
    logger.setLevel(level)

    path = config.file if config is not None and config.file else os.environ.get(LOG_ENV_VAR)
    handler = _open_file_handler(path) if path else None
    if handler is None:
        handler = _console_handler()
    if handler is None:
        return

    handler.setLevel(level)
    handler.setFormatter(_LowercaseLevelFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(handler)


def reset_logging() -> None:
    """Detach and close handlers added by ``setup_logging``."""
    global _initialized
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    _initialized = False


def get_logger(name: str | None = None) -> logging.Logger:
    """Get the package logger, or a child logger such as ``"tree"``."""
    if name:
        return logger.getChild(name)
    return logger
