"""
Process-wide logging for the envis CLI.

Modules only ever call ``logging.getLogger(__name__)``; the handlers live
on the root logger and are installed by ``setup_logging`` from the root
click group.  Calling it again swaps the envis handlers and leaves any
handler someone else attached (pytest's capture, an embedding app)
alone.

Console level precedence::

    --debug  >  --verbose  >  --quiet  >  $ENVIS_LOG_LEVEL  >  WARNING

A log file is written only when ENVIS_LOG_FILE (or ``log_file``) is set.
It rotates at 1 MiB and keeps three old copies, so a long-lived
``envis`` setup never grows it without bound.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

ENV_LOG_LEVEL = "ENVIS_LOG_LEVEL"
ENV_LOG_FILE = "ENVIS_LOG_FILE"
ENV_LOG_FILE_LEVEL = "ENVIS_LOG_FILE_LEVEL"

LOG_FILE_MAX_BYTES = 1024 * 1024
LOG_FILE_BACKUPS = 3

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# ── Formats ─────────────────────────────────────────────────────

# (highest level the style applies to, format, date format)
_CONSOLE_STYLES: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s.%(msecs)03d %(levelname)-7s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
)
_CONSOLE_DEFAULT = "%(levelname)s: %(message)s"
_FILE_FORMAT = "%(asctime)s %(process)d %(levelname)-7s %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# attribute set on every handler this module owns
_OWNED = "_envis_handler"


def resolve_level(debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Console level name for the given CLI flags."""
    for flag, name in ((debug, "DEBUG"), (verbose, "INFO"), (quiet, "ERROR")):
        if flag:
            return name
    return os.environ.get(ENV_LOG_LEVEL, "WARNING")


def level_number(name: str | None) -> int:
    """``logging`` constant for ``name``; anything unrecognised means WARNING."""
    return _LEVELS.get((name or "").strip().upper(), logging.WARNING)


def console_formatter(level: int) -> logging.Formatter:
    for ceiling, fmt, datefmt in _CONSOLE_STYLES:
        if level <= ceiling:
            return logging.Formatter(fmt, datefmt=datefmt)
    return logging.Formatter(_CONSOLE_DEFAULT)


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install the console handler and, optionally, the rotating file handler.

    Args:
        level: Console level name.
        log_file: Path of the log file; its directory is created.
        log_file_level: Level for the file; defaults to ``level``.
    """
    console_level = level_number(level)
    handlers: list[logging.Handler] = []

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(console_formatter(console_level))
    handlers.append(console)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        to_file = RotatingFileHandler(
            path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS, encoding="utf-8",
        )
        to_file.setLevel(level_number(log_file_level) if log_file_level else console_level)
        to_file.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        handlers.append(to_file)

    root = logging.getLogger()
    for old in [h for h in root.handlers if getattr(h, _OWNED, False)]:
        root.removeHandler(old)
        old.close()
    for handler in handlers:
        setattr(handler, _OWNED, True)
        root.addHandler(handler)
    root.setLevel(min(h.level for h in handlers))

    # a broken stderr must not turn a log call into a traceback
    logging.raiseExceptions = False


def owned_handlers() -> list[logging.Handler]:
    """Handlers installed by ``setup_logging`` on the root logger."""
    return [h for h in logging.getLogger().handlers if getattr(h, _OWNED, False)]
