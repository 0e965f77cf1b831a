from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

CLI_LOGGER_NAME = "procwatch.cli"
DAEMON_LOGGER_NAME = "procwatch.daemon"

# Loggers whose INFO records reach the console at the default verbosity.
USER_FACING_LOGGERS = (CLI_LOGGER_NAME, DAEMON_LOGGER_NAME)

LOG_GLOB = "procwatch.run.*.log"

_current_log_path: Path | None = None


def get_log_path(data_dir: Path, timestamp: str | None = None) -> Path:
    """Construct the log file path for *data_dir* and an optional timestamp.

    If timestamp is None, uses the current timestamp.
    """
    if timestamp is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return data_dir / f"procwatch.run.{timestamp}.log"


def find_latest_log_path(data_dir: Path) -> Path | None:
    """Find the most recent log file in the data directory."""
    if not data_dir.exists():
        return None

    log_files = list(data_dir.glob(LOG_GLOB))
    if not log_files:
        return None

    return max(log_files, key=lambda p: p.stat().st_mtime)


def get_current_log_path() -> Path | None:
    """Get the log path that was set during setup_logging."""
    return _current_log_path


class CustomFormatter(logging.Formatter):
    regular = "\x1b[37;20m"
    grey = "\x1b[90;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    fmt = "[procwatch] %(message)s"

    FORMATS = {
        logging.DEBUG: grey + fmt + reset,
        logging.INFO: regular + fmt + reset,
        logging.WARNING: yellow + fmt + reset,
        logging.ERROR: red + fmt + reset,
        logging.CRITICAL: bold_red + fmt + reset,
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


class _UserFacingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 – simple predicate
        return record.name.startswith(USER_FACING_LOGGERS)


def _stream_is_tty(stream) -> bool:
    try:
        return os.isatty(stream.fileno())
    except (AttributeError, OSError, ValueError):
        return False


def setup_logging(verbosity: int, data_dir: Path) -> Path:
    """Configure logging for the current *procwatch* invocation.

    A console handler is configured according to *verbosity* and a file handler
    capturing *all* logs at DEBUG level is written to
    ``data_dir/procwatch.run.<timestamp>.log``.

    * ``-1``  – only warnings from the CLI and supervisor loggers.
    * ``0``   – the CLI and supervisor loggers at INFO.
    * ``1``   – INFO from every logger (watcher and runner included).
    * ``2+``  – DEBUG from every logger.

    Returns the path to the created log file.
    """
    global _current_log_path

    data_dir.mkdir(parents=True, exist_ok=True)

    log_path = get_log_path(data_dir)
    _current_log_path = log_path

    root_logger = logging.getLogger()

    # Avoid stacking handlers when called repeatedly (tests, re-entry).
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.setLevel(logging.DEBUG)

    # ----------------------------------------------------------------------------
    # File handler (always DEBUG)
    # ----------------------------------------------------------------------------
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")
    )
    root_logger.addHandler(file_handler)

    # ----------------------------------------------------------------------------
    # Console handler – behaviour depends on *verbosity*
    # ----------------------------------------------------------------------------
    console_handler = logging.StreamHandler(sys.stderr)

    if verbosity <= -1:
        console_handler.setLevel(logging.WARNING)
        console_handler.addFilter(_UserFacingFilter())
    elif verbosity == 0:
        console_handler.setLevel(logging.INFO)
        console_handler.addFilter(_UserFacingFilter())
    elif verbosity == 1:
        console_handler.setLevel(logging.INFO)
    else:
        console_handler.setLevel(logging.DEBUG)

    if _stream_is_tty(sys.stderr):
        console_handler.setFormatter(CustomFormatter())
    else:
        console_handler.setFormatter(logging.Formatter("[procwatch] %(message)s"))
    root_logger.addHandler(console_handler)

    # watchdog is chatty at DEBUG (inotify buffer internals).
    logging.getLogger("watchdog").setLevel(logging.INFO)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return log_path


CLI_LOGGER = logging.getLogger(CLI_LOGGER_NAME)
