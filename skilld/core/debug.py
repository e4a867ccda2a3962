"""Logging for skilld.

Uses Python's standard logging library.
- INFO/WARNING/ERROR always go to /tmp/skilld-{epoch}.log
- DEBUG messages only appear when --debug flag is used
- Each run creates a new log file with epoch timestamp

Usage:
    from skilld.core import debug as log

    log.debug("Low-level detail - only with --debug")
    log.info("Normal operation info - always logged")
    log.warning("Something unexpected - always logged")
    log.error("Error occurred - always logged")
"""

import logging
import os
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import Any, List

# Generate log file with epoch timestamp (seconds since epoch)
_epoch_timestamp = int(time.time())
LOG_FILE = Path(tempfile.gettempdir()) / f"skilld-{_epoch_timestamp}.log"

_logger = logging.getLogger("skilld")

_debug_enabled = False

_initialized = False


def _init_logging() -> None:
    """Initialize basic logging (INFO level) to the log file."""
    global _initialized
    if _initialized:
        return

    _initialized = True

    _logger.setLevel(logging.INFO)

    # Handler accepts all, logger filters
    file_handler = logging.FileHandler(LOG_FILE, mode="a", delay=True)
    file_handler.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(formatter)
    _logger.addHandler(file_handler)

    # Avoid duplicate records through the root logger
    _logger.propagate = False


def enable_debug() -> None:
    """Enable debug-level logging (more verbose output)."""
    global _debug_enabled

    _init_logging()

    _debug_enabled = True
    _logger.setLevel(logging.DEBUG)

    _logger.info("=" * 60)
    _logger.info(f"skilld debug session started at {datetime.now()}")
    _logger.info(f"PID: {os.getpid()}")
    _logger.info("=" * 60)


_init_logging()


def get_log_file() -> Path:
    """Get the current run's log file path."""
    return LOG_FILE


def debug(message: str, *args: Any, **kwargs: Any) -> None:
    """Log a debug message (only appears when --debug flag is used)."""
    _logger.debug(message, *args, **kwargs)


def info(message: str, *args: Any, **kwargs: Any) -> None:
    """Log an info message (always logged to file)."""
    _logger.info(message, *args, **kwargs)


def warning(message: str, *args: Any, **kwargs: Any) -> None:
    """Log a warning message (always logged to file)."""
    _logger.warning(message, *args, **kwargs)


def error(message: str, *args: Any, **kwargs: Any) -> None:
    """Log an error message (always logged to file)."""
    _logger.error(message, *args, **kwargs)


def exception(message: str, *args: Any, **kwargs: Any) -> None:
    """Log an exception with traceback (always logged to file)."""
    _logger.exception(message, *args, **kwargs)


def log_error(context: str, exc: BaseException) -> None:
    """Log an error with context (always logged)."""
    _logger.error(f"ERROR in {context}: {type(exc).__name__}: {exc}")


def log_resolve_attempts(package: str, attempts: List[Any]) -> None:
    """Log the resolution cascade for a package (INFO summary, steps at DEBUG)."""
    ok = sum(1 for a in attempts if a.status == "success")
    _logger.info(f"RESOLVE {package}: {ok}/{len(attempts)} sources succeeded")

    if _debug_enabled:
        for attempt in attempts:
            suffix = f" - {attempt.message}" if attempt.message else ""
            _logger.debug(f"  [{attempt.source}] {attempt.status}{suffix}")


def log_cache_write(package: str, version: str, count: int, evicted: int = 0) -> None:
    """Log a cache write (INFO level)."""
    extra = f", evicted {evicted} stale version(s)" if evicted else ""
    _logger.info(f"CACHE WRITE: {package}@{version} ({count} files{extra})")


def log_phase(package: str, phase: str, message: str) -> None:
    """Log a pipeline phase transition (DEBUG level)."""
    if _debug_enabled:
        _logger.debug(f"PHASE {package}: {phase} - {message}")
