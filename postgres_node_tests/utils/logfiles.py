"""Functionality for reading and checking server log files."""

import logging
import pathlib as pl
import re
import typing as tp
from collections import deque

LOGGER = logging.getLogger(__name__)

# Number of lines of the server log shown when a node failed to start
LOG_TAIL_LINES = 50


def slurp_file(logfile: pl.Path) -> str:
    """Return the whole content of the log file, or empty string if the file doesn't exist."""
    try:
        with open(logfile, encoding="utf-8", errors="replace") as infile:
            return infile.read()
    except FileNotFoundError:
        return ""


def truncate_file(logfile: pl.Path) -> None:
    """Truncate the log file to zero length, creating it if it doesn't exist yet."""
    logfile.parent.mkdir(parents=True, exist_ok=True)
    with open(logfile, "w", encoding="utf-8"):
        pass


def get_log_tail(logfile: pl.Path, *, lines: int = LOG_TAIL_LINES) -> str:
    """Return last `lines` lines of the log file."""
    try:
        with open(logfile, encoding="utf-8", errors="replace") as infile:
            tail = deque(infile, maxlen=lines)
    except FileNotFoundError:
        return f"<log file '{logfile}' doesn't exist>"
    return "".join(tail)


def dump_log_tail(
    logfile: pl.Path,
    *,
    lines: int = LOG_TAIL_LINES,
    log_func: tp.Callable[[str], None] = LOGGER.error,
) -> str:
    """Log last lines of the log file and return them."""
    tail = get_log_tail(logfile, lines=lines)
    log_func(f"Last {lines} lines of '{logfile}':\n{tail}")
    return tail


def log_matches(logfile: pl.Path, pattern: str | re.Pattern[str]) -> bool:
    """Check if content of the log file matches the regex (unanchored)."""
    regex = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
    return regex.search(slurp_file(logfile)) is not None
