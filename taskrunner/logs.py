"""
Logging setup and log file retention for the runner.

Every line, on the console and in the file, looks like::

    [2026-10-19 09:00:00] [INFO] Cycle 1 started
"""

import logging
import re
import sys
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

LOGGER_NAME = "taskrunner"
LINE_FORMAT = '[%(asctime)s] [%(levelname)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

LEVELS = {
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def to_logging_level(level: str) -> int:
    """Map ERROR/WARN/INFO/DEBUG to the stdlib level numbers."""
    key = level.strip().upper()
    if key == "WARNING":
        key = "WARN"
    try:
        return LEVELS[key]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}") from None


class RunnerFormatter(logging.Formatter):
    """Formatter that prints WARN instead of WARNING."""

    def __init__(self):
        super().__init__(LINE_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record):
        original = record.levelname
        if record.levelno == logging.WARNING:
            record.levelname = "WARN"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class SafeFileHandler(logging.FileHandler):
    """
    File handler whose write failures never reach the caller.

    The first failure is reported once on stderr; later ones are dropped
    silently while console logging carries on.
    """

    def __init__(self, filename, encoding='utf-8'):
        super().__init__(filename, mode='a', encoding=encoding)
        self.failed = False

    def handleError(self, record):
        if not self.failed:
            self.failed = True
            err = sys.exc_info()[1]
            sys.stderr.write(f"Failed to write log file {self.baseFilename}: {err}\n")


def rotate_logs(directory: Path, pattern: str, max_files: int) -> List[Path]:
    """
    Delete all but the newest ``max_files`` logs whose whole name matches
    the regular expression ``pattern``.

    Files are ordered by modification time, newest first; ties are broken
    by name, highest first, since generated names embed their timestamp.

    Returns:
        The paths that were deleted
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    files = []
    for path in directory.iterdir():
        if not re.fullmatch(pattern, path.name):
            continue
        try:
            if path.is_file():
                files.append((path.stat().st_mtime, path.name, path))
        except OSError:
            continue

    files.sort(key=lambda item: (item[0], item[1]), reverse=True)

    removed = []
    for _, _, path in files[max_files:]:
        try:
            path.unlink()
            removed.append(path)
        except OSError as e:
            logger.warning(f"Failed to remove old log file {path}: {e}")

    if removed:
        logger.debug(f"Removed {len(removed)} old log file(s) from {directory}")
    return removed


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    stream=None,
) -> Optional[SafeFileHandler]:
    """
    Setup logging configuration.

    Attaches a console handler and, when ``log_file`` is given, a file
    handler to the package logger. If the file cannot be opened the runner
    carries on with console output only.

    Returns:
        The file handler, or None if file logging is unavailable
    """
    numeric_level = to_logging_level(level)
    formatter = RunnerFormatter()

    package_logger = logging.getLogger(LOGGER_NAME)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(numeric_level)
    package_logger.propagate = False

    # Console handler
    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if not log_file:
        return None

    # File handler
    log_path = Path(log_file).expanduser()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = SafeFileHandler(log_path)
    except OSError as e:
        logger.warning(f"Cannot open log file {log_path}, logging to console only: {e}")
        return None

    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)
    return file_handler
