"""
Runner configuration management.

Handles loading, merging and validating the configuration of a single
recurring task runner. The runner is generic and command-based - it simply
stores the target command, its pass-through parameters and the schedule.
"""

import json
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import time, timedelta, tzinfo
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, List, Any, Tuple

from dotenv import load_dotenv
from tzlocal import get_localzone

load_dotenv()

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')
LOG_STAMP_PATTERN = r'_\d{8}_\d{6}'

LOG_LEVELS = ("ERROR", "WARN", "INFO", "DEBUG")
DEFAULT_MAX_LOG_FILES = 30
MAX_LOG_FILES_RANGE = (1, 365)


class ConfigurationError(ValueError):
    """Raised when the runner configuration is invalid or contradictory."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid configuration: " + "; ".join(self.errors))


class ScheduleMode(Enum):
    INTERVAL = "interval"
    CALENDAR = "calendar"


class Weekday(Enum):
    """Days of the week for calendar scheduling"""
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def number(self) -> int:
        """Python weekday number (0=Monday, 6=Sunday)"""
        return list(Weekday).index(self)

    @property
    def cron_name(self) -> str:
        return self.value[:3]

    @classmethod
    def parse(cls, name: str) -> 'Weekday':
        key = name.strip().lower()
        for day in cls:
            if key in (day.value, day.cron_name):
                return day
        raise ValueError(f"Unknown weekday: {name!r}")


def _data_dir() -> Path:
    """Get the data directory for runner files."""
    data_dir = os.environ.get('TASK_RUNNER_DATA_DIR')
    if data_dir:
        return Path(data_dir).expanduser()
    return Path.home() / ".task_runner"


def get_log_dir() -> Path:
    """Get the log directory from environment or default."""
    if os.environ.get('TASK_RUNNER_LOG_DIR'):
        return Path(os.environ['TASK_RUNNER_LOG_DIR']).expanduser()
    return _data_dir() / "logs"


def parse_time(value: str) -> time:
    """Parse a 24-hour HH:mm string."""
    value = value.strip()
    if not TIME_PATTERN.match(value):
        raise ValueError(f"Invalid time {value!r}, expected 24-hour HH:mm")
    hour, minute = value.split(':')
    return time(int(hour), int(minute))


def normalize_level(level: str) -> str:
    level = str(level or "INFO").strip().upper()
    if level == "WARNING":
        level = "WARN"
    return level


def _whole_number(value) -> int:
    """Coerce a count from the CLI or a JSON file, refusing fractions."""
    if value is None:
        return 0
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError(f"not a whole number: {value!r}")
    return int(value)


@dataclass(frozen=True)
class ScheduleConfig:
    """
    Immutable schedule timing configuration.

    Exactly one of the two groups is active:
    interval (hours + minutes) or calendar (days x times).
    """
    mode: ScheduleMode
    interval_hours: int = 0
    interval_minutes: int = 0
    days: Tuple[Weekday, ...] = ()
    times: Tuple[time, ...] = ()
    run_once: bool = False
    stop_on_error: bool = False
    timezone: Optional[tzinfo] = None

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.interval_hours, minutes=self.interval_minutes)

    @property
    def tz(self) -> tzinfo:
        return self.timezone or get_localzone()

    @classmethod
    def build(
        cls,
        hours: Optional[int] = None,
        minutes: Optional[int] = None,
        days: Optional[List[str]] = None,
        times: Optional[List[str]] = None,
        run_once: bool = False,
        stop_on_error: bool = False,
        timezone: Optional[tzinfo] = None,
    ) -> 'ScheduleConfig':
        """
        Validate raw scheduling values and build a ScheduleConfig.

        Raises:
            ConfigurationError: If the groups are missing, mixed or malformed
        """
        errors = []
        interval_set = hours is not None or minutes is not None
        calendar_set = days is not None or times is not None

        if interval_set and calendar_set:
            errors.append("interval (hours/minutes) and calendar (days/times) scheduling are mutually exclusive")
        elif not interval_set and not calendar_set:
            errors.append("a schedule is required: set hours/minutes or days/times")

        if errors:
            raise ConfigurationError(errors)

        if interval_set:
            try:
                hours = _whole_number(hours)
                minutes = _whole_number(minutes)
            except (TypeError, ValueError):
                raise ConfigurationError(["'hours' and 'minutes' must be whole numbers"])
            if hours < 0:
                errors.append("'hours' must be >= 0")
            if not 0 <= minutes <= 59:
                errors.append("'minutes' must be between 0 and 59")
            if hours == 0 and minutes == 0:
                errors.append("interval must be greater than zero")
            if errors:
                raise ConfigurationError(errors)
            return cls(
                mode=ScheduleMode.INTERVAL,
                interval_hours=hours,
                interval_minutes=minutes,
                run_once=run_once,
                stop_on_error=stop_on_error,
                timezone=timezone,
            )

        parsed_days = []
        for name in days or []:
            try:
                day = Weekday.parse(name)
            except ValueError as e:
                errors.append(str(e))
                continue
            if day not in parsed_days:
                parsed_days.append(day)

        parsed_times = set()
        for value in times or []:
            try:
                parsed_times.add(parse_time(value))
            except ValueError as e:
                errors.append(str(e))

        if not days:
            errors.append("calendar schedule requires at least one day")
        if not times:
            errors.append("calendar schedule requires at least one time")
        if errors:
            raise ConfigurationError(errors)

        return cls(
            mode=ScheduleMode.CALENDAR,
            days=tuple(sorted(parsed_days, key=lambda d: d.number)),
            times=tuple(sorted(parsed_times)),
            run_once=run_once,
            stop_on_error=stop_on_error,
            timezone=timezone,
        )

    def describe(self) -> str:
        if self.mode == ScheduleMode.INTERVAL:
            return f"every {self.interval_hours}h {self.interval_minutes}m"
        days = ", ".join(d.value.capitalize() for d in self.days)
        times = ", ".join(t.strftime('%H:%M') for t in self.times)
        return f"on {days} at {times}"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    max_files: int = DEFAULT_MAX_LOG_FILES

    def __post_init__(self):
        self.level = normalize_level(self.level)


@dataclass
class RunnerConfig:
    """
    Full configuration of one runner instance.

    The runner doesn't know or care what the target does. It just executes
    it with the pass-through parameters on the specified schedule.
    """
    target: str
    schedule: ScheduleConfig
    parameters: Dict[str, str] = field(default_factory=dict)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def target_name(self) -> str:
        return Path(self.target).stem or "task"

    def resolve_target(self) -> Optional[str]:
        """Resolve the target to an existing file or a command on PATH."""
        path = Path(self.target).expanduser()
        if path.is_file():
            return str(path.resolve())
        return shutil.which(self.target)

    def default_log_file(self, started_at) -> Path:
        stamp = started_at.strftime('%Y%m%d_%H%M%S')
        return get_log_dir() / f"{self.target_name}_{stamp}.log"

    def log_pattern(self) -> Tuple[Path, str]:
        """
        Directory and file name regex of the log files owned by this runner.

        Only names this runner generates match: ``<stem>_YYYYmmdd_HHMMSS.log``
        for the default location, or the explicit file itself plus its
        timestamped siblings.
        """
        if self.logging.file:
            path = Path(self.logging.file).expanduser()
            return path.parent, rf"{re.escape(path.stem)}({LOG_STAMP_PATTERN})?{re.escape(path.suffix)}"
        return get_log_dir(), rf"{re.escape(self.target_name)}{LOG_STAMP_PATTERN}\.log"

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.target or not self.target.strip():
            errors.append("'target' cannot be empty")
        elif self.resolve_target() is None:
            errors.append(f"target command not found: {self.target}")

        if self.logging.level not in LOG_LEVELS:
            errors.append(f"log level must be one of {', '.join(LOG_LEVELS)}, got {self.logging.level!r}")

        low, high = MAX_LOG_FILES_RANGE
        if not low <= self.logging.max_files <= high:
            errors.append(f"max log files must be between {low} and {high}")

        for key, value in self.parameters.items():
            if not isinstance(key, str) or not key:
                errors.append(f"parameter names must be non-empty strings, got {key!r}")
            if not isinstance(value, str):
                errors.append(f"parameter {key!r} must be a string value")

        return errors

    def check(self) -> 'RunnerConfig':
        errors = self.validate()
        if errors:
            raise ConfigurationError(errors)
        return self


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load runner settings from a JSON file.

    Configuration path priority:
    1. Explicit config_path argument
    2. TASK_RUNNER_CONFIG_PATH environment variable

    Returns:
        Raw settings dictionary (empty if no file was configured)
    """
    if not config_path:
        config_path = os.environ.get('TASK_RUNNER_CONFIG_PATH')
    if not config_path:
        return {}

    path = Path(config_path).expanduser()
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError([f"failed to load config from {path}: {e}"]) from e

    if not isinstance(data, dict):
        raise ConfigurationError([f"config file {path} must contain a JSON object"])

    logger.debug(f"Loaded configuration from {path}")
    return data


def parse_parameters(pairs: Optional[List[str]]) -> Dict[str, str]:
    """Parse KEY=VALUE strings into an ordered parameter mapping."""
    parameters = {}
    errors = []
    for pair in pairs or []:
        key, sep, value = pair.partition('=')
        if not sep or not key.strip():
            errors.append(f"parameter {pair!r} must look like KEY=VALUE")
            continue
        parameters[key.strip()] = value
    if errors:
        raise ConfigurationError(errors)
    return parameters


def _split_list(values) -> Optional[List[str]]:
    """Accept both repeated options and comma separated values."""
    if values is None:
        return None
    if isinstance(values, str):
        values = [values]
    items = []
    for value in values:
        items.extend(part for part in str(value).split(',') if part.strip())
    return items


def _check_shape(data: Dict[str, Any]) -> List[str]:
    """Report file sections whose JSON type is wrong."""
    errors = []
    for key in ('schedule', 'logging', 'parameters'):
        value = data.get(key)
        if value is not None and not isinstance(value, dict):
            errors.append(f"'{key}' must be a JSON object, got {type(value).__name__}")
    target = data.get('target')
    if target is not None and not isinstance(target, str):
        errors.append(f"'target' must be a string, got {type(target).__name__}")
    logging_data = data.get('logging')
    if isinstance(logging_data, dict):
        for key in ('level', 'file'):
            value = logging_data.get(key)
            if value is not None and not isinstance(value, str):
                errors.append(f"'logging.{key}' must be a string, got {type(value).__name__}")
    return errors


def build_config(file_data: Optional[Dict[str, Any]] = None, **overrides) -> RunnerConfig:
    """
    Merge file settings with explicit overrides and validate the result.

    Overrides with a value of None are ignored, so command-line options only
    replace file values when actually given.

    Raises:
        ConfigurationError: If the merged configuration is invalid
    """
    data = dict(file_data or {})
    shape_errors = _check_shape(data)
    if shape_errors:
        raise ConfigurationError(shape_errors)

    schedule_data = dict(data.get('schedule') or {})
    logging_data = dict(data.get('logging') or {})
    parameters = {str(k): "" if v is None else str(v) for k, v in (data.get('parameters') or {}).items()}

    def pick(key, source, default=None):
        value = overrides.get(key)
        return value if value is not None else source.get(key, default)

    schedule_keys = ('hours', 'minutes', 'days', 'times')
    if any(overrides.get(k) is not None for k in schedule_keys):
        # A schedule given on the command line replaces the file's schedule
        schedule_data = {}

    schedule = ScheduleConfig.build(
        hours=pick('hours', schedule_data),
        minutes=pick('minutes', schedule_data),
        days=_split_list(pick('days', schedule_data)),
        times=_split_list(pick('times', schedule_data)),
        run_once=bool(overrides.get('run_once') or data.get('run_once', False)),
        stop_on_error=bool(overrides.get('stop_on_error') or data.get('stop_on_error', False)),
        timezone=overrides.get('timezone'),
    )

    parameters.update(overrides.get('parameters') or {})

    max_files = overrides.get('max_log_files')
    if max_files is None:
        max_files = logging_data.get('max_files', DEFAULT_MAX_LOG_FILES)
    try:
        max_files = int(max_files)
    except (TypeError, ValueError):
        raise ConfigurationError([f"max log files must be an integer, got {max_files!r}"])

    logging_config = LoggingConfig(
        level=overrides.get('log_level') or logging_data.get('level') or "INFO",
        file=overrides.get('log_file') or logging_data.get('file'),
        max_files=max_files,
    )

    config = RunnerConfig(
        target=pick('target', data, "") or "",
        schedule=schedule,
        parameters=parameters,
        logging=logging_config,
    )
    return config.check()
