#!/usr/bin/env python3
"""
Tests for runner configuration loading and validation.
"""

import json
import sys
import tempfile
from datetime import datetime, time, timedelta
from pathlib import Path

import pytest

from taskrunner.config import (
    ConfigurationError,
    LoggingConfig,
    RunnerConfig,
    ScheduleConfig,
    ScheduleMode,
    Weekday,
    build_config,
    load_config_file,
    parse_parameters,
    parse_time,
)


def test_interval_schedule():
    schedule = ScheduleConfig.build(hours=1, minutes=30)
    assert schedule.mode == ScheduleMode.INTERVAL
    assert schedule.interval == timedelta(hours=1, minutes=30)
    assert schedule.describe() == "every 1h 30m"


def test_interval_with_only_minutes():
    schedule = ScheduleConfig.build(minutes=45)
    assert schedule.interval == timedelta(minutes=45)


@pytest.mark.parametrize("hours,minutes", [(0, 0), (None, 0), (0, None), (-1, 30), (0, 60)])
def test_invalid_interval_rejected(hours, minutes):
    with pytest.raises(ConfigurationError):
        ScheduleConfig.build(hours=hours, minutes=minutes)


@pytest.mark.parametrize("hours,minutes", [(1.5, None), (None, 7.25), ("1.5", 0), (True, 0)])
def test_fractional_interval_rejected(hours, minutes):
    with pytest.raises(ConfigurationError) as excinfo:
        ScheduleConfig.build(hours=hours, minutes=minutes)
    assert excinfo.value.errors == ["'hours' and 'minutes' must be whole numbers"]


def test_integral_floats_and_strings_accepted():
    schedule = ScheduleConfig.build(hours=2.0, minutes="15")
    assert schedule.interval == timedelta(hours=2, minutes=15)


def test_calendar_schedule_sorts_and_deduplicates():
    schedule = ScheduleConfig.build(days=["Friday", "mon", "monday"], times=["17:30", "09:00", "17:30"])
    assert schedule.mode == ScheduleMode.CALENDAR
    assert schedule.days == (Weekday.MONDAY, Weekday.FRIDAY)
    assert schedule.times == (time(9, 0), time(17, 30))
    assert schedule.describe() == "on Monday, Friday at 09:00, 17:30"


def test_both_groups_are_mutually_exclusive():
    with pytest.raises(ConfigurationError) as excinfo:
        ScheduleConfig.build(minutes=30, days=["monday"], times=["09:00"])
    assert "mutually exclusive" in excinfo.value.errors[0]


def test_missing_schedule_rejected():
    with pytest.raises(ConfigurationError):
        ScheduleConfig.build()


def test_calendar_requires_days_and_times():
    with pytest.raises(ConfigurationError) as excinfo:
        ScheduleConfig.build(days=[], times=["09:00"])
    assert any("day" in e for e in excinfo.value.errors)

    with pytest.raises(ConfigurationError) as excinfo:
        ScheduleConfig.build(days=["monday"], times=[])
    assert any("time" in e for e in excinfo.value.errors)


def test_calendar_collects_every_problem():
    with pytest.raises(ConfigurationError) as excinfo:
        ScheduleConfig.build(days=["funday"], times=["24:00", "9:00"])
    assert len(excinfo.value.errors) == 3


@pytest.mark.parametrize("value,expected", [("00:00", time(0, 0)), ("23:59", time(23, 59)), (" 07:05 ", time(7, 5))])
def test_parse_time(value, expected):
    assert parse_time(value) == expected


@pytest.mark.parametrize("value", ["24:00", "9:00", "12:60", "noon", ""])
def test_parse_time_rejects_bad_values(value):
    with pytest.raises(ValueError):
        parse_time(value)


def test_weekday_numbers_follow_python():
    assert Weekday.MONDAY.number == 0
    assert Weekday.SUNDAY.number == 6
    assert Weekday.parse("THU") == Weekday.THURSDAY


def test_logging_level_alias():
    assert LoggingConfig(level="warning").level == "WARN"
    assert LoggingConfig(level="debug").level == "DEBUG"


def test_validate_target_and_logging():
    config = RunnerConfig(
        target="/definitely/not/here.exe",
        schedule=ScheduleConfig.build(minutes=5),
        logging=LoggingConfig(level="TRACE", max_files=0),
    )
    errors = config.validate()
    assert any("not found" in e for e in errors)
    assert any("log level" in e for e in errors)
    assert any("max log files" in e for e in errors)


def test_max_log_files_upper_bound():
    config = RunnerConfig(
        target=sys.executable,
        schedule=ScheduleConfig.build(minutes=5),
        logging=LoggingConfig(max_files=366),
    )
    assert config.validate() == ["max log files must be between 1 and 365"]


def test_parse_parameters_keeps_order():
    params = parse_parameters(["Source=/data", "Mode=full", "Verbose=", "Filter=a=b"])
    assert list(params) == ["Source", "Mode", "Verbose", "Filter"]
    assert params["Verbose"] == ""
    assert params["Filter"] == "a=b"


def test_parse_parameters_rejects_missing_separator():
    with pytest.raises(ConfigurationError):
        parse_parameters(["novalue"])


def test_build_config_from_file_with_overrides():
    with tempfile.TemporaryDirectory() as temp_dir:
        config_path = Path(temp_dir) / "runner.json"
        config_path.write_text(json.dumps({
            "target": sys.executable,
            "parameters": {"Source": "/data"},
            "schedule": {"days": ["monday"], "times": ["09:00"]},
            "stop_on_error": True,
            "logging": {"level": "debug", "max_files": 10},
        }))

        data = load_config_file(str(config_path))
        config = build_config(data, minutes=15, parameters={"Mode": "full"}, max_log_files=5)

    # A command-line schedule replaces the file's schedule entirely
    assert config.schedule.mode == ScheduleMode.INTERVAL
    assert config.schedule.interval == timedelta(minutes=15)
    assert config.schedule.stop_on_error is True
    assert config.parameters == {"Source": "/data", "Mode": "full"}
    assert config.logging.level == "DEBUG"
    assert config.logging.max_files == 5


def test_build_config_defaults():
    config = build_config(target=sys.executable, days="monday,friday", times=["09:00", "18:00"])
    assert config.schedule.days == (Weekday.MONDAY, Weekday.FRIDAY)
    assert config.logging.level == "INFO"
    assert config.logging.max_files == 30
    assert config.logging.file is None
    assert config.schedule.run_once is False


def test_build_config_rejects_unknown_target():
    with pytest.raises(ConfigurationError) as excinfo:
        build_config(target="no-such-command-xyz", minutes=5)
    assert "target command not found" in excinfo.value.errors[0]


@pytest.mark.parametrize("file_data,message", [
    ({"schedule": "weekly"}, "'schedule' must be a JSON object, got str"),
    ({"schedule": {"minutes": 5}, "parameters": ["a"]}, "'parameters' must be a JSON object, got list"),
    ({"schedule": {"minutes": 5}, "logging": 30}, "'logging' must be a JSON object, got int"),
    ({"schedule": {"minutes": 5}, "target": ["job.sh"]}, "'target' must be a string, got list"),
    ({"schedule": {"minutes": 5}, "logging": {"level": 10}}, "'logging.level' must be a string, got int"),
])
def test_build_config_rejects_badly_shaped_file(file_data, message):
    file_data = dict({"target": sys.executable}, **file_data)
    with pytest.raises(ConfigurationError) as excinfo:
        build_config(file_data)
    assert message in excinfo.value.errors


def test_build_config_stringifies_file_parameters():
    config = build_config({"target": sys.executable, "schedule": {"minutes": 5},
                           "parameters": {"Retries": 3, "Verbose": None}})
    assert config.parameters == {"Retries": "3", "Verbose": ""}


def test_load_config_file_errors():
    with tempfile.TemporaryDirectory() as temp_dir:
        broken = Path(temp_dir) / "broken.json"
        broken.write_text("{not json")
        with pytest.raises(ConfigurationError):
            load_config_file(str(broken))

        with pytest.raises(ConfigurationError):
            load_config_file(str(Path(temp_dir) / "missing.json"))


def test_load_config_file_from_environment(monkeypatch):
    with tempfile.TemporaryDirectory() as temp_dir:
        path = Path(temp_dir) / "env.json"
        path.write_text(json.dumps({"target": "x"}))
        monkeypatch.setenv("TASK_RUNNER_CONFIG_PATH", str(path))
        assert load_config_file() == {"target": "x"}

    monkeypatch.delenv("TASK_RUNNER_CONFIG_PATH")
    assert load_config_file() == {}


def test_default_log_file_and_pattern(monkeypatch):
    with tempfile.TemporaryDirectory() as temp_dir:
        monkeypatch.setenv("TASK_RUNNER_LOG_DIR", temp_dir)
        config = RunnerConfig(target="/opt/jobs/sync_mail.py", schedule=ScheduleConfig.build(minutes=5))

        log_file = config.default_log_file(datetime(2026, 10, 19, 9, 0, 5))
        assert log_file == Path(temp_dir) / "sync_mail_20261019_090005.log"
        assert config.log_pattern() == (Path(temp_dir), r"sync_mail_\d{8}_\d{6}\.log")

    config.logging.file = "/var/log/runner/custom.log"
    assert config.log_pattern() == (Path("/var/log/runner"), r"custom(_\d{8}_\d{6})?\.log")


def test_log_dir_falls_back_to_data_dir(monkeypatch):
    from taskrunner.config import get_log_dir

    monkeypatch.delenv("TASK_RUNNER_LOG_DIR", raising=False)
    monkeypatch.setenv("TASK_RUNNER_DATA_DIR", "/srv/runner")
    assert get_log_dir() == Path("/srv/runner") / "logs"
