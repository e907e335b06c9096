"""
Recurring Task Runner

Runs any command again and again on a schedule.

Features:
- Generic command execution (the runner knows nothing about the target)
- Interval scheduling (every N hours/minutes after the previous start)
- Calendar scheduling (chosen weekdays at chosen times)
- Run-once and stop-on-error policies
- Graceful shutdown on Ctrl+C / SIGTERM
- Leveled logging with log file retention
- Retry-with-backoff helper for per-item work inside target scripts
"""

__version__ = "0.3.0"

from taskrunner.config import ConfigurationError, RunnerConfig, ScheduleConfig
from taskrunner.jobs import CommandExecutor, ExecutionResult
from taskrunner.retry import RetryExecutor, process_in_batches
from taskrunner.service import RunnerService

__all__ = [
    "ConfigurationError",
    "RunnerConfig",
    "ScheduleConfig",
    "CommandExecutor",
    "ExecutionResult",
    "RetryExecutor",
    "process_in_batches",
    "RunnerService",
]
