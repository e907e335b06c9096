"""
The recurring task runner loop.

One runner wraps one target command and invokes it again and again on an
interval or calendar schedule. Everything happens on a single thread: a
cycle blocks the loop, so cycles can never overlap. SIGINT/SIGTERM only set
a cancellation flag, which the loop honours between cycles and while
waiting, never in the middle of one.
"""

import logging
import os
import platform
import signal
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from taskrunner import __version__
from taskrunner.config import RunnerConfig
from taskrunner.jobs import CommandExecutor, CycleExecutionError, ExecutionResult
from taskrunner.schedule import ScheduleCalculator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CRITICAL = 1
EXIT_STOPPED_ON_ERROR = 3

TIME_FORMAT = '%Y-%m-%d %H:%M:%S'


class RunnerPhase(Enum):
    IDLE = "idle"
    DUE_CHECK = "due_check"
    RUNNING = "running"
    WAITING = "waiting"
    STOPPED = "stopped"


@dataclass
class RunnerState:
    """Mutable state of a runner, owned by the loop and the signal handler."""
    cancel_event: threading.Event = field(default_factory=threading.Event)
    phase: RunnerPhase = RunnerPhase.IDLE
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    cycles: int = 0
    failures: int = 0

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()


class RunnerService:
    """
    Runs the configured target on its schedule until cancelled.

    ``clock`` and ``sleep`` can be replaced to drive the loop with simulated
    time. The default sleep waits on the cancellation event, so a signal
    cuts a wait short instead of letting it run to the next poll.
    """

    def __init__(
        self,
        config: RunnerConfig,
        executor: Optional[CommandExecutor] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self.config = config
        self.schedule = config.schedule
        self.calculator = ScheduleCalculator(config.schedule)
        self.state = RunnerState()
        self.clock = clock or (lambda: datetime.now(self.schedule.tz))
        self.executor = executor or CommandExecutor(clock=self.clock)
        self._sleep = sleep or self.state.cancel_event.wait
        self._previous_handlers: Dict[int, object] = {}
        self.target = config.resolve_target() or config.target

    def request_cancel(self):
        """Ask the loop to stop at its next checkpoint. Safe from signal handlers."""
        self.state.cancel_event.set()

    def install_signal_handlers(self):
        """Route SIGINT and SIGTERM to request_cancel."""

        def signal_handler(signum, frame):
            self.request_cancel()

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, signal_handler)

    def restore_signal_handlers(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def _log_environment(self):
        logger.debug(f"taskrunner {__version__}, Python {sys.version.split()[0]} on {platform.platform()}")
        logger.debug(f"PID {os.getpid()}, working directory {os.getcwd()}")
        logger.debug(f"Parameters: {self.config.parameters}")

    def run(self) -> int:
        """
        Run the loop until it terminates.

        Returns:
            EXIT_OK on run-once completion or cancellation,
            EXIT_STOPPED_ON_ERROR when a cycle fails under stop-on-error,
            EXIT_CRITICAL on an unexpected error in the runner itself
        """
        logger.info(f"Runner started for {self.target} ({self.schedule.describe()})")
        if self.schedule.run_once:
            logger.info("Run-once mode: a single cycle will be executed")
        if self.schedule.stop_on_error:
            logger.info("Stop-on-error is enabled")
        self._log_environment()

        try:
            return self._run_loop()
        except CycleExecutionError as e:
            logger.error(f"Stopping because stop-on-error is set: cycle {e}")
            return EXIT_STOPPED_ON_ERROR
        except Exception as e:
            logger.error(f"Runner failed: {e}", exc_info=True)
            return EXIT_CRITICAL
        finally:
            self.state.phase = RunnerPhase.STOPPED
            logger.info(
                f"Runner stopped after {self.state.cycles} cycle(s), "
                f"{self.state.failures} failed"
            )

    def _run_loop(self) -> int:
        if self.schedule.run_once:
            if self._cancelled():
                return EXIT_OK
            self._check_result(self.run_cycle())
            logger.info("Run-once cycle finished")
            return EXIT_OK

        scheduled = self.calculator.first_run(self.clock())
        while True:
            self.state.next_run_at = scheduled
            if self.calculator.is_calendar:
                logger.info(f"Next run scheduled at {scheduled.strftime(TIME_FORMAT)}")

            if not self.wait_until(scheduled):
                return EXIT_OK

            result = self.run_cycle()
            self._check_result(result)

            scheduled = self.calculator.next_run(result.started_at, self.clock(), last_scheduled=scheduled)
            if not self.calculator.is_calendar:
                logger.info(f"Next run scheduled at {scheduled.strftime(TIME_FORMAT)}")

    def _cancelled(self) -> bool:
        if self.state.cancel_requested:
            logger.info("Cancellation requested, stopping runner")
            return True
        return False

    def _check_result(self, result: ExecutionResult):
        if not result.succeeded:
            raise CycleExecutionError(result)

    def wait_until(self, scheduled: datetime) -> bool:
        """
        Block until ``scheduled`` is due or cancellation is requested.

        Each sleep is capped at the time left to ``scheduled`` itself, so a
        cycle starts on its slot. The calendar grace window only absorbs a
        wake-up that lands slightly early.

        Returns:
            True when due, False when cancelled
        """
        while True:
            if self._cancelled():
                return False

            if self.calculator.is_calendar:
                self.state.phase = RunnerPhase.DUE_CHECK
            now = self.clock()
            if self.calculator.is_due(scheduled, now):
                return True

            self.state.phase = RunnerPhase.WAITING
            delay = min(self.calculator.poll_seconds, self.calculator.seconds_until(scheduled, now))
            logger.debug(f"Waiting {delay:.0f}s, next run at {scheduled.strftime(TIME_FORMAT)}")
            self._sleep(delay)

    def run_cycle(self) -> ExecutionResult:
        """Execute the target once and log the outcome."""
        self.state.phase = RunnerPhase.RUNNING
        self.state.cycles += 1
        cycle = self.state.cycles

        logger.info(f"Cycle {cycle} started")
        result = self.executor.execute(
            self.target,
            self.config.parameters,
            stop_on_error=self.schedule.stop_on_error,
        )
        self.state.last_run_at = result.started_at

        if result.ok:
            logger.info(f"Cycle {cycle} completed successfully in {result.duration:.2f}s")
        else:
            self.state.failures += 1
            if result.succeeded:
                logger.warning(f"Cycle {cycle} {result.describe()}, continuing")
            else:
                logger.error(f"Cycle {cycle} {result.describe()}")

        self.state.phase = RunnerPhase.IDLE
        return result
