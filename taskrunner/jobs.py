"""
Generic command execution for scheduled cycles.

Runs the target command once, streams its output into the log and
classifies the outcome. The runner is completely decoupled from what the
target does - it simply runs whatever command it was given.
"""

import logging
import os
import subprocess
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ExitStatus(Enum):
    SUCCESS = "success"
    FAILED_CODE = "failed_code"
    FAILED_EXCEPTION = "failed_exception"


class CycleExecutionError(Exception):
    """Raised when a failed cycle stops the loop under stop-on-error."""

    def __init__(self, result: 'ExecutionResult'):
        self.result = result
        super().__init__(result.describe())


@dataclass
class ExecutionResult:
    """Outcome of a single cycle. Consumed immediately, never stored."""
    started_at: datetime
    finished_at: datetime
    exit_status: ExitStatus
    exit_code: Optional[int] = None
    error: Optional[str] = None
    stop_on_error: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_status == ExitStatus.SUCCESS

    @property
    def succeeded(self) -> bool:
        """True unless the cycle failed and failures stop the loop."""
        return self.ok or not self.stop_on_error

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def describe(self) -> str:
        if self.exit_status == ExitStatus.SUCCESS:
            return "completed successfully"
        if self.exit_status == ExitStatus.FAILED_CODE:
            return f"failed with exit code {self.exit_code}"
        return f"failed to execute: {self.error}"


def render_parameters(parameters: Dict[str, str]) -> List[str]:
    """
    Render pass-through parameters as command-line arguments.

    ``{"Source": "C:/data", "Verbose": ""}`` becomes
    ``["--Source", "C:/data", "--Verbose"]``. Keys that already start with a
    dash are used as given.
    """
    args = []
    for key, value in parameters.items():
        flag = key if key.startswith('-') else f"--{key}"
        args.append(flag)
        if value != "":
            args.append(value)
    return args


class CommandExecutor:
    """
    Executes the target command for one cycle.

    This is a generic executor that can run any command - it knows nothing
    about what the command does. Failures are reported in the returned
    ExecutionResult and never raised.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None,
                 working_dir: Optional[str] = None):
        """
        Initialize command executor.

        Args:
            clock: Returns the current aware datetime (defaults to local time)
            working_dir: Working directory for the command
        """
        self.clock = clock or (lambda: datetime.now().astimezone())
        self.working_dir = working_dir

    def build_command(self, target: str, parameters: Optional[Dict[str, str]] = None) -> List[str]:
        """Build the argv for the target; Python scripts run under this interpreter."""
        argv = [target]
        if Path(target).suffix.lower() == '.py':
            argv = [sys.executable, target]
        return argv + render_parameters(parameters or {})

    def _popen_kwargs(self) -> Dict:
        kwargs = {
            'stdout': subprocess.PIPE,
            'stderr': subprocess.PIPE,
            'text': True,
            'errors': 'replace',
            'cwd': self.working_dir,
        }
        if os.name == 'posix':
            # Keep terminal Ctrl+C away from the in-flight cycle
            kwargs['start_new_session'] = True
        return kwargs

    def execute(
        self,
        target: str,
        parameters: Optional[Dict[str, str]] = None,
        stop_on_error: bool = False,
    ) -> ExecutionResult:
        """
        Run the target once and wait for it to finish.

        There is no timeout: the command runs to completion or until the
        process is killed externally.

        Args:
            target: Path or name of the command to execute
            parameters: Pass-through parameters, forwarded verbatim
            stop_on_error: Whether a failure should stop the loop

        Returns:
            ExecutionResult describing the cycle
        """
        argv = self.build_command(target, parameters)
        logger.debug(f"Executing command: {argv}")

        started_at = self.clock()
        try:
            process = subprocess.Popen(argv, **self._popen_kwargs())

            def read_stream(stream, log_func):
                for line in stream:
                    log_func(line.rstrip('\n'))

            readers = [
                threading.Thread(target=read_stream, args=(process.stdout, logger.info), daemon=True),
                threading.Thread(target=read_stream, args=(process.stderr, logger.warning), daemon=True),
            ]
            for reader in readers:
                reader.start()

            returncode = process.wait()

            for reader in readers:
                reader.join()

        except Exception as e:
            logger.error(f"Command execution failed: {e}")
            return ExecutionResult(
                started_at=started_at,
                finished_at=self.clock(),
                exit_status=ExitStatus.FAILED_EXCEPTION,
                error=str(e),
                stop_on_error=stop_on_error,
            )

        finished_at = self.clock()
        if returncode != 0:
            return ExecutionResult(
                started_at=started_at,
                finished_at=finished_at,
                exit_status=ExitStatus.FAILED_CODE,
                exit_code=returncode,
                error=f"Command failed with exit code {returncode}",
                stop_on_error=stop_on_error,
            )

        return ExecutionResult(
            started_at=started_at,
            finished_at=finished_at,
            exit_status=ExitStatus.SUCCESS,
            exit_code=returncode,
            stop_on_error=stop_on_error,
        )
