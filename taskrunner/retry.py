"""
Retry-with-backoff for per-item operations.

This is separate from the runner's cycle policy: the runner never retries a
failed cycle. Use this inside a target script (or any caller) that fetches
data item by item and has to ride out throttling.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class RetryExhaustedError(Exception):
    """Raised when an operation still fails after the last attempt."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}")


class RetryExecutor:
    """
    Calls a function until it succeeds or the attempt cap is reached.

    The delay after the n-th failed attempt is ``base_delay * n`` seconds,
    so with the defaults a call waits 5s, then 10s, before giving up.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0:
            raise ValueError("base_delay must not be negative")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep
        self.retry_on = retry_on

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * attempt

    def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Execute func with retry logic.

        Raises:
            RetryExhaustedError: If func fails on every attempt
            Any exception not listed in ``retry_on``, unchanged
        """
        attempt = 0
        last_error = None

        while attempt < self.max_attempts:
            try:
                return func(*args, **kwargs)
            except self.retry_on as e:
                last_error = e
                attempt += 1

                if attempt < self.max_attempts:
                    delay = self.delay_for(attempt)
                    logger.warning(f"Attempt {attempt}/{self.max_attempts} failed: {e}")
                    logger.info(f"Retrying in {delay:g} seconds...")
                    self.sleep(delay)
                else:
                    logger.error(f"Failed after {self.max_attempts} attempts: {e}")

        raise RetryExhaustedError(self.max_attempts, last_error) from last_error


@dataclass
class BatchReport:
    """Per-item results and failures of a batch run."""
    results: Dict[Hashable, Any] = field(default_factory=dict)
    failures: Dict[Hashable, BaseException] = field(default_factory=dict)
    batches: int = 0

    @property
    def processed(self) -> int:
        return len(self.results) + len(self.failures)


def process_in_batches(
    items: Iterable[Hashable],
    func: Callable[[Hashable], Any],
    batch_size: int = 50,
    retry: Optional[RetryExecutor] = None,
    on_batch: Optional[Callable[[int], None]] = None,
) -> BatchReport:
    """
    Run func over items in batches, retrying each item independently.

    A failing item is recorded in the report and never aborts the run.

    Args:
        items: Items to process, each passed to func
        func: Per-item operation
        batch_size: Number of items per batch
        retry: Retry policy (defaults to RetryExecutor())
        on_batch: Called with the index of the next batch before it starts,
            for every batch after the first (e.g. to refresh a session)

    Returns:
        BatchReport with results and failures keyed by item
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    retry = retry or RetryExecutor()
    report = BatchReport()

    items = list(items)
    for start in range(0, len(items), batch_size):
        index = start // batch_size
        batch = items[start:start + batch_size]
        if index and on_batch:
            on_batch(index)

        logger.info(f"Processing batch {index + 1} ({len(batch)} item(s))")
        for item in batch:
            try:
                report.results[item] = retry.call(func, item)
            except RetryExhaustedError as e:
                logger.error(f"Giving up on {item!r}: {e.last_error}")
                report.failures[item] = e.last_error
        report.batches += 1

    logger.info(
        f"Batch run finished: {len(report.results)} succeeded, "
        f"{len(report.failures)} failed"
    )
    return report
