"""
Rate limiting and concurrent dispatch of destination operations.

Destination APIs enforce request quotas, so apply operations are started at
most batch_size per seconds_per_batch window. This is a burst-then-pause
limiter, not a smooth one: a full batch starts immediately, then the next
admission sleeps out whatever is left of the window.
"""

import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_DELAY_SECONDS = 3
DEFAULT_MAX_WORKERS = 32


class BatchTimer:
    """Admission gate allowing batch_size operations per seconds_per_batch."""

    def __init__(self, batch_size: int, seconds_per_batch: float,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize batch timer.

        Args:
            batch_size: Operations admitted per window (<= 0 uses DEFAULT_BATCH_SIZE)
            seconds_per_batch: Window length (<= 0 uses DEFAULT_BATCH_DELAY_SECONDS)
            clock: Monotonic time source
            sleep: Sleep function
        """
        self.batch_size = batch_size if batch_size and batch_size > 0 else DEFAULT_BATCH_SIZE
        self.seconds_per_batch = (seconds_per_batch if seconds_per_batch and seconds_per_batch > 0
                                  else DEFAULT_BATCH_DELAY_SECONDS)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._counter = 0
        self._window_start = None

    def wait_on_batch(self) -> None:
        """Block until one more operation may start."""
        with self._lock:
            now = self._clock()
            if self._window_start is None:
                self._window_start = now

            if self._counter >= self.batch_size:
                remaining = self.seconds_per_batch - (now - self._window_start)
                if remaining > 0:
                    logger.debug(f"Batch of {self.batch_size} reached, waiting {remaining:.2f} seconds")
                    self._sleep(remaining)
                self._counter = 0
                self._window_start = self._clock()

            self._counter += 1


def dispatch(operations: Iterable[Callable[[], None]], batch_timer: BatchTimer,
             max_workers: Optional[int] = None) -> int:
    """
    Run operations concurrently, admitting each through the batch timer.

    A worker slot is reserved before admission, so an admitted operation
    starts at once instead of queueing behind busy workers; the batch
    timer therefore bounds start times, not submit times.

    Returns once every operation has finished. An exception escaping an
    operation is logged and does not affect the others.

    Args:
        operations: Zero-argument callables
        batch_timer: Gate called before each operation starts
        max_workers: Thread pool size

    Returns:
        Number of operations dispatched
    """
    max_workers = max_workers if max_workers and max_workers > 0 else DEFAULT_MAX_WORKERS
    slots = threading.BoundedSemaphore(max_workers)
    futures = []

    def run(operation):
        try:
            operation()
        finally:
            slots.release()

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='sync-apply') as executor:
        for operation in operations:
            slots.acquire()
            batch_timer.wait_on_batch()
            futures.append(executor.submit(run, operation))

        wait(futures)

    for future in futures:
        error = future.exception()
        if error is not None:
            logger.error(f"Apply operation raised unexpectedly: {error}")

    return len(futures)
