"""
Event log sink for per-operation sync events.

Every create/update/delete attempt produces one EventLogItem. Apply units run
concurrently, so the sink is an unbounded queue: producers never block and
nothing is dropped. The orchestrator drains it after each sync set.
"""

import logging
import queue
from dataclasses import dataclass
from typing import List

logger = logging.getLogger(__name__)

LEVEL_NAMES = {
    logging.CRITICAL: 'Critical',
    logging.ERROR: 'Error',
    logging.WARNING: 'Warning',
    logging.INFO: 'Info',
    logging.DEBUG: 'Debug',
}


@dataclass(frozen=True)
class EventLogItem:
    """A single event emitted while applying a change set."""

    level: int
    message: str

    def __str__(self):
        return f"{LEVEL_NAMES.get(self.level, 'Info')}: {self.message}"


class EventLog:
    """Multi-producer sink handed to sync runs and destination adapters."""

    def __init__(self):
        self._queue = queue.SimpleQueue()

    def put(self, item: EventLogItem) -> None:
        self._queue.put(item)

    def info(self, message: str) -> None:
        self.put(EventLogItem(logging.INFO, message))

    def warning(self, message: str) -> None:
        self.put(EventLogItem(logging.WARNING, message))

    def error(self, message: str) -> None:
        self.put(EventLogItem(logging.ERROR, message))

    def drain(self) -> List[EventLogItem]:
        """Remove and return every queued item in arrival order."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def flush_to_logger(self, target: logging.Logger = None, success_level: int = logging.INFO) -> List[EventLogItem]:
        """
        Drain the queue into a logger.

        Info events are written at success_level so callers can demote them
        to DEBUG at low verbosity; warnings and errors keep their own level.
        """
        target = target or logger
        items = self.drain()
        for item in items:
            level = success_level if item.level <= logging.INFO else item.level
            target.log(level, str(item))
        return items
