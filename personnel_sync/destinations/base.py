"""
Base destination interface and change set application.

Destinations list their current people and apply change sets. The base
class owns the concurrency discipline: every create, update and delete is
dispatched as its own task through a BatchTimer, counters only move on
success, and one failed operation never stops the rest.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Any, Optional
from personnel_sync.models import Person, ChangeSet, ChangeResults
from personnel_sync.event_log import EventLog
from personnel_sync.batch_timer import (
    BatchTimer, dispatch, DEFAULT_BATCH_SIZE, DEFAULT_BATCH_DELAY_SECONDS, DEFAULT_MAX_WORKERS
)

logger = logging.getLogger(__name__)


class DestinationError(Exception):
    """Raised when a destination listing or operation fails."""
    pass


class UnsupportedOperationError(DestinationError):
    """Raised when a destination cannot perform the requested operation."""
    pass


class Destination(ABC):
    """
    Abstract base class for destination adapters.

    Subclasses implement list_users and whichever of create_person,
    update_person and delete_person the remote system supports, and flag
    the unsupported ones with the supports_* class attributes.
    """

    supports_create = True
    supports_update = True
    supports_delete = True

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize destination adapter.

        Args:
            config: Destination configuration dictionary
        """
        self.config = config
        self.name = config.get('name', config.get('type', self.__class__.__name__))
        self.disable_add = bool(config.get('disable_add', False))
        self.disable_update = bool(config.get('disable_update', False))
        self.disable_delete = bool(config.get('disable_delete', False))
        self.batch_size = config.get('batch_size', DEFAULT_BATCH_SIZE)
        self.batch_delay_seconds = config.get('batch_delay_seconds', DEFAULT_BATCH_DELAY_SECONDS)
        self.max_workers = config.get('max_workers', DEFAULT_MAX_WORKERS)

    def for_set(self, set_config: Optional[Dict[str, Any]]) -> None:
        """
        Apply sync-set specific settings before listing or applying.

        Args:
            set_config: The 'destination' block of the current sync set
        """
        pass

    @abstractmethod
    def list_users(self, desired_attrs: Optional[List[str]] = None) -> List[Person]:
        """
        Return the current people in the destination.

        Args:
            desired_attrs: Destination attribute names the attribute map produces

        Returns:
            List of Person records with id set to the destination handle

        Raises:
            DestinationError: If the listing cannot be retrieved
        """
        pass

    def create_person(self, person: Person) -> None:
        raise UnsupportedOperationError(f"{self.name} does not support creating users")

    def update_person(self, person: Person) -> None:
        raise UnsupportedOperationError(f"{self.name} does not support updating users")

    def delete_person(self, person: Person) -> None:
        raise UnsupportedOperationError(f"{self.name} does not support deleting users")

    def create_batch_timer(self) -> BatchTimer:
        return BatchTimer(self.batch_size, self.batch_delay_seconds)

    def apply_change_set(self, changes: ChangeSet, event_log: EventLog) -> ChangeResults:
        """
        Apply a change set to the destination.

        Args:
            changes: People to create, update and delete
            event_log: Sink for one event per attempted operation

        Returns:
            Counts of operations that succeeded
        """
        results = ChangeResults()
        operations = []

        categories = [
            ('create', changes.create, self.supports_create, self.create_person, 'created'),
            ('update', changes.update, self.supports_update, self.update_person, 'updated'),
            ('delete', changes.delete, self.supports_delete, self.delete_person, 'deleted'),
        ]

        for action, people, supported, handler, counter in categories:
            if not people:
                continue
            if not supported:
                event_log.warning(f"{self.name} does not support {action} operations, "
                                  f"skipping {len(people)} user(s)")
                continue
            for person in people:
                operations.append(self._make_operation(action, handler, person, counter,
                                                       results, event_log))

        if operations:
            logger.info(f"Applying {len(operations)} operation(s) to {self.name} "
                        f"({self.batch_size} per {self.batch_delay_seconds}s)")
            dispatch(operations, self.create_batch_timer(), self.max_workers)

        return results

    def _make_operation(self, action: str, handler: Callable[[Person], None], person: Person,
                        counter: str, results: ChangeResults, event_log: EventLog) -> Callable[[], None]:
        def operation():
            try:
                handler(person)
            except Exception as e:
                event_log.error(f"unable to {action} {person.compare_value} in {self.name}: {e}")
                return
            results.increment(counter)
            event_log.info(f"{action} {person.compare_value}")

        return operation

    def close(self) -> None:
        """Release any connections held by the adapter."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
