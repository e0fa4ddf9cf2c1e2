"""
Empty destination that lists nobody and applies nothing.
"""

from typing import List, Optional
from personnel_sync.models import Person, ChangeSet, ChangeResults
from personnel_sync.event_log import EventLog
from .base import Destination


class EmptyDestination(Destination):
    """Destination with no people that discards every change set."""

    def list_users(self, desired_attrs: Optional[List[str]] = None) -> List[Person]:
        return []

    def apply_change_set(self, changes: ChangeSet, event_log: EventLog) -> ChangeResults:
        return ChangeResults()
