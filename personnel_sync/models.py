"""
Core data model for personnel synchronization.

Person records are the unit compared between a source and a destination.
They are immutable: projection and adapters always build new records.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional


@dataclass(frozen=True)
class Person:
    """A single person as seen by a source or destination system."""

    compare_value: str
    attributes: Dict[str, str] = field(default_factory=dict)
    id: Optional[str] = None
    disable_changes: bool = False


@dataclass(frozen=True)
class AttributeMapping:
    """
    Maps one source attribute onto one destination attribute.

    case_sensitive is carried for adapters that want it; matching in the diff
    is always case-insensitive on the compare value.
    """

    source: str
    destination: str
    required: bool = False
    case_sensitive: bool = False

    @classmethod
    def from_config(cls, entry: Dict[str, Any]) -> 'AttributeMapping':
        return cls(
            source=entry['source'],
            destination=entry['destination'],
            required=bool(entry.get('required', False)),
            case_sensitive=bool(entry.get('case_sensitive', False)),
        )


def attribute_mappings_from_config(entries: List[Dict[str, Any]]) -> List[AttributeMapping]:
    """Build the ordered attribute map from the attribute_map config section."""
    return [AttributeMapping.from_config(entry) for entry in entries or []]


@dataclass
class ChangeSet:
    """People to create, update and delete in the destination."""

    create: List[Person] = field(default_factory=list)
    update: List[Person] = field(default_factory=list)
    delete: List[Person] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.create or self.update or self.delete)


class ChangeResults:
    """
    Outcome counters of a sync run.

    Apply units run on worker threads and all increment the same instance,
    so every mutation goes through the lock.
    """

    COUNTERS = ('created', 'updated', 'deleted')

    def __init__(self, created: int = 0, updated: int = 0, deleted: int = 0,
                 errors: Optional[List[str]] = None):
        self.created = created
        self.updated = updated
        self.deleted = deleted
        self.errors = list(errors) if errors else []
        self._lock = threading.Lock()

    def increment(self, counter: str, amount: int = 1) -> None:
        if counter not in self.COUNTERS:
            raise ValueError(f"Unknown result counter: {counter}")
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def add_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    def merge(self, other: 'ChangeResults') -> None:
        """Fold another result into this one."""
        with self._lock:
            self.created += other.created
            self.updated += other.updated
            self.deleted += other.deleted
            self.errors.extend(other.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'created': self.created,
            'updated': self.updated,
            'deleted': self.deleted,
            'errors': list(self.errors),
        }

    def __eq__(self, other):
        if not isinstance(other, ChangeResults):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return (f"ChangeResults(created={self.created}, updated={self.updated}, "
                f"deleted={self.deleted}, errors={self.errors!r})")
