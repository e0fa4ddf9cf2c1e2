"""
Base source interface.

A source is the system of record: it only ever needs to list people.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional
from personnel_sync.models import Person

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised when a source cannot produce its listing."""
    pass


class Source(ABC):
    """
    Abstract base class for source adapters.

    Source modules live in personnel_sync.sources and are selected by the
    source 'type' in the configuration.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize source adapter.

        Args:
            config: Source configuration dictionary
        """
        self.config = config
        self.name = config.get('name', config.get('type', self.__class__.__name__))

    def for_set(self, set_config: Optional[Dict[str, Any]]) -> None:
        """
        Apply sync-set specific settings before list_users is called.

        Args:
            set_config: The 'source' block of the current sync set
        """
        pass

    @abstractmethod
    def list_users(self, desired_attrs: Optional[List[str]] = None) -> List[Person]:
        """
        Return every person known to the source.

        Paginated sources must drain all pages before returning.

        Args:
            desired_attrs: Source attribute names the attribute map needs

        Returns:
            List of Person records

        Raises:
            SourceError: If the listing cannot be retrieved
        """
        pass

    def close(self) -> None:
        """Release any connections held by the adapter."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
