"""
Empty source that always lists nobody.
"""

from typing import List, Optional
from personnel_sync.models import Person
from .base import Source


class EmptySource(Source):
    """Source with no people."""

    def list_users(self, desired_attrs: Optional[List[str]] = None) -> List[Person]:
        return []
