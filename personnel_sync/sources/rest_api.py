"""
REST API source.

Reads people from one or more JSON endpoints of an HR or roster system.
Each endpoint returns a list of records, optionally nested under a
container key; record attributes are addressed by dotted paths.
"""

import logging
from typing import Dict, List, Any, Optional
from personnel_sync.models import Person
from personnel_sync.http_client import APIClient, APIError
from .base import Source, SourceError

logger = logging.getLogger(__name__)


def get_path(data: Any, path: str) -> Any:
    """
    Resolve a dotted path inside nested dictionaries.

    Returns None when any segment is missing or not a dictionary.
    An exact key match is preferred, so keys that themselves contain
    dots still resolve.
    """
    if isinstance(data, dict) and path in data:
        return data[path]

    current = data
    for segment in path.split('.') if path else []:
        if not isinstance(current, dict) or segment not in current:
            return None
        current = current[segment]
    return current


def to_attribute_value(value: Any) -> Optional[str]:
    """Flatten a JSON scalar into an attribute string, or None if it is not a scalar."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


class RestAPISource(Source):
    """
    Source backed by a JSON REST API.

    Config keys:
        base_url, auth, verify_ssl, timeout: see APIClient
        method: HTTP method for listing (default GET)
        paths: Endpoint paths, can be overridden per sync set
        results_json_container: Dotted path to the record list ('' = top level)
        compare_attribute: Record attribute used as the compare value
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.method = config.get('method', 'GET').upper()
        self._base_paths = list(config.get('paths') or [''])
        self._base_container = config.get('results_json_container', '')
        self.for_set(None)
        self.compare_attribute = config.get('compare_attribute', 'email')
        self.client = APIClient(config, name=self.name)

        logger.info(f"Initialized REST API source {self.name} at {self.client.base_url}")

    def for_set(self, set_config: Optional[Dict[str, Any]]) -> None:
        """Overrides last for one sync set; keys the set omits fall back to the base config."""
        set_config = set_config or {}
        self.paths = list(set_config.get('paths') or self._base_paths)
        self.results_json_container = set_config.get('results_json_container', self._base_container)

    def list_users(self, desired_attrs: Optional[List[str]] = None) -> List[Person]:
        people = []
        for path in self.paths:
            try:
                response = self.client.request(self.method, path)
            except APIError as e:
                raise SourceError(f"Failed to retrieve users from {self.name}{path}: {e}")
            people.extend(self._extract_people(response, desired_attrs))

        logger.info(f"Retrieved {len(people)} people from {self.name}")
        return people

    def _extract_people(self, response: Any, desired_attrs: Optional[List[str]]) -> List[Person]:
        records = get_path(response, self.results_json_container) if self.results_json_container else response
        if not isinstance(records, list):
            raise SourceError(f"Expected a list of records at '{self.results_json_container}' "
                              f"in response from {self.name}")

        attribute_names = list(desired_attrs) if desired_attrs else None
        if attribute_names is not None and self.compare_attribute not in attribute_names:
            attribute_names.append(self.compare_attribute)

        people = []
        for record in records:
            if not isinstance(record, dict):
                logger.warning(f"Skipping non-object record from {self.name}: {record!r}")
                continue

            names = attribute_names if attribute_names is not None else list(record.keys())
            attributes = {}
            for name in names:
                value = to_attribute_value(get_path(record, name))
                if value is not None:
                    attributes[name] = value

            compare_value = attributes.get(self.compare_attribute)
            if not compare_value:
                logger.warning(f"Record missing compare attribute '{self.compare_attribute}', skipping")
                continue

            if desired_attrs and self.compare_attribute not in desired_attrs:
                del attributes[self.compare_attribute]

            people.append(Person(compare_value=compare_value, attributes=attributes))

        return people

    def close(self) -> None:
        self.client.close()
