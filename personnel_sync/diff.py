"""
Three-way comparison of source and destination people.

Identity is the compare value, matched case-insensitively. When a listing
contains the same compare value twice, the first entry wins.
"""

import dataclasses
import logging
from typing import Dict, List
from personnel_sync.models import Person, ChangeSet

logger = logging.getLogger(__name__)

PERSON_IS_NOT_IN_LIST = 0
PERSON_IS_IN_LIST = 1
PERSON_IS_IN_LIST_BUT_DIFFERENT = 2


def _bucket_by_compare_value(people: List[Person]) -> Dict[str, List[Person]]:
    """Group people under their lowercased compare value, keeping listing order."""
    buckets = {}
    for person in people:
        buckets.setdefault(person.compare_value.lower(), []).append(person)
    return buckets


def is_person_in_list(compare_value: str, people: List[Person]) -> bool:
    """Return True if compare_value matches any person in the list, ignoring case."""
    lower_compare_value = compare_value.lower()
    return any(person.compare_value.lower() == lower_compare_value for person in people)


def person_status_in_list(compare_value: str, attrs: Dict[str, str], people: List[Person]) -> int:
    """
    Report whether a person is in the list and whether their attributes match.

    Attributes must be exactly equal; a key that only one side has counts
    as a difference.
    """
    lower_compare_value = compare_value.lower()

    for person in people:
        if person.compare_value.lower() == lower_compare_value:
            if attrs != person.attributes:
                logger.debug(f"Attributes not equal: {attrs}, {person.attributes}")
                return PERSON_IS_IN_LIST_BUT_DIFFERENT
            return PERSON_IS_IN_LIST

    return PERSON_IS_NOT_IN_LIST


def generate_change_set(source_people: List[Person], destination_people: List[Person]) -> ChangeSet:
    """
    Compute which people to create, update and delete in the destination.

    Source people with disable_changes set are never created or updated,
    but their presence still protects the matching destination record from
    deletion. People queued for update carry the destination id of the
    record they matched.

    Each lookup scans only the people sharing the compare value, so the
    first-match rule holds while the whole diff stays linear.
    """
    change_set = ChangeSet()

    destination_buckets = _bucket_by_compare_value(destination_people)
    source_buckets = _bucket_by_compare_value(source_people)

    for person in source_people:
        if person.disable_changes:
            continue

        candidates = destination_buckets.get(person.compare_value.lower(), [])
        status = person_status_in_list(person.compare_value, person.attributes, candidates)

        if status == PERSON_IS_NOT_IN_LIST:
            change_set.create.append(person)
        elif status == PERSON_IS_IN_LIST_BUT_DIFFERENT:
            match = candidates[0]
            if person.id is None and match.id is not None:
                person = dataclasses.replace(person, id=match.id)
            change_set.update.append(person)

    for person in destination_people:
        if not is_person_in_list(person.compare_value, source_buckets.get(person.compare_value.lower(), [])):
            change_set.delete.append(person)

    return change_set
