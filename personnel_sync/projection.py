"""
Projection of source records onto destination attribute keys.
"""

import logging
from typing import List
from personnel_sync.models import Person, AttributeMapping

logger = logging.getLogger(__name__)


def remap_to_destination_attributes(source_people: List[Person],
                                    attribute_map: List[AttributeMapping]) -> List[Person]:
    """
    Build destination-shaped copies of source people.

    Each returned Person only carries the destination keys listed in the
    attribute map. A person missing a required source attribute is kept but
    flagged with disable_changes so it is never created or updated, while
    still counting as present when deciding deletes.

    Args:
        source_people: People as returned by the source adapter
        attribute_map: Ordered attribute mappings

    Returns:
        New Person instances, in the same order as source_people
    """
    people_for_destination = []

    for person in source_people:
        attrs = {}
        disable_changes = False

        for mapping in attribute_map:
            if mapping.source in person.attributes:
                attrs[mapping.destination] = person.attributes[mapping.source]
            elif mapping.required:
                logger.warning(f"User {person.compare_value} missing required attribute "
                               f"'{mapping.source}', changes disabled. Rest of data: {attrs}")
                disable_changes = True

        people_for_destination.append(Person(
            compare_value=person.compare_value,
            attributes=attrs,
            id=person.id,
            disable_changes=disable_changes,
        ))

    return people_for_destination
