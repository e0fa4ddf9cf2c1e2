"""
A single reconciliation run between one source and one destination.

The run fetches, projects and diffs on the calling thread, then either
reports the plan (dry run) or hands the change set to the destination,
which applies it concurrently.
"""

import logging
from typing import List, Optional
from personnel_sync.models import AttributeMapping, ChangeSet, ChangeResults
from personnel_sync.event_log import EventLog
from personnel_sync.projection import remap_to_destination_attributes
from personnel_sync.diff import generate_change_set
from personnel_sync.retry import is_retryable_error
from personnel_sync.sources.base import Source
from personnel_sync.destinations.base import Destination

logger = logging.getLogger(__name__)


def sync_people(source: Source, destination: Destination, attribute_map: List[AttributeMapping],
                dry_run: bool, event_log: Optional[EventLog] = None) -> ChangeResults:
    """
    Reconcile the destination against the source.

    Args:
        source: Source adapter, already configured for the sync set
        destination: Destination adapter, already configured for the sync set
        attribute_map: Ordered attribute mappings
        dry_run: If True, report the plan without touching the destination
        event_log: Sink for per-operation events

    Returns:
        ChangeResults with applied (or, in a dry run, planned) counts. A
        failure to list either side returns zero counts and the error.
    """
    if event_log is None:
        event_log = EventLog()

    try:
        source_people = source.list_users([m.source for m in attribute_map])
    except Exception as e:
        logger.error(f"Failed to list users from source {source.name}: {e}",
                     exc_info=not is_retryable_error(e))
        return ChangeResults(errors=[str(e)])
    logger.info(f"Found {len(source_people)} people in source")

    source_people = remap_to_destination_attributes(source_people, attribute_map)

    try:
        destination_people = destination.list_users([m.destination for m in attribute_map])
    except Exception as e:
        logger.error(f"Failed to list users from destination {destination.name}: {e}",
                     exc_info=not is_retryable_error(e))
        return ChangeResults(errors=[str(e)])
    logger.info(f"Found {len(destination_people)} people in destination")

    change_set = generate_change_set(source_people, destination_people)
    change_set = _apply_destination_switches(change_set, destination)

    if dry_run:
        _report_change_set(change_set, event_log)
        return ChangeResults(
            created=len(change_set.create),
            updated=len(change_set.update),
            deleted=len(change_set.delete),
        )

    if change_set.is_empty():
        logger.info("No changes needed")
        return ChangeResults()

    return destination.apply_change_set(change_set, event_log)


def _apply_destination_switches(change_set: ChangeSet, destination: Destination) -> ChangeSet:
    """Drop the categories the destination configuration has turned off."""
    if destination.disable_add and change_set.create:
        logger.info(f"Adds disabled for {destination.name}, skipping {len(change_set.create)} user(s)")
        change_set.create = []
    if destination.disable_update and change_set.update:
        logger.info(f"Updates disabled for {destination.name}, skipping {len(change_set.update)} user(s)")
        change_set.update = []
    if destination.disable_delete and change_set.delete:
        logger.info(f"Deletes disabled for {destination.name}, skipping {len(change_set.delete)} user(s)")
        change_set.delete = []
    return change_set


def _report_change_set(change_set: ChangeSet, event_log: EventLog) -> None:
    logger.info(f"ChangeSet Plans: Create {len(change_set.create)}, "
                f"Update {len(change_set.update)}, Delete {len(change_set.delete)}")

    for action, people in (('create', change_set.create),
                           ('update', change_set.update),
                           ('delete', change_set.delete)):
        for i, person in enumerate(people, 1):
            event_log.info(f"[dry run] {action} {i}) {person.compare_value}")
