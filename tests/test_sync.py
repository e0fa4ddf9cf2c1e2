#!/usr/bin/env python3
"""
Unit tests for sync_people and the destination base class.
"""

import logging
import threading
import unittest
from unittest.mock import Mock
import sys
import os

# Add parent directory to path to import personnel_sync modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from personnel_sync.models import Person, AttributeMapping, ChangeSet, ChangeResults
from personnel_sync.event_log import EventLog
from personnel_sync.sync import sync_people
from personnel_sync.sources.base import Source, SourceError
from personnel_sync.sources.empty import EmptySource
from personnel_sync.destinations.base import Destination, DestinationError
from personnel_sync.destinations.empty import EmptyDestination


class StaticSource(Source):
    """Source returning a fixed list."""

    def __init__(self, people, error=None):
        super().__init__({'name': 'static-source'})
        self.people = people
        self.error = error
        self.requested_attrs = None

    def list_users(self, desired_attrs=None):
        self.requested_attrs = desired_attrs
        if self.error:
            raise self.error
        return self.people


class RecordingDestination(Destination):
    """Destination that records every operation it is asked to perform."""

    def __init__(self, people, config=None, fail_on=()):
        base_config = {'name': 'recording', 'batch_size': 100, 'batch_delay_seconds': 1}
        base_config.update(config or {})
        super().__init__(base_config)
        self.people = people
        self.fail_on = set(fail_on)
        self.calls = []
        self._lock = threading.Lock()

    def list_users(self, desired_attrs=None):
        return self.people

    def _record(self, action, person):
        if person.compare_value in self.fail_on:
            raise DestinationError(f"rejected {person.compare_value}")
        with self._lock:
            self.calls.append((action, person.compare_value))

    def create_person(self, person):
        self._record('create', person)

    def update_person(self, person):
        self._record('update', person)

    def delete_person(self, person):
        self._record('delete', person)


class UpdateOnlyDestination(RecordingDestination):
    supports_create = False
    supports_delete = False


ATTRIBUTE_MAP = [
    AttributeMapping('email', 'email', required=True),
    AttributeMapping('name', 'name'),
]


def source_person(email, name):
    return Person(email, {'email': email, 'name': name})


class TestSyncPeople(unittest.TestCase):
    """Test cases for sync_people."""

    def setUp(self):
        self.source = StaticSource([
            source_person('a@x.com', 'A'),
            source_person('new@x.com', 'New'),
        ])
        self.destination_people = [
            Person('a@x.com', {'email': 'a@x.com', 'name': 'OLD'}, id='1'),
            Person('b@x.com', {'email': 'b@x.com'}, id='2'),
        ]

    def test_applies_change_set(self):
        destination = RecordingDestination(self.destination_people)
        event_log = EventLog()

        results = sync_people(self.source, destination, ATTRIBUTE_MAP, False, event_log)

        self.assertEqual(results, ChangeResults(created=1, updated=1, deleted=1))
        self.assertEqual(sorted(destination.calls), [
            ('create', 'new@x.com'), ('delete', 'b@x.com'), ('update', 'a@x.com'),
        ])
        self.assertEqual(len(event_log.drain()), 3)
        self.assertEqual(self.source.requested_attrs, ['email', 'name'])

    def test_dry_run_never_applies(self):
        destination = RecordingDestination(self.destination_people)
        destination.apply_change_set = Mock()
        event_log = EventLog()

        results = sync_people(self.source, destination, ATTRIBUTE_MAP, True, event_log)

        destination.apply_change_set.assert_not_called()
        self.assertEqual(results, ChangeResults(created=1, updated=1, deleted=1))
        messages = [item.message for item in event_log.drain()]
        self.assertIn('[dry run] create 1) new@x.com', messages)
        self.assertIn('[dry run] delete 1) b@x.com', messages)

    def test_source_failure_returns_error(self):
        source = StaticSource([], error=SourceError('unreachable'))
        destination = RecordingDestination(self.destination_people)
        destination.list_users = Mock()

        results = sync_people(source, destination, ATTRIBUTE_MAP, False)

        self.assertEqual((results.created, results.updated, results.deleted), (0, 0, 0))
        self.assertEqual(len(results.errors), 1)
        self.assertIn('unreachable', results.errors[0])
        destination.list_users.assert_not_called()

    def test_destination_failure_returns_error(self):
        destination = RecordingDestination([])
        destination.list_users = Mock(side_effect=DestinationError('denied'))

        results = sync_people(self.source, destination, ATTRIBUTE_MAP, False)

        self.assertEqual(len(results.errors), 1)
        self.assertIn('denied', results.errors[0])
        self.assertEqual(destination.calls, [])

    def test_disable_switches_empty_categories(self):
        destination = RecordingDestination(self.destination_people,
                                           config={'disable_add': True, 'disable_delete': True})

        results = sync_people(self.source, destination, ATTRIBUTE_MAP, False)

        self.assertEqual(results, ChangeResults(updated=1))
        self.assertEqual(destination.calls, [('update', 'a@x.com')])

    def test_no_changes_skips_apply(self):
        source = StaticSource([source_person('a@x.com', 'A')])
        destination = RecordingDestination([Person('a@x.com', {'email': 'a@x.com', 'name': 'A'})])
        destination.apply_change_set = Mock()

        results = sync_people(source, destination, ATTRIBUTE_MAP, False)

        self.assertEqual(results, ChangeResults())
        destination.apply_change_set.assert_not_called()

    def test_empty_adapters(self):
        results = sync_people(EmptySource({}), EmptyDestination({}), ATTRIBUTE_MAP, False)
        self.assertEqual(results, ChangeResults())

    def test_record_missing_required_attribute_is_never_created(self):
        source = StaticSource([
            Person('noemail@x.com', {'name': 'No Email'}),
            source_person('a@x.com', 'A'),
        ])
        destination = RecordingDestination([Person('a@x.com', {'email': 'a@x.com', 'name': 'A'})])

        results = sync_people(source, destination, ATTRIBUTE_MAP, False)

        self.assertEqual(results, ChangeResults())
        self.assertEqual(destination.calls, [])

    def test_record_missing_required_attribute_keeps_destination_record(self):
        source = StaticSource([Person('a@x.com', {'name': 'Renamed'})])
        destination = RecordingDestination([Person('a@x.com', {'email': 'a@x.com', 'name': 'A'}, id='1')])

        results = sync_people(source, destination, ATTRIBUTE_MAP, False)

        self.assertEqual(results, ChangeResults())
        self.assertEqual(destination.calls, [])

    def test_listing_error_is_the_exception_text(self):
        source = StaticSource([], error=SourceError('unreachable'))

        results = sync_people(source, RecordingDestination([]), ATTRIBUTE_MAP, False)

        self.assertEqual(results.errors, ['unreachable'])


class TestApplyChangeSet(unittest.TestCase):
    """Test cases for Destination.apply_change_set."""

    def test_failed_operation_is_reported_and_others_continue(self):
        destination = RecordingDestination([], fail_on={'bad@x.com'})
        changes = ChangeSet(create=[Person('bad@x.com'), Person('good@x.com')],
                            delete=[Person('old@x.com')])
        event_log = EventLog()

        results = destination.apply_change_set(changes, event_log)

        self.assertEqual(results, ChangeResults(created=1, deleted=1))
        items = event_log.drain()
        errors = [i.message for i in items if i.level == logging.ERROR]
        self.assertEqual(len(errors), 1)
        self.assertIn('unable to create bad@x.com in recording', errors[0])
        self.assertIn('rejected bad@x.com', errors[0])
        self.assertEqual(sorted(destination.calls), [('create', 'good@x.com'), ('delete', 'old@x.com')])

    def test_unsupported_categories_are_skipped_with_warning(self):
        destination = UpdateOnlyDestination([])
        changes = ChangeSet(create=[Person('a@x.com')], update=[Person('b@x.com')],
                            delete=[Person('c@x.com')])
        event_log = EventLog()

        results = destination.apply_change_set(changes, event_log)

        self.assertEqual(results, ChangeResults(updated=1))
        self.assertEqual(destination.calls, [('update', 'b@x.com')])
        warnings = [i.message for i in event_log.drain() if i.level == logging.WARNING]
        self.assertEqual(len(warnings), 2)

    def test_many_concurrent_operations_counted_exactly(self):
        destination = RecordingDestination([])
        changes = ChangeSet(create=[Person(f'{i}@x.com') for i in range(100)])

        results = destination.apply_change_set(changes, EventLog())

        self.assertEqual(results.created, 100)
        self.assertEqual(len(destination.calls), 100)

    def test_default_handlers_raise_unsupported(self):
        class ListOnly(Destination):
            def list_users(self, desired_attrs=None):
                return []

        destination = ListOnly({'batch_size': 10, 'batch_delay_seconds': 1})
        event_log = EventLog()

        results = destination.apply_change_set(ChangeSet(create=[Person('a@x.com')]), event_log)

        self.assertEqual(results.created, 0)
        self.assertEqual(event_log.drain()[0].level, logging.ERROR)


if __name__ == '__main__':
    unittest.main()
