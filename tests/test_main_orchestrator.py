#!/usr/bin/env python3
"""
Unit tests for the main sync orchestrator.

Runs the orchestrator end to end against in-memory adapters.
"""

import unittest
from unittest.mock import Mock, patch
import sys
import os

# Add parent directory to path to import personnel_sync modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from personnel_sync.main import SyncOrchestrator, SyncError, load_adapter
from personnel_sync.config import ConfigurationError
from personnel_sync.models import Person
from personnel_sync.sources.base import Source, SourceError
from personnel_sync.sources.empty import EmptySource
from personnel_sync.destinations.base import Destination
from personnel_sync.destinations.empty import EmptyDestination


class MemorySource(Source):
    """Source whose people depend on the current sync set."""

    def __init__(self, people_by_path, fail_on=None):
        super().__init__({'name': 'memory'})
        self.people_by_path = people_by_path
        self.fail_on = fail_on
        self.path = None
        self.closed = False

    def for_set(self, set_config):
        self.path = (set_config or {}).get('path')

    def list_users(self, desired_attrs=None):
        if self.fail_on is not None and self.path == self.fail_on:
            raise SourceError(f"cannot read {self.path}")
        return self.people_by_path.get(self.path, [])

    def close(self):
        self.closed = True


class MemoryDestination(Destination):
    """Destination holding people in a dict."""

    def __init__(self, people=None):
        super().__init__({'name': 'memory-dest', 'batch_size': 50, 'batch_delay_seconds': 1})
        self.people = {p.compare_value: p for p in (people or [])}
        self.closed = False

    def list_users(self, desired_attrs=None):
        return list(self.people.values())

    def create_person(self, person):
        self.people[person.compare_value] = person

    def update_person(self, person):
        if person.compare_value == 'reject@x.com':
            raise ValueError('rejected by remote')
        self.people[person.compare_value] = person

    def close(self):
        self.closed = True


def person(email, name):
    return Person(email, {'email': email, 'name': name})


class TestSyncOrchestrator(unittest.TestCase):
    """Test cases for SyncOrchestrator class."""

    def setUp(self):
        self.test_config = {
            'runtime': {'dry_run': False, 'verbosity': 5},
            'source': {'type': 'memory'},
            'destination': {'type': 'memory'},
            'attribute_map': [
                {'source': 'email', 'destination': 'email', 'required': True},
                {'source': 'name', 'destination': 'name'},
            ],
            'sync_sets': [
                {'name': 'Staff', 'source': {'path': '/staff'}},
                {'name': 'Faculty', 'source': {'path': '/faculty'}},
            ],
            'logging': {},
            'error_handling': {'max_retries': 0, 'retry_wait_seconds': 0},
            'notifications': {'enable_email': False},
        }

        patchers = [
            patch('personnel_sync.main.load_config', return_value=self.test_config),
            patch('personnel_sync.main.setup_logging'),
            patch('personnel_sync.main.send_success_summary'),
            patch('personnel_sync.main.send_sync_errors_notification'),
            patch('personnel_sync.main.send_failure_notification'),
        ]
        mocks = [p.start() for p in patchers]
        for p in patchers:
            self.addCleanup(p.stop)
        _, _, self.mock_success, self.mock_sync_errors, self.mock_failure = mocks

    def _patch_adapters(self, source, destination):
        patcher = patch('personnel_sync.main.load_adapter',
                        side_effect=lambda kind, config: source if kind == 'source' else destination)
        self.mock_load_adapter = patcher.start()
        self.addCleanup(patcher.stop)

    def test_run_syncs_every_set(self):
        source = MemorySource({
            '/staff': [person('a@x.com', 'A')],
            '/faculty': [person('a@x.com', 'A'), person('f@x.com', 'F')],
        })
        destination = MemoryDestination([person('a@x.com', 'OLD'), person('gone@x.com', 'G')])
        destination.delete_person = Mock(side_effect=lambda p: destination.people.pop(p.compare_value))
        self._patch_adapters(source, destination)

        orchestrator = SyncOrchestrator()
        exit_code = orchestrator.run()

        self.assertEqual(exit_code, 0)
        self.assertEqual(orchestrator.set_results['Staff'].to_dict(),
                         {'created': 0, 'updated': 1, 'deleted': 1, 'errors': []})
        self.assertEqual(orchestrator.set_results['Faculty'].to_dict(),
                         {'created': 1, 'updated': 0, 'deleted': 0, 'errors': []})
        self.assertEqual(orchestrator.totals.to_dict(),
                         {'created': 1, 'updated': 1, 'deleted': 1, 'errors': []})
        self.assertEqual(sorted(destination.people), ['a@x.com', 'f@x.com'])
        self.mock_success.assert_called_once()
        self.assertTrue(source.closed)
        self.assertTrue(destination.closed)

    def test_adapter_configs_receive_error_handling(self):
        self._patch_adapters(MemorySource({}), MemoryDestination())

        SyncOrchestrator().run()

        kind, adapter_config = self.mock_load_adapter.call_args_list[0].args
        self.assertEqual(kind, 'source')
        self.assertEqual(adapter_config['error_handling'], self.test_config['error_handling'])

    def test_dry_run_override_changes_nothing(self):
        source = MemorySource({'/staff': [person('new@x.com', 'N')]})
        destination = MemoryDestination()
        self._patch_adapters(source, destination)

        orchestrator = SyncOrchestrator(dry_run=True)
        exit_code = orchestrator.run()

        self.assertEqual(exit_code, 0)
        self.assertEqual(orchestrator.set_results['Staff'].created, 1)
        self.assertEqual(destination.people, {})

    def test_set_errors_give_exit_code_one_and_alert(self):
        source = MemorySource({'/faculty': [person('reject@x.com', 'R')]}, fail_on='/staff')
        destination = MemoryDestination([person('reject@x.com', 'OLD')])
        self._patch_adapters(source, destination)

        orchestrator = SyncOrchestrator()
        exit_code = orchestrator.run()

        self.assertEqual(exit_code, 1)
        self.assertIn('cannot read /staff', orchestrator.set_errors['Staff'][0])
        self.assertIn('rejected by remote', orchestrator.set_errors['Faculty'][0])
        self.mock_sync_errors.assert_called_once()
        self.mock_success.assert_not_called()

    def test_single_unnamed_set_when_none_configured(self):
        self.test_config['sync_sets'] = []
        source = MemorySource({None: [person('a@x.com', 'A')]})
        destination = MemoryDestination()
        self._patch_adapters(source, destination)

        orchestrator = SyncOrchestrator()

        self.assertEqual(orchestrator.run(), 0)
        self.assertEqual(list(orchestrator.set_results), [''])
        self.assertIn('a@x.com', destination.people)

    def test_configuration_error_exit_code(self):
        with patch('personnel_sync.main.load_config', side_effect=ConfigurationError('bad')):
            self.assertEqual(SyncOrchestrator().run(), 2)

    def test_adapter_load_failure_exit_code(self):
        patcher = patch('personnel_sync.main.load_adapter', side_effect=SyncError('no such adapter'))
        patcher.start()
        self.addCleanup(patcher.stop)

        self.assertEqual(SyncOrchestrator().run(), 4)
        self.mock_failure.assert_called_once()

    def test_health_check(self):
        self.test_config['source'] = {'type': 'empty'}
        self.test_config['destination'] = {'type': 'no_such_destination'}

        health = SyncOrchestrator().health_check()

        self.assertEqual(health['status'], 'unhealthy')
        self.assertEqual(health['checks']['configuration']['status'], 'pass')
        self.assertEqual(health['checks']['source']['status'], 'pass')
        self.assertEqual(health['checks']['destination']['status'], 'fail')
        self.assertEqual(health['checks']['notifications']['status'], 'skip')


class TestLoadAdapter(unittest.TestCase):
    """Test cases for dynamic adapter loading."""

    def test_loads_empty_adapters(self):
        self.assertIsInstance(load_adapter('source', {'type': 'empty'}), EmptySource)
        self.assertIsInstance(load_adapter('destination', {'type': 'empty'}), EmptyDestination)

    def test_unknown_module(self):
        with self.assertRaises(SyncError):
            load_adapter('source', {'type': 'does_not_exist'})

    def test_module_without_adapter_class(self):
        with self.assertRaises(SyncError):
            load_adapter('destination', {'type': 'google_auth'})

    def test_constructor_failure(self):
        with self.assertRaises(SyncError):
            load_adapter('destination', {'type': 'google_contacts'})


if __name__ == '__main__':
    unittest.main()
