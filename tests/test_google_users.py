#!/usr/bin/env python3
"""
Unit tests for the Google Directory users destination.
"""

import unittest
from unittest.mock import MagicMock
import sys
import os

# Add parent directory to path to import personnel_sync modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from personnel_sync.models import Person
from personnel_sync.destinations.base import DestinationError
from personnel_sync.destinations.google_users import (
    GoogleUsersDestination, extract_data, new_user_for_update,
    update_ids, update_locations, update_phones, update_relations
)


FULL_USER = {
    'id': '1001',
    'primaryEmail': 'john.jones@example.com',
    'name': {'givenName': 'John', 'familyName': 'Jones', 'fullName': 'John Jones'},
    'externalIds': [
        {'type': 'custom', 'customType': 'badge', 'value': 'B-1'},
        {'type': 'organization', 'value': '12345'},
    ],
    'locations': [{'type': 'desk', 'area': 'Bldg 3'}],
    'organizations': [
        {'costCenter': 'CC1', 'department': 'Engineering', 'title': 'Developer'},
        {'department': 'Ignored'},
    ],
    'phones': [
        {'type': 'mobile', 'value': '555-0199'},
        {'type': 'work', 'value': '555-0100'},
    ],
    'relations': [{'type': 'manager', 'value': 'boss@example.com'}],
    'customSchemas': {'Location': {'Building': 'HQ', 'Floor': 3}},
}


class TestExtractData(unittest.TestCase):
    """Test cases for extract_data."""

    def test_minimum(self):
        person = extract_data({'primaryEmail': 'min@example.com'})

        self.assertEqual(person.compare_value, 'min@example.com')
        self.assertEqual(person.attributes, {'email': 'min@example.com'})

    def test_all_supported_fields(self):
        person = extract_data(FULL_USER)

        self.assertEqual(person.id, '1001')
        self.assertEqual(person.attributes, {
            'email': 'john.jones@example.com',
            'givenName': 'John',
            'familyName': 'Jones',
            'id': '12345',
            'area': 'Bldg 3',
            'costCenter': 'CC1',
            'department': 'Engineering',
            'title': 'Developer',
            'phone': '555-0100',
            'manager': 'boss@example.com',
            'Location.Building': 'HQ',
        })

    def test_wrong_types_are_dropped(self):
        person = extract_data({
            'primaryEmail': 'odd@example.com',
            'name': {'givenName': 42},
            'externalIds': [{'type': 'organization', 'value': 12345}],
            'locations': 'not a list',
            'organizations': ['not a dict'],
            'phones': [{'type': 'work', 'value': ['555']}],
            'customSchemas': {'Schema': 'not a dict'},
        })

        self.assertEqual(person.attributes, {'email': 'odd@example.com'})


class TestUpdateHelpers(unittest.TestCase):
    """Test cases for the typed list update helpers."""

    def test_update_ids_replaces_organization_and_keeps_others(self):
        ids = update_ids('999', FULL_USER['externalIds'])

        self.assertEqual(ids, [
            {'type': 'organization', 'value': '999'},
            {'type': 'custom', 'customType': 'badge', 'value': 'B-1'},
        ])

    def test_update_locations(self):
        old = [{'type': 'desk', 'area': 'Old'}, {'type': 'default', 'area': 'Campus'}]
        self.assertEqual(update_locations('New', old), [
            {'type': 'desk', 'area': 'New'},
            {'type': 'default', 'area': 'Campus'},
        ])

    def test_update_phones(self):
        self.assertEqual(update_phones('555-0111', FULL_USER['phones']), [
            {'type': 'work', 'value': '555-0111'},
            {'type': 'mobile', 'value': '555-0199'},
        ])

    def test_update_relations_without_existing(self):
        self.assertEqual(update_relations('new.boss@example.com', None), [
            {'type': 'manager', 'value': 'new.boss@example.com'},
        ])

    def test_malformed_existing_entries(self):
        with self.assertRaises(DestinationError):
            update_ids('1', 'not a list')
        with self.assertRaises(DestinationError):
            update_phones('1', ['not a dict'])

    def test_new_user_for_update(self):
        person = Person('john.jones@example.com', {
            'email': 'john.jones@example.com',
            'givenName': 'Johnny',
            'familyName': 'Jones',
            'id': '12345',
            'department': 'Research',
            'title': 'Lead',
            'phone': '555-0100',
            'manager': 'boss@example.com',
            'area': 'Bldg 4',
            'Location.Building': 'Annex',
        })

        user = new_user_for_update(person, FULL_USER)

        self.assertEqual(user['name'], {'givenName': 'Johnny', 'familyName': 'Jones'})
        self.assertEqual(user['organizations'], [{'department': 'Research', 'title': 'Lead'}])
        self.assertEqual(user['externalIds'][0], {'type': 'organization', 'value': '12345'})
        self.assertEqual(len(user['externalIds']), 2)
        self.assertEqual(user['locations'], [{'type': 'desk', 'area': 'Bldg 4'}])
        self.assertEqual(user['phones'][0], {'type': 'work', 'value': '555-0100'})
        self.assertEqual(user['relations'], [{'type': 'manager', 'value': 'boss@example.com'}])
        self.assertEqual(user['customSchemas'], {'Location': {'Building': 'Annex'}})
        self.assertNotIn('primaryEmail', user)

    def test_new_user_for_update_only_includes_mapped_fields(self):
        person = Person('a@example.com', {'email': 'a@example.com', 'title': 'CTO'})

        self.assertEqual(new_user_for_update(person, {}), {'organizations': [{'title': 'CTO'}]})


class TestGoogleUsersDestination(unittest.TestCase):
    """Test cases for GoogleUsersDestination."""

    def setUp(self):
        self.service = MagicMock()
        self.users = self.service.users.return_value
        self.destination = GoogleUsersDestination(
            {'type': 'google_users', 'delegated_admin_email': 'admin@example.com'},
            service_factory=lambda: self.service,
        )

    def test_update_only(self):
        self.assertFalse(self.destination.supports_create)
        self.assertTrue(self.destination.supports_update)
        self.assertFalse(self.destination.supports_delete)

    def test_list_users_follows_page_tokens(self):
        self.users.list.return_value.execute.side_effect = [
            {'users': [FULL_USER], 'nextPageToken': 'page-2'},
            {'users': [{'primaryEmail': 'min@example.com'}]},
        ]

        people = self.destination.list_users(['email', 'department'])

        self.assertEqual([p.compare_value for p in people], ['john.jones@example.com', 'min@example.com'])
        self.assertEqual(people[0].attributes, {'email': 'john.jones@example.com', 'department': 'Engineering'})
        first_call, second_call = self.users.list.call_args_list
        self.assertIsNone(first_call.kwargs['pageToken'])
        self.assertEqual(second_call.kwargs['pageToken'], 'page-2')
        self.assertEqual(first_call.kwargs['customer'], 'my_customer')
        self.assertEqual(first_call.kwargs['projection'], 'full')

    def test_update_person(self):
        self.users.get.return_value.execute.return_value = FULL_USER
        person = Person('john.jones@example.com', {'email': 'john.jones@example.com', 'phone': '555-0123'})

        self.destination.update_person(person)

        self.users.get.assert_called_once_with(userKey='john.jones@example.com', projection='full')
        body = self.users.update.call_args.kwargs['body']
        self.assertEqual(body['phones'][0], {'type': 'work', 'value': '555-0123'})
        self.users.update.return_value.execute.assert_called_once()


if __name__ == '__main__':
    unittest.main()
