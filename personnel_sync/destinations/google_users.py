"""
Google Workspace Directory users destination.

Keeps profile fields of existing Workspace users in step with the source.
User accounts themselves are managed elsewhere, so this destination only
updates; creates and deletes are reported as unsupported.

The Admin SDK user resource nests most fields in typed lists (externalIds,
locations, phones, relations). extract_data flattens the entries this
destination manages into plain attributes, and the update_* helpers put a
new value back into its typed entry while leaving every other entry alone.
"""

import logging
import threading
from typing import Callable, Dict, List, Any, Optional
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from personnel_sync.models import Person
from .base import Destination, DestinationError
from .google_auth import load_service_account_credentials

logger = logging.getLogger(__name__)

DIRECTORY_SCOPES = ['https://www.googleapis.com/auth/admin.directory.user']
LIST_PAGE_SIZE = 500

ORGANIZATION_FIELDS = ('costCenter', 'department', 'title')


def _string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _find_typed_value(entries: Any, entry_type: str, field: str) -> Optional[str]:
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if isinstance(entry, dict) and entry.get('type') == entry_type:
            return _string(entry.get(field))
    return None


def extract_data(user: Dict[str, Any]) -> Person:
    """
    Flatten a Directory API user resource into a Person.

    Values of an unexpected type are left out rather than guessed at.
    """
    primary_email = user.get('primaryEmail', '')
    attrs = {'email': primary_email}

    name = user.get('name')
    if isinstance(name, dict):
        for field in ('familyName', 'givenName'):
            value = _string(name.get(field))
            if value:
                attrs[field] = value

    typed_fields = (
        ('externalIds', 'organization', 'value', 'id'),
        ('locations', 'desk', 'area', 'area'),
        ('phones', 'work', 'value', 'phone'),
        ('relations', 'manager', 'value', 'manager'),
    )
    for list_name, entry_type, field, attr_name in typed_fields:
        value = _find_typed_value(user.get(list_name), entry_type, field)
        if value:
            attrs[attr_name] = value

    organizations = user.get('organizations')
    if isinstance(organizations, list) and organizations and isinstance(organizations[0], dict):
        for field in ORGANIZATION_FIELDS:
            value = _string(organizations[0].get(field))
            if value:
                attrs[field] = value

    custom_schemas = user.get('customSchemas')
    if isinstance(custom_schemas, dict):
        for schema, fields in custom_schemas.items():
            if not isinstance(fields, dict):
                continue
            for field, value in fields.items():
                if isinstance(value, str):
                    attrs[f"{schema}.{field}"] = value

    return Person(compare_value=primary_email, attributes=attrs, id=user.get('id'))


def _replace_typed_entry(new_entry: Dict[str, str], old_entries: Any, list_name: str) -> List[Dict[str, Any]]:
    if old_entries is None:
        old_entries = []
    if not isinstance(old_entries, list):
        raise DestinationError(f"unexpected {list_name} data: {old_entries!r}")

    entries = [new_entry]
    for entry in old_entries:
        if not isinstance(entry, dict):
            raise DestinationError(f"unexpected {list_name} entry: {entry!r}")
        if entry.get('type') != new_entry['type']:
            entries.append(dict(entry))
    return entries


def update_ids(new_id: str, old_ids: Any) -> List[Dict[str, Any]]:
    """Set the organization external id, keeping all other external ids."""
    return _replace_typed_entry({'type': 'organization', 'value': new_id}, old_ids, 'externalIds')


def update_locations(new_area: str, old_locations: Any) -> List[Dict[str, Any]]:
    """Set the desk location area, keeping all other locations."""
    return _replace_typed_entry({'type': 'desk', 'area': new_area}, old_locations, 'locations')


def update_phones(new_phone: str, old_phones: Any) -> List[Dict[str, Any]]:
    """Set the work phone, keeping all other phones."""
    return _replace_typed_entry({'type': 'work', 'value': new_phone}, old_phones, 'phones')


def update_relations(new_relation: str, old_relations: Any) -> List[Dict[str, Any]]:
    """Set the manager relation, keeping all other relations."""
    return _replace_typed_entry({'type': 'manager', 'value': new_relation}, old_relations, 'relations')


def new_user_for_update(person: Person, old_user: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the update body for a user from a person and the user's current resource.

    Raises:
        DestinationError: If the current resource has malformed typed lists
    """
    user = {}
    name = {}
    organization = {}
    custom_schemas = {}

    for key, value in person.attributes.items():
        if key in ('familyName', 'givenName'):
            name[key] = value
        elif key == 'id':
            user['externalIds'] = update_ids(value, old_user.get('externalIds'))
        elif key == 'area':
            user['locations'] = update_locations(value, old_user.get('locations'))
        elif key == 'phone':
            user['phones'] = update_phones(value, old_user.get('phones'))
        elif key == 'manager':
            user['relations'] = update_relations(value, old_user.get('relations'))
        elif key in ORGANIZATION_FIELDS:
            organization[key] = value
        elif '.' in key:
            schema, field = key.split('.', 1)
            custom_schemas.setdefault(schema, {})[field] = value

    if name:
        user['name'] = name
    if organization:
        user['organizations'] = [organization]
    if custom_schemas:
        user['customSchemas'] = custom_schemas

    return user


class GoogleUsersDestination(Destination):
    """
    Destination for Google Workspace Directory user profiles.

    Config keys:
        delegated_admin_email, google_auth / google_auth_file: see google_auth
        customer: Directory customer id (default my_customer)
        domain: Restrict listing to one domain
        batch_size, batch_delay_seconds: rate limit
    """

    supports_create = False
    supports_delete = False

    def __init__(self, config: Dict[str, Any], service_factory: Optional[Callable[[], Any]] = None):
        super().__init__(config)
        self.customer = config.get('customer', 'my_customer')
        self.domain = config.get('domain')

        if service_factory is None:
            credentials = load_service_account_credentials(config, DIRECTORY_SCOPES)

            def service_factory():
                return build('admin', 'directory_v1', credentials=credentials, cache_discovery=False)

        self._service_factory = service_factory
        self._local = threading.local()

    def _service(self):
        """Directory service for the calling thread; service objects are not thread-safe."""
        service = getattr(self._local, 'service', None)
        if service is None:
            service = self._local.service = self._service_factory()
        return service

    def list_users(self, desired_attrs: Optional[List[str]] = None) -> List[Person]:
        users = []
        page_token = None

        list_args = {'projection': 'full', 'maxResults': LIST_PAGE_SIZE}
        if self.domain:
            list_args['domain'] = self.domain
        else:
            list_args['customer'] = self.customer

        try:
            while True:
                response = self._service().users().list(pageToken=page_token, **list_args).execute()
                users.extend(response.get('users', []))
                page_token = response.get('nextPageToken')
                if not page_token:
                    break
        except HttpError as e:
            raise DestinationError(f"unable to list Google users: {e}")

        people = []
        for user in users:
            person = extract_data(user)
            if desired_attrs:
                person = Person(
                    compare_value=person.compare_value,
                    attributes={k: v for k, v in person.attributes.items() if k in desired_attrs},
                    id=person.id,
                )
            people.append(person)

        logger.info(f"Retrieved {len(people)} users from {self.name}")
        return people

    def update_person(self, person: Person) -> None:
        email = person.compare_value
        users = self._service().users()
        try:
            old_user = users.get(userKey=email, projection='full').execute()
            body = new_user_for_update(person, old_user)
            users.update(userKey=email, body=body).execute()
        except HttpError as e:
            raise DestinationError(f"updateUser failed updating user {email}: {e}")
