"""
WebHelpDesk destination.

In WebHelpDesk a person is called a "Client" (not an API client). The
Clients API supports listing, creating and updating, but not deleting.
"""

import logging
from typing import Dict, List, Any, Optional
from personnel_sync.models import Person
from personnel_sync.http_client import APIClient, APIError
from .base import Destination, DestinationError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE_PER_MINUTE = 50
DEFAULT_LIST_CLIENTS_PAGE_LIMIT = 100
CLIENTS_API_PATH = '/ra/Clients'

CLIENT_FIELDS = ('firstName', 'lastName', 'email', 'username')


class WebHelpDeskDestination(Destination):
    """
    Destination for WebHelpDesk clients.

    Config keys:
        base_url: WebHelpDesk URL, e.g. https://helpdesk.example.com/helpdesk/WebObjects/Helpdesk.woa
        username, api_key: API credentials (sent as query parameters)
        list_clients_page_limit: Page size for listing (default 100)
        batch_size_per_minute: Operations per minute (default 50)
    """

    supports_delete = False

    def __init__(self, config: Dict[str, Any]):
        config = dict(config)
        batch_size = config.get('batch_size_per_minute') or DEFAULT_BATCH_SIZE_PER_MINUTE
        config['batch_size'] = batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE_PER_MINUTE
        config['batch_delay_seconds'] = 60
        super().__init__(config)

        self.list_clients_page_limit = config.get('list_clients_page_limit') or DEFAULT_LIST_CLIENTS_PAGE_LIMIT

        client_config = dict(config)
        client_config['format'] = 'json'
        client_config['query_auth'] = {
            'username': config.get('username', ''),
            'apiKey': config.get('api_key', ''),
        }
        self.client = APIClient(client_config, name=self.name)

    def list_users(self, desired_attrs: Optional[List[str]] = None) -> List[Person]:
        all_clients = []
        page = 1

        while True:
            try:
                clients = self.client.request('GET', CLIENTS_API_PATH, params={
                    'limit': self.list_clients_page_limit,
                    'page': page,
                })
            except APIError as e:
                raise DestinationError(f"Failed to list WebHelpDesk clients: {e}")

            if not isinstance(clients, list):
                raise DestinationError(f"Unexpected WebHelpDesk client list response: {clients!r}")

            all_clients.extend(clients)

            # a short page is the last one
            if len(clients) < self.list_clients_page_limit:
                break
            page += 1

        people = []
        for client in all_clients:
            attributes = {
                'id': str(client.get('id', '')),
                'email': client.get('email') or '',
                'firstName': client.get('firstName') or '',
                'lastName': client.get('lastName') or '',
                'username': client.get('username') or '',
            }
            if desired_attrs:
                attributes = {k: v for k, v in attributes.items() if k in desired_attrs}
            people.append(Person(
                compare_value=client.get('email') or '',
                attributes=attributes,
                id=str(client['id']) if client.get('id') is not None else None,
            ))

        logger.info(f"Retrieved {len(people)} clients from {self.name}")
        return people

    def create_person(self, person: Person) -> None:
        self.client.request('POST', CLIENTS_API_PATH, body=client_from_person(person))

    def update_person(self, person: Person) -> None:
        body = client_from_person(person)
        client_id = body.get('id')
        if client_id is None:
            raise DestinationError(f"No WebHelpDesk id known for {person.compare_value}")
        self.client.request('PUT', f"{CLIENTS_API_PATH}/{client_id}", body=body)

    def close(self) -> None:
        self.client.close()


def client_from_person(person: Person) -> Dict[str, Any]:
    """
    Build a WebHelpDesk client body from a person.

    Raises:
        DestinationError: If the id is not numeric
    """
    client = {field: person.attributes.get(field, '') for field in CLIENT_FIELDS}

    raw_id = person.attributes.get('id') or person.id
    if raw_id:
        try:
            client['id'] = int(raw_id)
        except ValueError:
            raise DestinationError(f"WebHelpDesk id '{raw_id}' for {person.compare_value} is not a number")

    return client
