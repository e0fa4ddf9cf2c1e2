"""
Google Contacts destination.

Maintains the domain shared contacts of a Google Workspace domain through
the Atom/XML contacts feed. Every contact is addressed by its self link;
updates and deletes send the entry's ETag in If-Match.
"""

import logging
import xml.etree.ElementTree as ET
from typing import Dict, List, Any, Optional
from personnel_sync.models import Person
from personnel_sync.http_client import APIClient, APIError
from .base import Destination, DestinationError
from .google_auth import load_service_account_credentials, TokenProvider

logger = logging.getLogger(__name__)

MAX_QUERY_SIZE = 10000
CONTACTS_SCOPES = ['https://www.google.com/m8/feeds/contacts/']
CONTACTS_FEED_URL = 'https://www.google.com/m8/feeds/contacts/{domain}/full'

ATOM_NS = 'http://www.w3.org/2005/Atom'
GD_NS = 'http://schemas.google.com/g/2005'
OPENSEARCH_NS = 'http://a9.com/-/spec/opensearch/1.1/'
NS = {'atom': ATOM_NS, 'gd': GD_NS, 'openSearch': OPENSEARCH_NS}

WORK_REL = 'http://schemas.google.com/g/2005#work'
CONTACT_KIND = 'http://schemas.google.com/contact/2008#contact'

ET.register_namespace('atom', ATOM_NS)
ET.register_namespace('gd', GD_NS)


def _text(element: Optional[ET.Element], path: str) -> str:
    if element is None:
        return ''
    found = element.find(path, NS)
    return (found.text or '').strip() if found is not None and found.text else ''


def _primary(elements: List[ET.Element]) -> Optional[ET.Element]:
    for element in elements:
        if element.get('primary') == 'true':
            return element
    return None


def parse_contact(entry: ET.Element) -> Dict[str, str]:
    """
    Flatten one Atom contact entry into contact attributes.

    The result also carries 'etag' and 'id' (the self link).
    """
    self_link = ''
    for link in entry.findall('atom:link', NS):
        if link.get('rel') == 'self':
            self_link = link.get('href', '')
            break

    email = _primary(entry.findall('gd:email', NS))
    phone = _primary(entry.findall('gd:phoneNumber', NS))
    name = entry.find('gd:name', NS)
    organization = entry.find('gd:organization', NS)
    where = entry.find('gd:where', NS)

    return {
        'etag': entry.get(f'{{{GD_NS}}}etag', ''),
        'id': self_link,
        'email': email.get('address', '') if email is not None else '',
        'phoneNumber': (phone.text or '').strip() if phone is not None else '',
        'fullName': _text(entry, 'atom:title'),
        'givenName': _text(name, 'gd:givenName'),
        'familyName': _text(name, 'gd:familyName'),
        'where': where.get('valueString', '') if where is not None else '',
        'organization': _text(organization, 'gd:orgName'),
        'title': _text(organization, 'gd:orgTitle'),
        'jobDescription': _text(organization, 'gd:orgJobDescription'),
        'department': _text(organization, 'gd:orgDepartment'),
    }


def create_contact_body(person: Person) -> str:
    """Render a person as an Atom contact entry."""
    attrs = person.attributes

    entry = ET.Element(f'{{{ATOM_NS}}}entry')
    ET.SubElement(entry, f'{{{ATOM_NS}}}category', {
        'scheme': 'http://schemas.google.com/g/2005#kind',
        'term': CONTACT_KIND,
    })

    name = ET.SubElement(entry, f'{{{GD_NS}}}name')
    for field in ('fullName', 'givenName', 'familyName'):
        ET.SubElement(name, f'{{{GD_NS}}}{field}').text = attrs.get(field, '')

    ET.SubElement(entry, f'{{{GD_NS}}}email', {
        'rel': WORK_REL, 'primary': 'true', 'address': attrs.get('email', ''),
    })
    ET.SubElement(entry, f'{{{GD_NS}}}phoneNumber', {
        'rel': WORK_REL, 'primary': 'true',
    }).text = attrs.get('phoneNumber', '')
    ET.SubElement(entry, f'{{{GD_NS}}}where', {'valueString': attrs.get('where', '')})

    organization = ET.SubElement(entry, f'{{{GD_NS}}}organization', {
        'rel': WORK_REL, 'label': 'Work', 'primary': 'true',
    })
    for tag, field in (('orgName', 'organization'), ('orgTitle', 'title'),
                       ('orgJobDescription', 'jobDescription'), ('orgDepartment', 'department')):
        ET.SubElement(organization, f'{{{GD_NS}}}{tag}').text = attrs.get(field, '')

    return ET.tostring(entry, encoding='unicode')


class GoogleContactsDestination(Destination):
    """
    Destination for Google Workspace domain shared contacts.

    Config keys:
        domain: Workspace domain
        delegated_admin_email, google_auth / google_auth_file: see google_auth
        batch_size, batch_delay_seconds: rate limit
    """

    def __init__(self, config: Dict[str, Any], token_provider=None):
        super().__init__(config)
        self.domain = config.get('domain')
        if not self.domain:
            raise DestinationError("domain is required for the Google Contacts destination")

        if token_provider is None:
            token_provider = TokenProvider(load_service_account_credentials(config, CONTACTS_SCOPES))

        client_config = dict(config)
        client_config['base_url'] = CONTACTS_FEED_URL.format(domain=self.domain)
        client_config['format'] = 'raw'
        client_config['headers'] = {'GData-Version': '3.0', 'User-Agent': 'personnel-sync'}
        client_config.pop('auth', None)
        self.client = APIClient(client_config, name=self.name, token_provider=token_provider)

    def list_users(self, desired_attrs: Optional[List[str]] = None) -> List[Person]:
        try:
            body = self.client.request_raw('GET', '', params={'max-results': MAX_QUERY_SIZE})
        except APIError as e:
            raise DestinationError(f"failed to retrieve user list: {e}")

        try:
            feed = ET.fromstring(body)
        except ET.ParseError as e:
            raise DestinationError(f"failed to parse xml for user list: {e}")

        total = _text(feed, 'openSearch:totalResults')
        if total and int(total) >= MAX_QUERY_SIZE:
            raise DestinationError("too many entries in Google Contacts directory")

        people = []
        for entry in feed.findall('atom:entry', NS):
            contact = parse_contact(entry)
            contact.pop('etag')
            if desired_attrs:
                attributes = {k: v for k, v in contact.items() if k in desired_attrs}
            else:
                attributes = contact
            people.append(Person(compare_value=contact['email'], attributes=attributes, id=contact['id']))

        logger.info(f"Retrieved {len(people)} contacts from {self.name}")
        return people

    def create_person(self, person: Person) -> None:
        self.client.request_raw('POST', '', body=create_contact_body(person),
                                headers={'Content-Type': 'application/atom+xml'})

    def update_person(self, person: Person) -> None:
        url = self._contact_url(person)
        etag = self._get_etag(url)
        self.client.request_raw('PUT', url, body=create_contact_body(person), headers={
            'If-Match': etag,
            'Content-Type': 'application/atom+xml',
        })

    def delete_person(self, person: Person) -> None:
        url = self._contact_url(person)
        etag = self._get_etag(url)
        self.client.request_raw('DELETE', url, headers={'If-Match': etag})

    def _contact_url(self, person: Person) -> str:
        url = person.id or person.attributes.get('id')
        if not url:
            raise DestinationError(f"No contact link known for {person.compare_value}")
        return url

    def _get_etag(self, url: str) -> str:
        try:
            entry = ET.fromstring(self.client.request_raw('GET', url))
        except ET.ParseError as e:
            raise DestinationError(f"failed to parse contact xml: {e}")
        return parse_contact(entry)['etag']

    def close(self) -> None:
        self.client.close()
