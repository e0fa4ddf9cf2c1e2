"""
LDAP source.

Lists people from an LDAP directory (Active Directory, OpenLDAP) with a
paged subtree search, optionally restricted to the members of one group.
"""

import logging
from typing import Dict, List, Any, Optional
from ldap3.utils.conv import escape_filter_chars
from personnel_sync.models import Person
from personnel_sync.ldap_client import LDAPClient, LDAPConnectionError, LDAPQueryError
from .base import Source, SourceError

logger = logging.getLogger(__name__)


class LDAPSource(Source):
    """
    Source backed by an LDAP directory.

    Config keys:
        server_url, bind_dn, bind_password, use_ssl, start_tls, verify_ssl, ...: see LDAPClient
        user_base_dn: Search base for people
        user_filter: LDAP filter selecting people (default (objectClass=person))
        group_dn: Only list members of this group (memberOf lookup)
        compare_attribute: Attribute used as the compare value (default mail)
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        # values every sync set starts from
        self._base = {
            'user_base_dn': config.get('user_base_dn', ''),
            'user_filter': config.get('user_filter', '(objectClass=person)'),
            'group_dn': config.get('group_dn'),
        }
        self.for_set(None)
        self.compare_attribute = config.get('compare_attribute', 'mail')
        self.client = LDAPClient(config)

    def for_set(self, set_config: Optional[Dict[str, Any]]) -> None:
        set_config = set_config or {}
        self.user_base_dn = set_config.get('user_base_dn', self._base['user_base_dn'])
        self.user_filter = set_config.get('user_filter', self._base['user_filter'])
        self.group_dn = set_config.get('group_dn', self._base['group_dn'])

    def build_filter(self) -> str:
        if not self.group_dn:
            return self.user_filter
        return f"(&{self.user_filter}(memberOf={escape_filter_chars(self.group_dn)}))"

    def list_users(self, desired_attrs: Optional[List[str]] = None) -> List[Person]:
        attributes = list(desired_attrs) if desired_attrs else ['*']
        if desired_attrs and self.compare_attribute not in attributes:
            attributes.append(self.compare_attribute)

        try:
            if not self.client.connected:
                self.client.connect()
            entries = self.client.search_users(self.user_base_dn, self.build_filter(), attributes)
        except (LDAPConnectionError, LDAPQueryError) as e:
            raise SourceError(f"LDAP listing failed for {self.name}: {e}")

        people = []
        for entry in entries:
            compare_value = entry.get(self.compare_attribute)
            if not compare_value:
                logger.warning(f"LDAP entry {entry.get('dn')} has no {self.compare_attribute}, skipping")
                continue

            if desired_attrs:
                attributes_for_person = {k: v for k, v in entry.items() if k in desired_attrs}
            else:
                attributes_for_person = {k: v for k, v in entry.items() if k != 'dn'}

            people.append(Person(compare_value=compare_value, attributes=attributes_for_person))

        logger.info(f"Retrieved {len(people)} people from LDAP source {self.name}")
        return people

    def close(self) -> None:
        self.client.disconnect()
