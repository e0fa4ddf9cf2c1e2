"""
Thin ldap3 wrapper used by the LDAP source.

Handles binding (LDAPS, StartTLS, optional client certificates) with
retries, and paged subtree searches whose entries come back as flat
string dictionaries.
"""

import logging
import ssl
from typing import Dict, List, Any, Optional
from ldap3 import Server, Connection, SUBTREE, ALL, Tls
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError, LDAPBindError
from personnel_sync.retry import (
    retry_call, retry_settings_from_config, create_retry_callback, MaxRetriesExceeded
)

logger = logging.getLogger(__name__)

# Simple Paged Results control (RFC 2696)
PAGED_RESULTS_CONTROL = '1.2.840.113556.1.4.319'


class LDAPConnectionError(Exception):
    """Could not reach or bind to the directory."""
    pass


class LDAPQueryError(Exception):
    """A search could not be run or returned an error."""
    pass


class LDAPClient:
    """
    A bound connection to one directory server.

    Reads server_url, bind_dn and bind_password plus the optional TLS
    settings (use_ssl, start_tls, verify_ssl, ca_cert_file, cert_file,
    key_file), timeouts, page_size and the error_handling block.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']

        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', 1000)

        retries = config.get('error_handling') or {}
        self.max_retries = retries.get('max_retries', 3)
        self.retry_settings = retry_settings_from_config(retries)

        self.server = None
        self.connection = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> bool:
        """
        Open and bind, retrying a failed bind up to max_retries times.

        Raises:
            LDAPConnectionError: if no attempt succeeded
        """
        self.server = Server(
            self.server_url,
            use_ssl=self.use_ssl,
            tls=self._create_tls_config(),
            get_info=ALL,
            connect_timeout=self.connection_timeout
        )

        try:
            retry_call(
                self._bind_once,
                exceptions=(LDAPException,),
                on_retry=create_retry_callback(f"Bind to {self.server_url}"),
                **self.retry_settings
            )
        except MaxRetriesExceeded as e:
            raise LDAPConnectionError(
                f"Could not bind to {self.server_url} after {e.attempts} attempts: {e.last_exception}"
            ) from e

        self._connected = True
        logger.info(f"Bound to LDAP server {self.server_url} as {self.bind_dn}")
        return True

    def _bind_once(self):
        conn = Connection(self.server, user=self.bind_dn, password=self.bind_password,
                          auto_bind=False, receive_timeout=self.receive_timeout)
        self.connection = conn
        try:
            if not conn.open():
                raise LDAPSocketOpenError(f"open failed: {conn.result}")
            if self.start_tls and not self.use_ssl:
                if not conn.start_tls():
                    raise LDAPSocketOpenError(f"StartTLS failed: {conn.result}")
            if not conn.bind():
                raise LDAPBindError(f"bind rejected: {conn.result}")
        except LDAPException:
            self.connection = None
            try:
                conn.unbind()
            except LDAPException as e:
                logger.debug(f"unbind after failed bind: {e}")
            raise

    def _create_tls_config(self) -> Optional[Tls]:
        """Tls settings for LDAPS or StartTLS, None for plain connections."""
        if not (self.use_ssl or self.start_tls):
            return None

        if not self.verify_ssl:
            logger.warning(f"Certificate verification is off for {self.server_url}")

        options = {
            'validate': ssl.CERT_REQUIRED if self.verify_ssl else ssl.CERT_NONE,
            'ca_certs_file': self.ca_cert_file,
        }
        if self.cert_file and self.key_file:
            options.update(local_certificate_file=self.cert_file,
                           local_private_key_file=self.key_file)

        try:
            return Tls(**options)
        except (LDAPException, OSError) as e:
            raise LDAPConnectionError(f"Invalid TLS settings for {self.server_url}: {e}") from e

    def disconnect(self):
        if not (self.connection and self._connected):
            return
        try:
            self.connection.unbind()
        except LDAPException as e:
            logger.warning(f"Unbind from {self.server_url} failed: {e}")
        finally:
            self._connected = False
            self.connection = None

    def search_users(self, search_base: str, search_filter: str,
                     attributes: List[str]) -> List[Dict[str, str]]:
        """
        Paged subtree search returning one flat dict per entry.

        Each dict has the entry 'dn' plus the first value of every
        non-empty requested attribute. An empty search_base falls back to
        the domain base.

        Raises:
            LDAPQueryError: if not connected or the server rejects the search
        """
        if not self._connected:
            raise LDAPQueryError("Not connected to LDAP server")

        base = search_base or self._get_domain_base()
        logger.debug(f"LDAP search {search_filter} under {base}")

        results = []
        pages = 0
        cookie = None
        try:
            while True:
                ok = self.connection.search(
                    search_base=base,
                    search_filter=search_filter,
                    search_scope=SUBTREE,
                    attributes=attributes,
                    paged_size=self.page_size,
                    paged_cookie=cookie
                )
                if not ok and self.connection.result.get('description') != 'success':
                    raise LDAPQueryError(f"Search under {base} failed: {self.connection.result}")

                page = [self._flatten_entry(e) for e in self.connection.entries]
                pages += 1
                results.extend(page)

                cookie = self._next_page_cookie()
                if not (cookie and page):
                    break
        except LDAPException as e:
            raise LDAPQueryError(f"Search under {base} failed: {e}") from e

        logger.info(f"LDAP search returned {len(results)} entries in {pages} page(s)")
        return results

    def _next_page_cookie(self):
        control = (self.connection.result.get('controls') or {}).get(PAGED_RESULTS_CONTROL)
        return control.get('value', {}).get('cookie') if control else None

    @staticmethod
    def _flatten_entry(entry) -> Dict[str, str]:
        flat = {'dn': str(entry.entry_dn)}
        for name in entry.entry_attributes:
            values = entry[name].values
            if values and values[0] not in (None, ''):
                flat[name] = str(values[0])
        return flat

    def _get_domain_base(self) -> str:
        """The DC= components of the bind DN, else the server's first naming context."""
        dc_parts = [rdn.strip() for rdn in self.bind_dn.split(',')
                    if rdn.strip().upper().startswith('DC=')]
        if dc_parts:
            return ','.join(dc_parts)

        info = self.server.info if self.server else None
        if info and info.naming_contexts:
            return info.naming_contexts[0]

        raise LDAPQueryError("Cannot determine domain base DN")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
