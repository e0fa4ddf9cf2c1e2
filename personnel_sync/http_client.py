"""
HTTP client shared by the REST-style source and destination adapters.

One APIClient is bound to one base URL. It builds the TLS context
(extra CAs, client certificates in PEM or PKCS12 form), attaches
credentials (Basic, static bearer token, OAuth2 client credentials or a
caller supplied token provider), encodes JSON/XML bodies and retries
transient failures. Apply operations share a client across worker
threads, so connections are kept per thread.
"""

import json
import ssl
import time
import base64
import logging
import tempfile
import threading
from typing import Callable, Dict, Any, Optional, Tuple, Union
from urllib.parse import urlparse, urljoin, urlencode
from http.client import HTTPSConnection, HTTPConnection, HTTPException
import xml.etree.ElementTree as ET
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from personnel_sync.retry import (
    RetryableError, MaxRetriesExceeded, RETRYABLE_STATUS_CODES,
    retry_call, retry_settings_from_config, create_retry_callback
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
# OAuth2 tokens are renewed this many seconds before they expire
TOKEN_EXPIRY_MARGIN = 60

CONTENT_TYPES = {'json': 'application/json', 'xml': 'application/xml'}
# methods that are safe to resend once the request has gone out
IDEMPOTENT_METHODS = frozenset({'GET', 'HEAD', 'PUT', 'DELETE'})


class APIError(Exception):
    """A request failed; status_code and body are set when a response arrived."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ''):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class APIAuthenticationError(APIError):
    """The server rejected the credentials, or no token could be obtained."""
    pass


def _read_pkcs12(path: str, password: Optional[str]):
    with open(path, 'rb') as f:
        return pkcs12.load_key_and_certificates(f.read(), password.encode() if password else None)


def _pem(certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.PEM)


def _add_trusted_cas(context: ssl.SSLContext, path: str, store_type: str, password: Optional[str]):
    if store_type == 'PEM':
        context.load_verify_locations(cafile=path)
        return
    if store_type != 'PKCS12':
        raise APIError(f"Unsupported truststore type: {store_type}")

    _, certificate, extra = _read_pkcs12(path, password)
    bundle = [c for c in [certificate, *(extra or [])] if c is not None]
    if bundle:
        context.load_verify_locations(cadata='\n'.join(_pem(c).decode() for c in bundle))


def _add_client_certificate(context: ssl.SSLContext, path: str, store_type: str,
                            password: Optional[str], key_file: Optional[str]):
    if store_type == 'PEM':
        context.load_cert_chain(path, keyfile=key_file, password=password)
        return
    if store_type != 'PKCS12':
        raise APIError(f"Unsupported keystore type: {store_type}")

    private_key, certificate, _ = _read_pkcs12(path, password)
    if not (private_key and certificate):
        raise APIError(f"PKCS12 keystore has no key/certificate pair: {path}")

    key_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    # load_cert_chain only reads from files
    with tempfile.NamedTemporaryFile(mode='wb', suffix='.pem') as chain:
        chain.write(_pem(certificate) + key_pem)
        chain.flush()
        context.load_cert_chain(chain.name)


def build_ssl_context(config: Dict[str, Any], name: str) -> ssl.SSLContext:
    """
    TLS context for an https base URL.

    Reads verify_ssl, truststore_file/_type/_password and
    keystore_file/_type/_password/keystore_key_file from config.
    """
    if not config.get('verify_ssl', True):
        logger.warning(f"Certificate verification is off for {name}")
        return ssl._create_unverified_context()

    context = ssl.create_default_context()
    stores = (
        ('truststore', lambda path, kind, pw: _add_trusted_cas(context, path, kind, pw)),
        ('keystore', lambda path, kind, pw: _add_client_certificate(
            context, path, kind, pw, config.get('keystore_key_file'))),
    )
    for prefix, load in stores:
        path = config.get(f'{prefix}_file')
        if not path:
            continue
        kind = str(config.get(f'{prefix}_type', 'PEM')).upper()
        try:
            load(path, kind, config.get(f'{prefix}_password'))
        except APIError:
            raise
        except (OSError, ValueError, ssl.SSLError) as e:
            raise APIError(f"Cannot load {prefix} {path} for {name}: {e}") from e
        logger.info(f"{name}: loaded {kind} {prefix} {path}")
    return context


def static_auth_header(auth: Dict[str, Any], name: str) -> Dict[str, str]:
    """Authorization header for basic and token auth; empty for the other methods."""
    method = str(auth.get('method', '')).lower()

    if method == 'basic':
        if auth.get('username') and auth.get('password'):
            pair = f"{auth['username']}:{auth['password']}".encode()
            return {'Authorization': f"Basic {base64.b64encode(pair).decode()}"}
        logger.error(f"{name}: basic auth needs both username and password")
    elif method in ('token', 'bearer'):
        if auth.get('token'):
            return {'Authorization': f"Bearer {auth['token']}"}
        logger.error(f"{name}: token auth configured without a token")
    elif method == 'oauth2':
        missing = [k for k in ('client_id', 'client_secret', 'token_url') if not auth.get(k)]
        if missing:
            logger.error(f"{name}: OAuth2 auth is missing {', '.join(missing)}")
    elif method not in ('', 'mtls', 'mutual_tls'):
        logger.warning(f"{name}: unknown authentication method '{method}'")
    return {}


class APIClient:
    """
    HTTP client bound to one base URL.

    Config keys:
        base_url: Root URL of the API
        auth: {method: basic|token|bearer|oauth2|mtls, ...}
        format: 'json' (default), 'xml' or 'raw'
        verify_ssl, truststore_*, keystore_*: see build_ssl_context
        timeout: Socket timeout in seconds
        headers: Extra headers sent on every request
        query_auth: Query parameters sent on every request
        error_handling: Retry settings, unless passed explicitly

    token_provider, when given, is called before every request and its
    result sent as a bearer token.
    """

    def __init__(self, config: Dict[str, Any], name: Optional[str] = None,
                 error_handling: Optional[Dict[str, Any]] = None,
                 token_provider: Optional[Callable[[], str]] = None):
        self.config = config
        self.name = name or config.get('name', 'api')
        self.base_url = config['base_url']
        self.auth_config = config.get('auth') or {}
        self.format = config.get('format', 'json').lower()
        self.timeout = config.get('timeout', DEFAULT_TIMEOUT)
        self.default_headers = dict(config.get('headers') or {})
        self.query_auth = dict(config.get('query_auth') or {})
        self.token_provider = token_provider
        if error_handling is None:
            error_handling = config.get('error_handling')
        self.retry_settings = retry_settings_from_config(error_handling)

        base = urlparse(self.base_url)
        self.scheme = base.scheme
        self.host = base.netloc
        self.base_path = base.path.rstrip('/')

        self.ssl_context = build_ssl_context(config, self.name) if self.scheme == 'https' else None
        self.auth_headers = static_auth_header(self.auth_config, self.name)
        self.uses_oauth2 = str(self.auth_config.get('method', '')).lower() == 'oauth2'

        self._token_expires_at = None
        self._auth_lock = threading.Lock()
        self._local = threading.local()
        # every open connection, whichever thread opened it
        self._registry = []
        self._registry_lock = threading.Lock()

    def _open(self, scheme: str, host: str) -> Union[HTTPSConnection, HTTPConnection]:
        if scheme == 'https':
            return HTTPSConnection(host, context=self.ssl_context, timeout=self.timeout)
        return HTTPConnection(host, timeout=self.timeout)

    def _fetch_oauth2_token(self) -> None:
        """
        Client credentials grant against auth.token_url.

        Raises:
            APIAuthenticationError: on any failure to obtain a token
        """
        auth = self.auth_config
        form = {key: auth.get(key) for key in ('client_id', 'client_secret')}
        form['grant_type'] = 'client_credentials'
        if auth.get('scope'):
            form['scope'] = auth['scope']

        token_url = urlparse(auth.get('token_url'))
        conn = self._open(token_url.scheme, token_url.netloc)
        try:
            conn.request('POST', token_url.path or '/', urlencode(form), {
                'Content-Type': 'application/x-www-form-urlencoded',
                'Accept': 'application/json',
            })
            response = conn.getresponse()
            payload = response.read().decode('utf-8')
        except (HTTPException, OSError) as e:
            raise APIAuthenticationError(f"{self.name}: token request failed: {e}") from e
        finally:
            conn.close()

        if response.status != 200:
            raise APIAuthenticationError(
                f"{self.name}: token endpoint answered {response.status} {response.reason}",
                status_code=response.status
            )
        try:
            grant = json.loads(payload)
        except json.JSONDecodeError as e:
            raise APIAuthenticationError(f"{self.name}: token response is not JSON: {e}") from e
        if not grant.get('access_token'):
            raise APIAuthenticationError(f"{self.name}: token response has no access_token")

        self.auth_headers['Authorization'] = f"Bearer {grant['access_token']}"
        lifetime = grant.get('expires_in')
        self._token_expires_at = time.time() + int(lifetime) - TOKEN_EXPIRY_MARGIN if lifetime else None
        logger.info(f"Obtained OAuth2 token for {self.name}")

    def _refresh_token_if_needed(self, force: bool = False):
        if not self.uses_oauth2:
            return
        with self._auth_lock:
            expired = self._token_expires_at is not None and time.time() >= self._token_expires_at
            if force or expired or 'Authorization' not in self.auth_headers:
                self._fetch_oauth2_token()

    def _connection(self, scheme: str, host: str):
        """This thread's connection to (scheme, host), opened on first use."""
        pool = self._local.__dict__.setdefault('connections', {})
        if (scheme, host) not in pool:
            conn = pool[(scheme, host)] = self._open(scheme, host)
            with self._registry_lock:
                self._registry.append(conn)
        return pool[(scheme, host)]

    def _discard(self, scheme: str, host: str):
        conn = self._local.__dict__.get('connections', {}).pop((scheme, host), None)
        if conn is not None:
            with self._registry_lock:
                if conn in self._registry:
                    self._registry.remove(conn)
            conn.close()

    def build_url(self, path: str, params: Optional[Dict[str, Any]] = None) -> Tuple[str, str, str]:
        """
        Resolve a relative path or absolute URL into (scheme, host, path?query).

        query_auth parameters come first, then params.
        """
        if path.startswith(('http://', 'https://')):
            target = urlparse(path)
            scheme, host, query = target.scheme, target.netloc, target.query
            resolved = target.path or '/'
        else:
            scheme, host, query = self.scheme, self.host, ''
            resolved = urljoin(self.base_path + '/', path.lstrip('/')) if path else (self.base_path or '/')

        extra = {**self.query_auth, **(params or {})}
        if extra:
            query = '&'.join(part for part in (query, urlencode(extra)) if part)

        return scheme, host, f"{resolved}?{query}" if query else resolved

    def request_raw(self, method: str, path: str, body: Optional[Union[str, bytes]] = None,
                    headers: Optional[Dict[str, str]] = None,
                    params: Optional[Dict[str, Any]] = None) -> str:
        """
        Send a request and return the response body as text.

        Connection errors and retryable statuses are retried per the
        error_handling settings.

        Raises:
            APIAuthenticationError: on 401 (after one token refresh for OAuth2)
            APIError: on any other failure
        """
        scheme, host, target = self.build_url(path, params)

        try:
            return retry_call(
                self._send,
                args=(method, scheme, host, target, body, headers),
                exceptions=(RetryableError,),
                on_retry=create_retry_callback(f"{method} {self.name}{target}"),
                **self.retry_settings
            )
        except MaxRetriesExceeded as e:
            cause = e.last_exception
            raise APIError(f"{method} {target} on {self.name} failed after {e.attempts} attempts: {cause}",
                           status_code=getattr(cause, 'status_code', None)) from cause

    def _headers_for(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        merged = {**self.default_headers, **self.auth_headers}
        if self.token_provider:
            merged['Authorization'] = f"Bearer {self.token_provider()}"
        merged.update(extra or {})
        return merged

    def _send(self, method: str, scheme: str, host: str, target: str,
              body: Optional[Union[str, bytes]], headers: Optional[Dict[str, str]],
              refreshed: bool = False) -> str:
        self._refresh_token_if_needed()

        try:
            conn = self._connection(scheme, host)
            logger.debug(f"{method} {host}{target}")
            conn.request(method, target, body, self._headers_for(headers))
        except (HTTPException, OSError) as e:
            self._discard(scheme, host)
            raise RetryableError(f"Connection to {self.name} failed: {e}")

        try:
            response = conn.getresponse()
            text = response.read().decode('utf-8')
        except (HTTPException, OSError) as e:
            self._discard(scheme, host)
            # the server may already have acted on the request
            if method.upper() in IDEMPOTENT_METHODS:
                raise RetryableError(f"Connection to {self.name} failed: {e}")
            raise APIError(f"{method} {target} on {self.name} lost its response: {e}") from e

        status = response.status
        logger.debug(f"{method} {host}{target} -> {status} {response.reason}")

        if status == 401 and self.uses_oauth2 and not refreshed:
            logger.info(f"{self.name} answered 401, renewing OAuth2 token")
            self._refresh_token_if_needed(force=True)
            return self._send(method, scheme, host, target, body, headers, refreshed=True)
        if status == 401:
            raise APIAuthenticationError(f"{self.name} rejected the credentials", status_code=401, body=text)
        if status in RETRYABLE_STATUS_CODES:
            raise RetryableError(f"HTTP {status}: {response.reason}", status_code=status)
        if status >= 400:
            raise APIError(f"HTTP {status}: {response.reason}", status_code=status, body=text)
        return text

    def request(self, method: str, path: str, body: Optional[Any] = None,
                headers: Optional[Dict[str, str]] = None,
                params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Like request_raw, but encodes body and decodes the response per format.

        json and xml responses become dicts (lists for JSON arrays); raw
        responses come back as {'raw': text}.
        """
        extra_headers = dict(headers or {})
        payload = None
        if body is not None:
            payload = self._encode(body)
            if self.format in CONTENT_TYPES:
                extra_headers.setdefault('Content-Type', CONTENT_TYPES[self.format])

        return self._decode(self.request_raw(method, path, payload, extra_headers, params))

    def _encode(self, body: Any):
        if self.format == 'json':
            return json.dumps(body)
        if self.format == 'xml' and not isinstance(body, str):
            root = ET.Element('request')
            for key, value in body.items():
                ET.SubElement(root, key).text = str(value)
            return ET.tostring(root, encoding='unicode')
        return body

    def _decode(self, text: str) -> Any:
        if self.format == 'json':
            try:
                return json.loads(text) if text else {}
            except json.JSONDecodeError as e:
                raise APIError(f"{self.name} returned invalid JSON: {e}") from e
        if self.format == 'xml':
            if not text:
                return {}
            try:
                return {child.tag: child.text for child in ET.fromstring(text)}
            except ET.ParseError as e:
                raise APIError(f"{self.name} returned invalid XML: {e}") from e
        return {'raw': text}

    def close(self):
        """Close the connections of every thread that used this client."""
        with self._registry_lock:
            connections, self._registry = self._registry, []
            self._local = threading.local()
        for conn in connections:
            try:
                conn.close()
            except (HTTPException, OSError) as e:
                logger.warning(f"Closing connection to {self.name} failed: {e}")
