"""
Service account credentials for the Google destinations.

Google Workspace APIs are called as a delegated admin: a service account
with domain-wide delegation impersonates delegated_admin_email.
"""

import json
import logging
import threading
from typing import Dict, List, Any
from google.oauth2 import service_account
from google.auth.transport.requests import Request
from google.auth.exceptions import GoogleAuthError
from .base import DestinationError

logger = logging.getLogger(__name__)


def load_service_account_credentials(config: Dict[str, Any], scopes: List[str]):
    """
    Build delegated service account credentials from destination config.

    Config keys:
        google_auth: Service account key, as a mapping or a JSON string
        google_auth_file: Path to a service account key file (alternative)
        delegated_admin_email: Workspace admin to impersonate

    Raises:
        DestinationError: If the key is missing or invalid
    """
    subject = config.get('delegated_admin_email')
    if not subject:
        raise DestinationError("delegated_admin_email is required for Google destinations")

    try:
        if config.get('google_auth_file'):
            credentials = service_account.Credentials.from_service_account_file(
                config['google_auth_file'], scopes=scopes
            )
        else:
            info = config.get('google_auth')
            if isinstance(info, str):
                info = json.loads(info)
            if not info:
                raise DestinationError("google_auth or google_auth_file is required for Google destinations")
            credentials = service_account.Credentials.from_service_account_info(info, scopes=scopes)
    except (ValueError, GoogleAuthError, OSError) as e:
        raise DestinationError(f"Unable to load Google service account credentials: {e}")

    return credentials.with_subject(subject)


class TokenProvider:
    """Thread-safe access token source that refreshes credentials when they expire."""

    def __init__(self, credentials):
        self.credentials = credentials
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            if not self.credentials.valid:
                logger.debug("Refreshing Google access token")
                try:
                    self.credentials.refresh(Request())
                except GoogleAuthError as e:
                    raise DestinationError(f"Unable to obtain Google access token: {e}")
            return self.credentials.token
