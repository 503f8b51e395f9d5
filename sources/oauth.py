"""Access token providers for Microsoft Graph."""
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

import requests

from processor.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

MICROSOFT_TOKEN_ENDPOINT = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
DEFAULT_SCOPE = ['offline_access', 'Calendars.ReadWrite']


class StaticTokenProvider:
    """Provider returning a fixed access token."""

    def __init__(self, access_token: str):
        self.access_token = access_token.strip()

    def get_access_token(self) -> str:
        return self.access_token


class RefreshTokenProvider:
    """
    OAuth2 provider renewing the access token with a stored refresh token.

    The token store is a JSON file holding ``access_token``, ``expire_at``
    (epoch seconds) and ``refresh_token``. The authorization code flow is
    not performed here; the store must be seeded with a refresh token.
    """

    EXPIRY_MARGIN_SECONDS = 60

    def __init__(
        self,
        client_id: str,
        store_path: str,
        token_endpoint: str = MICROSOFT_TOKEN_ENDPOINT,
        scope: Optional[List[str]] = None,
        client_secret: Optional[str] = None,
        timeout: int = 30
    ):
        self.client_id = client_id
        self.store_path = store_path
        self.token_endpoint = token_endpoint
        self.scope = scope or list(DEFAULT_SCOPE)
        self.client_secret = client_secret
        self.timeout = timeout
        self._store: Optional[Dict[str, Any]] = None

    def _load_store(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.store_path):
            return None
        try:
            with open(self.store_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable token store {self.store_path}: {e}")
            return None

    def _save_store(self, response: Dict[str, Any]) -> None:
        store = {
            'access_token': response['access_token'],
            'expire_at': int(time.time()) + int(response.get('expires_in', 3600)),
            # Microsoft rotates refresh tokens; keep the old one if none is returned
            'refresh_token': response.get('refresh_token') or (self._store or {}).get('refresh_token'),
        }
        with open(self.store_path, 'w', encoding='utf-8') as f:
            json.dump(store, f, indent=2)
        self._store = store

    def _refresh(self) -> None:
        data = {
            'grant_type': 'refresh_token',
            'client_id': self.client_id,
            'scope': ' '.join(self.scope),
            'refresh_token': self._store['refresh_token'],
        }
        if self.client_secret:
            data['client_secret'] = self.client_secret

        response = requests.post(self.token_endpoint, data=data, timeout=self.timeout)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code != 200:
            raise AuthenticationError(
                body.get('error_description') or body.get('error') or
                f"token endpoint returned {response.status_code}"
            )
        self._save_store(body)
        logger.info("Refreshed Microsoft Graph access token")

    def get_access_token(self) -> str:
        """
        Return a valid access token, refreshing it when expired.

        Raises:
            AuthenticationError: If no token is stored or the refresh fails
        """
        if self._store is None:
            self._store = self._load_store()
        if not self._store:
            raise AuthenticationError(f"no token store at {self.store_path}; interaction required")

        if time.time() < self._store.get('expire_at', 0) - self.EXPIRY_MARGIN_SECONDS:
            return self._store['access_token']

        if not self._store.get('refresh_token'):
            raise AuthenticationError('access token expired and no refresh token is stored')
        self._refresh()
        return self._store['access_token']
