"""OAuth token acquisition and refresh against the Bitbucket token endpoint."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth

from .config import Config
from .credentials import CredentialStore
from .errors import AuthenticationError, ConfigurationError
from .models import Credentials, Token

logger = logging.getLogger(__name__)


class TokenBroker:
    """Exchanges stored OAuth consumer credentials for bearer tokens."""

    def __init__(
        self,
        config: Config,
        store: CredentialStore,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._access_token_url = config.access_token_url
        self._timeout_seconds = config.timeout_seconds
        self._store = store
        self._session = session or requests.Session()

    def current_token(self) -> Optional[Token]:
        """Return the persisted token, or ``None`` if absent or unparseable."""
        return self._store.get_token()

    def acquire_token(self) -> Token:
        """Fetch a new token pair with the client-credentials grant and persist it.

        Raises:
            ConfigurationError: If no credentials are stored.
            AuthenticationError: If Bitbucket rejects the credentials.
        """
        credentials = self._require_credentials()
        token = self._request_token(credentials, {"grant_type": "client_credentials"})
        self._store.set_token(token)
        logger.debug("Token saved.")
        return token

    def refresh_token(self) -> Token:
        """Exchange the stored refresh token for a new token pair and persist it.

        This runs in the middle of a fetch, so failures are raised rather than
        terminating the process.

        Raises:
            ConfigurationError: If no token or no credentials are stored.
            AuthenticationError: If Bitbucket rejects the refresh token.
        """
        current = self._store.get_token()
        if current is None:
            raise ConfigurationError("Token file was not found. Run 'bitstats setup token' to create one.")

        credentials = self._require_credentials()
        token = self._request_token(
            credentials,
            {"grant_type": "refresh_token", "refresh_token": current.refresh_token},
        )
        self._store.set_token(token)
        logger.debug("Token refreshed and saved.")
        return token

    def _require_credentials(self) -> Credentials:
        credentials = self._store.get_credentials()
        if credentials is None:
            raise ConfigurationError(
                "Credential file was not found. Run 'bitstats setup creds --set' to create one."
            )
        return credentials

    def _request_token(self, credentials: Credentials, form: Dict[str, str]) -> Token:
        try:
            response = self._session.post(
                self._access_token_url,
                data=form,
                auth=HTTPBasicAuth(credentials.key, credentials.secret),
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            raise AuthenticationError(f"Auth request failure: POST {self._access_token_url}") from exc

        payload = self._json_or_empty(response)

        if response.status_code >= 400:
            description = payload.get("error_description") or payload.get("error")
            raise AuthenticationError(
                description
                or "Auth request failure. Try running 'bitstats setup token' or verify OAuth consumer settings."
            )

        try:
            return Token.from_dict(payload)
        except ValueError as exc:
            raise AuthenticationError(f"Token endpoint returned an unexpected payload: {exc}") from exc

    @staticmethod
    def _json_or_empty(response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}
