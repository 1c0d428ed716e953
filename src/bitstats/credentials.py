"""On-disk storage for OAuth consumer credentials and the current token pair."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from .config import Config
from .models import Credentials, Token

logger = logging.getLogger(__name__)

_OAUTH_VALUE_PATTERN = re.compile(r"^[A-Za-z0-9]{1,50}$")


def is_valid_oauth_value(value: str) -> bool:
    """Return whether a consumer key or secret has the expected shape."""
    return bool(_OAUTH_VALUE_PATTERN.match(value or ""))


def is_valid_url(value: str) -> bool:
    """Return whether ``value`` parses as an absolute URL with scheme and host."""
    parsed = urlparse(value or "")
    return bool(parsed.scheme and parsed.netloc)


class CredentialStore:
    """Reads and writes the credentials file and the token file.

    The credentials file holds two or three newline-delimited fields: OAuth
    key, OAuth secret and, optionally, the repositories base URL. The token
    file holds the JSON body of the last OAuth token response.
    """

    def __init__(self, config: Config) -> None:
        self._credentials_file = config.credentials_file
        self._token_file = config.token_file

    @property
    def credentials_file(self) -> Path:
        return self._credentials_file

    @property
    def token_file(self) -> Path:
        return self._token_file

    def get_credentials(self) -> Optional[Credentials]:
        """Return stored credentials, or ``None`` when missing or malformed."""
        if not self._credentials_file.exists():
            return None

        try:
            content = self._credentials_file.read_text(encoding="utf-8")
        except (OSError, ValueError):
            logger.error("Unreadable credential file '%s'.", self._credentials_file)
            return None

        fields = [value for value in (line.strip() for line in content.splitlines()) if value]

        if len(fields) not in (2, 3):
            logger.error(
                "Credential file has an unexpected number of fields",
                extra={"path": str(self._credentials_file), "fields": len(fields)},
            )
            return None

        key, secret = fields[0], fields[1]
        repositories_url = fields[2] if len(fields) == 3 else None

        if not is_valid_oauth_value(key) or not is_valid_oauth_value(secret):
            logger.error("Credential file holds an invalid OAuth key or secret: %s", self._credentials_file)
            return None
        if repositories_url is not None and not is_valid_url(repositories_url):
            logger.error("Credential file holds an invalid repositories URL: %s", self._credentials_file)
            return None

        return Credentials(key=key, secret=secret, repositories_url=repositories_url)

    def set_credentials(self, credentials: Credentials) -> None:
        """Overwrite the credentials file."""
        fields: List[str] = [credentials.key, credentials.secret]
        if credentials.repositories_url:
            fields.append(credentials.repositories_url)

        self._credentials_file.parent.mkdir(parents=True, exist_ok=True)
        self._credentials_file.write_text("\n".join(fields), encoding="utf-8")
        logger.debug("Credentials saved to %s", self._credentials_file)

    def get_token(self) -> Optional[Token]:
        """Return the persisted token pair, or ``None`` when absent or unparseable."""
        if not self._token_file.exists():
            return None

        try:
            data = self._token_file.read_text(encoding="utf-8")
            if not data.strip():
                return None
            return Token.from_dict(json.loads(data))
        except (OSError, ValueError, AttributeError):
            logger.error(
                "Unparseable auth data in file '%s'. Run 'bitstats setup token' again.",
                self._token_file,
            )
            return None

    def set_token(self, token: Token) -> None:
        """Overwrite the token file with ``token``."""
        self._token_file.parent.mkdir(parents=True, exist_ok=True)
        self._token_file.write_text(json.dumps(token.to_dict()), encoding="utf-8")

    def clear(self) -> List[Path]:
        """Delete the credentials and token files, returning the paths removed."""
        removed: List[Path] = []
        for path in (self._credentials_file, self._token_file):
            if path.exists():
                path.unlink()
                removed.append(path)
                logger.debug("Deleted file '%s'", path)
            else:
                logger.debug("File did not exist: '%s'", path)
        return removed
