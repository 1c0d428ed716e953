"""Configuration parsing and validation for bitstats."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .errors import ConfigurationError

DEFAULT_API_BASE_URL = "https://api.bitbucket.org/2.0"
DEFAULT_ACCESS_TOKEN_URL = "https://bitbucket.org/site/oauth2/access_token"
DEFAULT_TICKET_PATTERN = r"[A-Z][A-Z0-9]+-[0-9]+"
DEFAULT_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class Config:
    """Validated runtime settings shared by every bitstats component."""

    home: Path
    data_dir: Path
    credentials_file: Path
    token_file: Path
    repository_index_file: Path
    cache_dir: Path
    api_base_url: str = DEFAULT_API_BASE_URL
    access_token_url: str = DEFAULT_ACCESS_TOKEN_URL
    repositories_url: Optional[str] = None
    ticket_pattern: str = DEFAULT_TICKET_PATTERN
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    max_auth_retries: int = 1


def _parse_timeout(value: Union[str, int]) -> int:
    try:
        timeout = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Invalid value for 'timeout': expected an integer, got {value!r}."
        ) from exc

    if timeout <= 0:
        raise ConfigurationError("Invalid value for 'timeout': expected an integer greater than 0.")

    return timeout


def load_config(
    home: Optional[Union[str, Path]] = None,
    repositories_url: Optional[str] = None,
    ticket_pattern: Optional[str] = None,
    timeout_seconds: Optional[int] = None,
) -> Config:
    """Build and validate application configuration.

    Explicit arguments win over environment variables, which win over defaults.

    Args:
        home: Directory holding the credential files and the ``.bitstats``
            data directory. Falls back to ``BITSTATS_HOME`` and then the
            user's home directory.
        repositories_url: Base URL of the account's repositories collection,
            e.g. ``https://api.bitbucket.org/2.0/repositories/my-team``.
            Falls back to ``BITSTATS_REPOSITORIES_URL``. May stay unset when
            the credentials file carries it.
        ticket_pattern: Regular expression used to extract ticket references
            in exports. Falls back to ``BITSTATS_TICKET_PATTERN``.
        timeout_seconds: Per-request HTTP timeout. Falls back to
            ``BITSTATS_TIMEOUT``.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If the ticket pattern does not compile or the
            timeout is not a positive integer.
    """
    home_value = home or os.getenv("BITSTATS_HOME", "").strip() or Path.home()
    home_path = Path(home_value).expanduser()
    data_dir = home_path / ".bitstats"

    pattern = ticket_pattern or os.getenv("BITSTATS_TICKET_PATTERN", "").strip() or DEFAULT_TICKET_PATTERN
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ConfigurationError(f"Invalid ticket pattern {pattern!r}: {exc}") from exc

    timeout_value = timeout_seconds if timeout_seconds is not None else os.getenv("BITSTATS_TIMEOUT", "").strip()
    timeout = _parse_timeout(timeout_value) if timeout_value else DEFAULT_TIMEOUT_SECONDS

    url = repositories_url or os.getenv("BITSTATS_REPOSITORIES_URL", "").strip() or None

    return Config(
        home=home_path,
        data_dir=data_dir,
        credentials_file=home_path / ".bitstats-oauth",
        token_file=home_path / ".bitstats-token",
        repository_index_file=data_dir / "repos.json",
        cache_dir=data_dir / "cache",
        repositories_url=url.rstrip("/") if url else None,
        ticket_pattern=pattern,
        timeout_seconds=timeout,
    )
