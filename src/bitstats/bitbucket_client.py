"""Bitbucket Cloud REST API client with bearer auth, token refresh, and pagination."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Optional

import requests

from .auth import TokenBroker
from .config import Config
from .errors import ApiError, AuthExhaustedError, ConfigurationError, NotFoundError
from .models import Token

logger = logging.getLogger(__name__)


def next_page_url(page: Dict[str, Any]) -> Optional[str]:
    """Return the continuation URL of a ``{values, next, pagelen}`` page, if any.

    Bitbucket reports ``pagelen <= 1`` on a last or only page, so that also
    ends the walk.
    """
    next_url = page.get("next")
    pagelen = page.get("pagelen")
    if not next_url or not isinstance(pagelen, int) or pagelen <= 1:
        return None
    return str(next_url)


class BitbucketClient:
    """Small client for the Bitbucket Cloud 2.0 API.

    Requests carry the current bearer token. A 401 triggers a token refresh
    through the ``TokenBroker`` and the same request is sent again, at most
    ``Config.max_auth_retries`` times per request.
    """

    def __init__(
        self,
        config: Config,
        token_broker: TokenBroker,
        repositories_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize a client.

        Args:
            config: Validated runtime configuration.
            token_broker: Source of the current token and of refreshed tokens.
            repositories_url: Base URL of the account's repositories collection.
            session: Optional pre-built HTTP session (mainly for tests).
        """
        self._token_broker = token_broker
        self._timeout_seconds = config.timeout_seconds
        self._max_auth_retries = config.max_auth_retries
        self._repositories_url = (repositories_url or config.repositories_url or "").rstrip("/") or None

        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        self._has_token = False

    @property
    def repositories_url(self) -> str:
        if not self._repositories_url:
            raise ConfigurationError(
                "No repositories URL configured. Run 'bitstats setup creds --set' "
                "or set BITSTATS_REPOSITORIES_URL."
            )
        return self._repositories_url

    def pull_requests_url(self, repo_slug: str) -> str:
        return f"{self.repositories_url}/{repo_slug}/pullrequests"

    def commits_url(self, repo_slug: str) -> str:
        return f"{self.repositories_url}/{repo_slug}/commits"

    def _use_token(self, token: Token) -> None:
        self._session.headers["Authorization"] = f"Bearer {token.access_token}"
        self._has_token = True

    def _ensure_token(self) -> None:
        if self._has_token:
            return
        token = self._token_broker.current_token()
        if token is None:
            raise ConfigurationError(
                "Bitbucket requests require an OAuth access token. Run 'bitstats setup token'."
            )
        self._use_token(token)

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute an authenticated GET, refreshing the token on 401.

        Raises:
            AuthExhaustedError: If the request is still rejected after the
                allowed number of token refreshes.
            NotFoundError: If the resource returns HTTP 404.
            ApiError: For other HTTP errors, transport failures, or non-JSON
                responses.
        """
        self._ensure_token()
        refreshes = 0

        while True:
            logger.debug("Fetching %s ...", url)
            try:
                response = self._session.get(url, params=params, timeout=self._timeout_seconds)
            except requests.RequestException as exc:
                raise ApiError(f"Bitbucket request failed: GET {url}", url=url) from exc

            status_code = response.status_code

            if status_code == 401:
                if refreshes >= self._max_auth_retries:
                    raise AuthExhaustedError(
                        f"Bitbucket rejected the access token after {refreshes} refresh(es): GET {url}"
                    )
                refreshes += 1
                logger.debug("Access token rejected. Refreshing it now.")
                self._use_token(self._token_broker.refresh_token())
                logger.debug("New access token received. Retrying request.")
                continue

            if status_code == 404:
                raise NotFoundError(f"Bitbucket resource not found: GET {url}", status_code=404, url=url)

            if status_code >= 400:
                raise ApiError(
                    f"Bitbucket API request failed: GET {url} returned {status_code} - {response.text}",
                    status_code=status_code,
                    url=url,
                )

            try:
                payload = response.json()
            except ValueError as exc:
                raise ApiError(f"Bitbucket API returned invalid JSON: GET {url}", url=url) from exc

            if not isinstance(payload, dict):
                raise ApiError(f"Bitbucket API returned unexpected payload shape: GET {url}", url=url)

            return payload

    def paginate(self, url: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        """Yield every element of a paged collection, following ``next`` links in order.

        ``params`` only apply to the first request; continuation URLs already
        carry the query string.
        """
        page_url: Optional[str] = url
        page_params = params
        pages = 0

        while page_url:
            page = self.get_json(page_url, params=page_params)
            pages += 1
            for item in page.get("values") or []:
                yield item

            page_url = next_page_url(page)
            page_params = None

        logger.debug("Pagination finished", extra={"url": url, "pages": pages})

    def iter_repositories(self) -> Iterator[Dict[str, Any]]:
        return self.paginate(self.repositories_url)

    def iter_pull_requests(
        self,
        url: str,
        state: Optional[str] = "MERGED",
        after_id: Optional[int] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Yield pull requests from ``url`` in ascending id order.

        Optionally filtered by state and ``id > after_id``. Ascending order
        means an interrupted walk leaves a contiguous prefix behind.
        """
        params: Dict[str, Any] = {"sort": "id"}
        if state:
            params["state"] = state
        if after_id is not None:
            params["q"] = f"id > {int(after_id)}"
        return self.paginate(url, params=params)
