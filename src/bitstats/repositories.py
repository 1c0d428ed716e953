"""Local index of the repositories visible to the configured Bitbucket account."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .bitbucket_client import BitbucketClient
from .config import Config
from .errors import ConfigurationError
from .models import Repository

logger = logging.getLogger(__name__)

GLOBAL_PROJECT = "global"


def is_global(projects: Optional[Sequence[str]]) -> bool:
    """Return whether a project selection means "every repository"."""
    if not projects:
        return True
    return any(project.strip().lower() == GLOBAL_PROJECT for project in projects)


class RepositoryIndex:
    """Single JSON file listing every repository, refreshed wholesale."""

    def __init__(self, config: Config, client: Optional[BitbucketClient] = None) -> None:
        self._path = config.repository_index_file
        self._client = client

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the index from disk, or ``None`` when absent or unparseable."""
        if not self._path.is_file():
            return None

        try:
            data = self._path.read_text(encoding="utf-8")
            if not data.strip():
                return None
            index = json.loads(data)
        except (OSError, ValueError):
            logger.error(
                "Unparseable repo data in file '%s'. Run 'bitstats repo index --clear' "
                "then 'bitstats repo index --refresh' to reset.",
                self._path,
            )
            return None

        if not isinstance(index, dict) or not isinstance(index.get("repos"), list):
            logger.error("Repository index '%s' has an unexpected shape.", self._path)
            return None

        return index

    def refresh(self) -> Dict[str, Any]:
        """Fetch every repository from Bitbucket and overwrite the index file."""
        if self._client is None:
            raise ConfigurationError("Refreshing the repository index requires a Bitbucket client.")

        repos = [Repository.from_dict(item).to_dict() for item in self._client.iter_repositories()]
        index = {"repos": repos}

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(index), encoding="utf-8")
        logger.info("Repository index written with %d repositories.", len(repos))
        return index

    def get_or_fetch(self) -> Dict[str, Any]:
        index = self.load()
        if index is None:
            index = self.refresh()
        return index

    def clear(self) -> bool:
        if not self._path.exists():
            logger.debug("File did not exist: '%s'", self._path)
            return False
        self._path.unlink()
        logger.debug("Deleted file '%s'", self._path)
        return True

    def repositories(self) -> List[Repository]:
        index = self.load()
        if index is None:
            raise ConfigurationError("No repository index was found. Run 'bitstats repo index --refresh'.")
        return [Repository.from_dict(item) for item in index["repos"] if isinstance(item, dict)]

    def find(self, repo_slug: str) -> Repository:
        """Return the indexed repository with ``repo_slug``.

        Raises:
            ConfigurationError: If there is no index or no such repository.
        """
        for repository in self.repositories():
            if repository.slug == repo_slug:
                return repository
        raise ConfigurationError(f"No repository with slug '{repo_slug}' was found.")

    def for_projects(self, projects: Optional[Sequence[str]]) -> List[Repository]:
        """Return repositories whose project key or name matches one of ``projects``.

        Matching is exact and case-insensitive. ``"global"`` or an empty
        selection returns every repository. Results are sorted by slug.
        """
        repositories = self.repositories()

        if not is_global(projects):
            condition = re.compile(
                "|".join(f"^{re.escape(project.strip())}$" for project in projects or []),
                re.IGNORECASE,
            )
            repositories = [
                repository
                for repository in repositories
                if condition.match(repository.project_key or "")
                or condition.match(repository.project_name or "")
            ]

        return sorted(repositories, key=lambda repository: repository.slug)
