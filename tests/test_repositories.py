"""Tests for the local repository index."""

import json
import sys
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bitstats.errors import ConfigurationError
from bitstats.repositories import RepositoryIndex, is_global


def _remote_repo(slug, key, name, description=None):
    return {
        "slug": slug,
        "full_name": f"team/{slug}",
        "project": {"key": key, "name": name, "uuid": "{1234}"},
        "description": description,
        "links": {
            "pullrequests": {"href": f"https://api.example.test/2.0/repositories/team/{slug}/pullrequests"},
            "commits": {"href": f"https://api.example.test/2.0/repositories/team/{slug}/commits"},
            "avatar": {"href": "https://example.test/avatar.png"},
        },
    }


@pytest.fixture
def client():
    client = Mock()
    client.iter_repositories.return_value = iter(
        [
            _remote_repo("web", "WEB", "Website", "Public site"),
            _remote_repo("api", "CORE", "Core Services"),
            _remote_repo("billing", "CORE", "Core Services"),
        ]
    )
    return client


def test_is_global():
    """Verify an empty selection or 'global' means every repository."""
    assert is_global([])
    assert is_global(None)
    assert is_global(["Global"])
    assert not is_global(["CORE"])


def test_refresh_writes_trimmed_index(config, client):
    """Verify refresh stores only the fields bitstats needs."""
    index = RepositoryIndex(config, client)

    written = index.refresh()

    stored = json.loads(index.path.read_text(encoding="utf-8"))
    assert stored == written
    assert [repo["slug"] for repo in stored["repos"]] == ["web", "api", "billing"]
    assert "full_name" not in stored["repos"][0]
    assert "avatar" not in stored["repos"][0]["links"]
    assert stored["repos"][0]["project"] == {"key": "WEB", "name": "Website"}


def test_get_or_fetch_only_fetches_when_missing(config, client):
    """Verify an existing index is reused without calling the API."""
    index = RepositoryIndex(config, client)

    index.get_or_fetch()
    index.get_or_fetch()

    assert client.iter_repositories.call_count == 1


def test_for_projects_matches_key_or_name_case_insensitively(config, client):
    """Verify project filters match keys or names exactly, ignoring case, sorted by slug."""
    index = RepositoryIndex(config, client)
    index.refresh()

    assert [repo.slug for repo in index.for_projects(["core"])] == ["api", "billing"]
    assert [repo.slug for repo in index.for_projects(["website"])] == ["web"]
    assert [repo.slug for repo in index.for_projects(["co"])] == []
    assert [repo.slug for repo in index.for_projects(["global"])] == ["api", "billing", "web"]


def test_find_returns_repository_or_raises(config, client):
    """Verify lookups by slug return the indexed links."""
    index = RepositoryIndex(config, client)
    index.refresh()

    assert index.find("api").pullrequests_url.endswith("/api/pullrequests")
    with pytest.raises(ConfigurationError):
        index.find("missing")


def test_missing_or_corrupt_index(config):
    """Verify an absent or unparseable index loads as None and blocks listing."""
    index = RepositoryIndex(config)
    assert index.load() is None

    index.path.parent.mkdir(parents=True)
    index.path.write_text("{broken", encoding="utf-8")

    assert index.load() is None
    with pytest.raises(ConfigurationError):
        index.repositories()


def test_refresh_requires_client(config):
    """Verify refreshing without an API client is a configuration error."""
    with pytest.raises(ConfigurationError):
        RepositoryIndex(config).refresh()


def test_clear_removes_index(config, client):
    """Verify clearing deletes the index file once."""
    index = RepositoryIndex(config, client)
    index.refresh()

    assert index.clear() is True
    assert not index.path.exists()
    assert index.clear() is False


def test_non_utf8_index_loads_as_none(config):
    """Verify an index file with undecodable bytes is treated as missing."""
    index = RepositoryIndex(config)
    index.path.parent.mkdir(parents=True)
    index.path.write_bytes(b"\xff\xfe{}")

    assert index.load() is None
