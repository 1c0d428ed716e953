"""Shared fixtures for bitstats tests."""

import sys
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bitstats.config import load_config


@pytest.fixture
def config(tmp_path, monkeypatch):
    """Config rooted in an isolated temporary home directory."""
    for name in ("BITSTATS_HOME", "BITSTATS_REPOSITORIES_URL", "BITSTATS_TICKET_PATTERN", "BITSTATS_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    return load_config(home=tmp_path, repositories_url="https://api.example.test/2.0/repositories/team")


def make_response(status_code: int, payload=None, text: str = ""):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = {}
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload if payload is not None else {}
    return response


def make_page(values, next_url=None, pagelen=10):
    page = {"values": list(values), "pagelen": pagelen}
    if next_url:
        page["next"] = next_url
    return page


def make_pr(pr_id: int, author: str = "Alice", base: str = "https://api.example.test/pr") -> dict:
    return {
        "id": pr_id,
        "state": "MERGED",
        "title": f"PROJ-{pr_id} change number {pr_id}",
        "description": "Touches a few files",
        "author": {"display_name": author},
        "closed_by": {"display_name": "Bob"},
        "created_on": "2017-06-01T10:00:00+00:00",
        "updated_on": "2017-06-02T10:00:00+00:00",
        "source": {"branch": {"name": f"feature/{pr_id}"}},
        "destination": {"branch": {"name": "master"}},
        "comment_count": 2,
        "links": {
            "comments": {"href": f"{base}/{pr_id}/comments"},
            "commits": {"href": f"{base}/{pr_id}/commits"},
            "activity": {"href": f"{base}/{pr_id}/activity"},
        },
    }
