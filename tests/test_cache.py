"""Tests for the file-per-record cache."""

import logging
import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bitstats.cache import EntityKind, IdRange, RecordCache, validate_slug
from bitstats.errors import ConfigurationError, SyncInProgressError


def test_path_for_is_a_pure_function_of_the_key(config):
    """Verify record paths depend only on repository, kind, and ids."""
    cache = RecordCache(config)

    assert cache.path_for(EntityKind.PULL_REQUEST, "repo", 7) == config.cache_dir / "repo" / "prs" / "pr-7.json"
    assert cache.path_for(EntityKind.COMMENT, "repo", 7, 42).name == "pr-7-comment-42.json"
    assert cache.path_for(EntityKind.COMMIT, "repo", 7).name == "pr-7-commits.json"
    assert cache.path_for(EntityKind.APPROVAL, "repo", 7).name == "pr-7-approvals.json"
    assert cache.path_for(EntityKind.REPO_COMMIT, "repo", "abc123").name == "commit-abc123.json"
    assert not (config.cache_dir / "repo").exists()


def test_path_for_rejects_wrong_number_of_ids(config):
    """Verify comment records need both the PR id and the comment id."""
    cache = RecordCache(config)

    with pytest.raises(ValueError):
        cache.path_for(EntityKind.COMMENT, "repo", 7)


def test_write_then_read_creates_directories_and_overwrites(config):
    """Verify writes create parent directories and replace existing records."""
    cache = RecordCache(config)

    cache.write(EntityKind.PULL_REQUEST, "repo", 3, {"id": 3, "title": "first"})
    cache.write(EntityKind.PULL_REQUEST, "repo", 3, {"id": 3, "title": "second"})

    assert cache.exists(EntityKind.PULL_REQUEST, "repo", 3)
    assert cache.read(EntityKind.PULL_REQUEST, "repo", 3) == {"id": 3, "title": "second"}


def test_read_missing_returns_none(config):
    """Verify reading an uncached record returns None."""
    cache = RecordCache(config)

    assert cache.read(EntityKind.PULL_REQUEST, "repo", 1) is None
    assert not cache.exists(EntityKind.PULL_REQUEST, "repo", 1)


def test_read_corrupt_json_returns_none_and_logs_error(config, caplog):
    """Verify unparseable cache files are reported and treated as no data."""
    cache = RecordCache(config)
    path = cache.path_for(EntityKind.PULL_REQUEST, "repo", 1)
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.ERROR):
        assert cache.read(EntityKind.PULL_REQUEST, "repo", 1) is None

    assert "Unparseable" in caplog.text


def test_list_ids_ignores_stray_files_and_sorts_numerically(config):
    """Verify id enumeration parses file names, skips strays, and sorts ascending."""
    cache = RecordCache(config)
    for pr_id in (10, 2, 9):
        cache.write(EntityKind.PULL_REQUEST, "repo", pr_id, {"id": pr_id})
    directory = cache.kind_dir(EntityKind.PULL_REQUEST, "repo")
    (directory / "README.md").write_text("notes", encoding="utf-8")
    (directory / ".DS_Store").write_text("", encoding="utf-8")

    assert cache.list_ids(EntityKind.PULL_REQUEST, "repo") == [2, 9, 10]
    assert cache.id_range(EntityKind.PULL_REQUEST, "repo") == IdRange(min=2, max=10)


def test_list_ids_for_comments_uses_distinct_pr_ids(config):
    """Verify comment enumeration yields PR ids once each while keys keep comment ids."""
    cache = RecordCache(config)
    cache.write(EntityKind.COMMENT, "repo", 4, 100, {"id": 100})
    cache.write(EntityKind.COMMENT, "repo", 4, 101, {"id": 101})
    cache.write(EntityKind.COMMENT, "repo", 2, 50, {"id": 50})

    assert cache.list_ids(EntityKind.COMMENT, "repo") == [2, 4]
    assert cache.list_keys(EntityKind.COMMENT, "repo") == [(2, 50), (4, 100), (4, 101)]


def test_id_range_is_none_without_records(config):
    """Verify an empty cache has no id range."""
    cache = RecordCache(config)

    assert cache.id_range(EntityKind.COMMIT, "repo") is None


def test_delete_subtree_for_one_kind_and_whole_repository(config):
    """Verify subtree deletion can target a single kind or a whole repository."""
    cache = RecordCache(config)
    cache.write(EntityKind.PULL_REQUEST, "repo", 1, {"id": 1})
    cache.write(EntityKind.COMMIT, "repo", 1, {"commits": []})

    assert cache.delete_subtree("repo", EntityKind.COMMIT) is True
    assert cache.list_ids(EntityKind.COMMIT, "repo") == []
    assert cache.list_ids(EntityKind.PULL_REQUEST, "repo") == [1]

    assert cache.delete_subtree("repo") is True
    assert not cache.repo_dir("repo").exists()
    assert cache.delete_subtree("repo") is False


@pytest.mark.parametrize("slug", ["", "  ", "..", "../escape", "a/b"])
def test_validate_slug_rejects_unsafe_values(slug):
    """Verify slugs that are empty or would escape the cache directory are rejected."""
    with pytest.raises(ConfigurationError):
        validate_slug(slug)


def test_lock_prevents_concurrent_sync_and_is_released(config):
    """Verify the advisory lock rejects a second holder and is removed on exit."""
    cache = RecordCache(config)

    with cache.lock("repo") as lock_path:
        assert lock_path.exists()
        with pytest.raises(SyncInProgressError):
            with cache.lock("repo"):
                pass

    assert not lock_path.exists()
    with cache.lock("repo"):
        pass


def test_read_non_utf8_file_returns_none(config, caplog):
    """Verify a record with undecodable bytes is reported and treated as no data."""
    cache = RecordCache(config)
    path = cache.path_for(EntityKind.PULL_REQUEST, "repo", 1)
    path.parent.mkdir(parents=True)
    path.write_bytes(b"\xff\xfe\x00garbage")

    with caplog.at_level(logging.ERROR):
        assert cache.read(EntityKind.PULL_REQUEST, "repo", 1) is None

    assert "Unparseable" in caplog.text
