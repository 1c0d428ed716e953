"""File-per-record cache of Bitbucket data, organized by repository.

Layout below ``Config.cache_dir``::

    <slug>/prs/pr-<id>.json
    <slug>/comments/pr-<id>-comment-<comment id>.json
    <slug>/commits/pr-<id>-commits.json
    <slug>/approvals/pr-<id>-approvals.json
    <slug>/repo-commits/commit-<hash>.json

File names are the only index: ids are enumerated by parsing them back out of
the names, so the mapping from key to path must stay a pure function.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .config import Config
from .errors import ConfigurationError, SyncInProgressError

logger = logging.getLogger(__name__)

Key = Union[int, str]

_LOCK_FILE_NAME = ".bitstats.lock"
_SLUG_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class EntityKind(Enum):
    """Cached entity kinds with their directory and file naming scheme."""

    PULL_REQUEST = ("prs", "pr-{0}.json", r"^pr-(\d+)\.json$")
    COMMENT = ("comments", "pr-{0}-comment-{1}.json", r"^pr-(\d+)-comment-(\d+)\.json$")
    COMMIT = ("commits", "pr-{0}-commits.json", r"^pr-(\d+)-commits\.json$")
    APPROVAL = ("approvals", "pr-{0}-approvals.json", r"^pr-(\d+)-approvals\.json$")
    REPO_COMMIT = ("repo-commits", "commit-{0}.json", r"^commit-([0-9A-Za-z]+)\.json$")

    def __init__(self, directory: str, file_pattern: str, file_regex: str) -> None:
        self.directory = directory
        self.file_pattern = file_pattern
        self.file_regex = re.compile(file_regex)

    @property
    def key_size(self) -> int:
        return self.file_regex.groups

    @property
    def numeric_ids(self) -> bool:
        return self is not EntityKind.REPO_COMMIT

    def file_name(self, *ids: Key) -> str:
        if len(ids) != self.key_size:
            raise ValueError(f"{self.name} records are keyed by {self.key_size} id(s), got {len(ids)}.")
        return self.file_pattern.format(*ids)

    def parse_file_name(self, name: str) -> Optional[Tuple[Key, ...]]:
        """Reverse ``file_name``; return ``None`` for files that do not belong to this kind."""
        match = self.file_regex.match(name)
        if match is None:
            return None
        if self.numeric_ids:
            return tuple(int(group) for group in match.groups())
        return match.groups()


@dataclass(frozen=True)
class IdRange:
    """Inclusive range of cached ids."""

    min: int
    max: int


def validate_slug(repo_slug: str) -> str:
    """Return a cleaned repository slug, rejecting values unusable as a directory name."""
    cleaned = (repo_slug or "").strip()
    if not cleaned or cleaned in (".", "..") or not _SLUG_PATTERN.match(cleaned):
        raise ConfigurationError(f"Invalid repository slug: {repo_slug!r}")
    return cleaned


class RecordCache:
    """JSON file-per-record store keyed by (repository, kind, id[, sub-id])."""

    def __init__(self, config: Config) -> None:
        self._root = config.cache_dir

    @property
    def root(self) -> Path:
        return self._root

    def repo_dir(self, repo_slug: str) -> Path:
        return self._root / validate_slug(repo_slug)

    def kind_dir(self, kind: EntityKind, repo_slug: str) -> Path:
        return self.repo_dir(repo_slug) / kind.directory

    def path_for(self, kind: EntityKind, repo_slug: str, *ids: Key) -> Path:
        return self.kind_dir(kind, repo_slug) / kind.file_name(*ids)

    def exists(self, kind: EntityKind, repo_slug: str, *ids: Key) -> bool:
        return self.path_for(kind, repo_slug, *ids).is_file()

    def read(self, kind: EntityKind, repo_slug: str, *ids: Key) -> Optional[Dict[str, Any]]:
        """Return the cached record, or ``None`` when missing, empty, or corrupt."""
        path = self.path_for(kind, repo_slug, *ids)
        if not path.is_file():
            return None

        try:
            data = path.read_text(encoding="utf-8")
            if not data.strip():
                return None
            record = json.loads(data)
        except (OSError, ValueError):
            logger.error(
                "Unparseable %s data in file '%s'. Run 'bitstats pr rmindex' then re-index to reset.",
                kind.directory,
                path,
            )
            return None

        if not isinstance(record, dict):
            logger.error("Unexpected %s payload shape in file '%s'", kind.directory, path)
            return None

        return record

    def write(self, kind: EntityKind, repo_slug: str, *ids_and_data: Any) -> Path:
        """Write ``data`` as JSON to the record's path, replacing any existing file.

        Call as ``write(kind, slug, id[, sub_id], data)``.
        """
        if not ids_and_data:
            raise ValueError("write() requires the record id(s) followed by the data.")
        *ids, data = ids_and_data

        path = self.path_for(kind, repo_slug, *ids)
        if not path.parent.is_dir():
            path.parent.mkdir(parents=True, exist_ok=True)

        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    def delete_subtree(self, repo_slug: str, kind: Optional[EntityKind] = None) -> bool:
        """Remove a repository's cache, or only one kind under it."""
        target = self.kind_dir(kind, repo_slug) if kind else self.repo_dir(repo_slug)
        if not target.exists():
            return False

        shutil.rmtree(target)
        logger.debug("Deleted cache directory '%s'", target)
        return True

    def list_keys(self, kind: EntityKind, repo_slug: str) -> List[Tuple[Key, ...]]:
        """Return the full key of every cached record of ``kind``, sorted ascending."""
        directory = self.kind_dir(kind, repo_slug)
        if not directory.is_dir():
            return []

        keys: List[Tuple[Key, ...]] = []
        for entry in directory.iterdir():
            if not entry.is_file():
                continue
            key = kind.parse_file_name(entry.name)
            if key is None:
                logger.debug("Ignoring unexpected file in cache", extra={"path": str(entry)})
                continue
            keys.append(key)

        return sorted(keys)

    def list_ids(self, kind: EntityKind, repo_slug: str) -> List[Key]:
        """Return the distinct primary ids cached for ``kind``, sorted ascending.

        For pull-request scoped kinds the primary id is the pull request id.
        """
        return sorted({key[0] for key in self.list_keys(kind, repo_slug)})

    def id_range(self, kind: EntityKind, repo_slug: str) -> Optional[IdRange]:
        if not kind.numeric_ids:
            raise ValueError(f"{kind.name} records are not keyed by numeric ids.")

        ids = self.list_ids(kind, repo_slug)
        if not ids:
            return None
        return IdRange(min=int(ids[0]), max=int(ids[-1]))

    @contextmanager
    def lock(self, repo_slug: str) -> Iterator[Path]:
        """Hold an advisory lock on a repository's cache for the duration of a sync."""
        directory = self.repo_dir(repo_slug)
        directory.mkdir(parents=True, exist_ok=True)
        lock_path = directory / _LOCK_FILE_NAME

        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as exc:
            raise SyncInProgressError(
                f"Another sync is already running for '{repo_slug}'. "
                f"Remove '{lock_path}' if no sync is running."
            ) from exc

        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
        finally:
            os.close(fd)

        try:
            yield lock_path
        finally:
            try:
                lock_path.unlink()
            except FileNotFoundError:
                pass
