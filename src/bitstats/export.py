"""Flatten cached records into tabular rows and write them as CSV.

Each row merges repository/project context with per-entity fields. Field
extraction is null-safe: missing nested properties become ``None`` (or ``0``
for counts). Derived fields:
- word counts via whitespace tokenization;
- ticket references found by a configurable regex in PR title+description or
  commit messages.
"""

from __future__ import annotations

import csv
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .cache import EntityKind, RecordCache
from .errors import ExportError
from .models import ApprovalEntry, Comment, CommitEntry, PullRequest, RepoCommit

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

KIND_NAMES = {
    "prs": EntityKind.PULL_REQUEST,
    "comments": EntityKind.COMMENT,
    "commits": EntityKind.COMMIT,
    "approvals": EntityKind.APPROVAL,
    "repo-commits": EntityKind.REPO_COMMIT,
}


def word_count(text: Optional[str]) -> int:
    """Count whitespace-separated tokens; ``None`` counts as zero."""
    if not text:
        return 0
    return len(text.split())


def ticket_references(text: Optional[str], pattern: str) -> Optional[str]:
    """Return unique ticket ids matched in ``text``, comma-joined in order of appearance."""
    if not text:
        return None

    tickets: List[str] = []
    for match in re.finditer(pattern, text):
        ticket = match.group(0)
        if ticket not in tickets:
            tickets.append(ticket)

    return ",".join(tickets) if tickets else None


def _join_text(*parts: Optional[str]) -> str:
    return " ".join(part for part in parts if part)


class Exporter:
    """Builds export rows from a ``RecordCache`` and serializes them to CSV."""

    def __init__(self, cache: RecordCache, ticket_pattern: str) -> None:
        self._cache = cache
        self._ticket_pattern = ticket_pattern
        self._builders: Dict[EntityKind, Callable[[str, Optional[str]], List[Row]]] = {
            EntityKind.PULL_REQUEST: self.pull_request_rows,
            EntityKind.COMMENT: self.comment_rows,
            EntityKind.COMMIT: self.commit_rows,
            EntityKind.APPROVAL: self.approval_rows,
            EntityKind.REPO_COMMIT: self.repo_commit_rows,
        }

    def pull_request_rows(self, repo_slug: str, project_key: Optional[str] = None) -> List[Row]:
        rows: List[Row] = []
        for (pr_id,) in self._cache.list_keys(EntityKind.PULL_REQUEST, repo_slug):
            record = self._cache.read(EntityKind.PULL_REQUEST, repo_slug, pr_id)
            if record is None or not isinstance(record.get("id"), int):
                continue
            pr = PullRequest.from_dict(record)
            rows.append(
                {
                    "repo": repo_slug,
                    "project": project_key,
                    "id": pr.id,
                    "state": pr.state,
                    "author": pr.author,
                    "closed_by": pr.closed_by,
                    "created_on": pr.created_on,
                    "updated_on": pr.updated_on,
                    "source_branch": pr.source_branch,
                    "destination_branch": pr.destination_branch,
                    "title": pr.title,
                    "title_word_count": word_count(pr.title),
                    "description_word_count": word_count(pr.description),
                    "comment_count": pr.comment_count,
                    "tickets": ticket_references(_join_text(pr.title, pr.description), self._ticket_pattern),
                }
            )
        return rows

    def comment_rows(self, repo_slug: str, project_key: Optional[str] = None) -> List[Row]:
        rows: List[Row] = []
        for pr_id, comment_id in self._cache.list_keys(EntityKind.COMMENT, repo_slug):
            record = self._cache.read(EntityKind.COMMENT, repo_slug, pr_id, comment_id)
            if record is None:
                continue
            comment = Comment.from_dict(record)
            rows.append(
                {
                    "repo": repo_slug,
                    "project": project_key,
                    "pr_id": pr_id,
                    "comment_id": comment_id,
                    "author": comment.author,
                    "is_pr_author": comment.is_pr_author,
                    "created_on": comment.created_on,
                    "is_reply": comment.parent_id is not None,
                    "parent_id": comment.parent_id,
                    "is_inline": comment.is_inline,
                    "word_count": word_count(comment.body),
                }
            )
        return rows

    def commit_rows(self, repo_slug: str, project_key: Optional[str] = None) -> List[Row]:
        rows: List[Row] = []
        for (pr_id,) in self._cache.list_keys(EntityKind.COMMIT, repo_slug):
            record = self._cache.read(EntityKind.COMMIT, repo_slug, pr_id)
            if record is None:
                continue
            for item in record.get("commits") or []:
                commit = CommitEntry.from_dict(item)
                rows.append(
                    {
                        "repo": repo_slug,
                        "project": project_key,
                        "pr_id": pr_id,
                        "hash": commit.hash,
                        "date": commit.date,
                        "author": commit.author,
                        "is_pr_author": commit.is_pr_author,
                        "is_merge": commit.is_merge,
                        "message_word_count": word_count(commit.message),
                        "tickets": ticket_references(commit.message, self._ticket_pattern),
                    }
                )
        return rows

    def approval_rows(self, repo_slug: str, project_key: Optional[str] = None) -> List[Row]:
        rows: List[Row] = []
        for (pr_id,) in self._cache.list_keys(EntityKind.APPROVAL, repo_slug):
            record = self._cache.read(EntityKind.APPROVAL, repo_slug, pr_id)
            if record is None:
                continue
            for item in record.get("approvals") or []:
                row: Row = {"repo": repo_slug, "project": project_key, "pr_id": pr_id}
                row.update(ApprovalEntry.from_dict(item).to_dict())
                rows.append(row)
        return rows

    def repo_commit_rows(self, repo_slug: str, project_key: Optional[str] = None) -> List[Row]:
        rows: List[Row] = []
        for (commit_hash,) in self._cache.list_keys(EntityKind.REPO_COMMIT, repo_slug):
            record = self._cache.read(EntityKind.REPO_COMMIT, repo_slug, commit_hash)
            if record is None:
                continue
            commit = RepoCommit.from_dict(record)
            rows.append(
                {
                    "repo": repo_slug,
                    "project": project_key,
                    "author_display_name": commit.display_name or commit.username,
                    "hash": commit.hash,
                    "date": commit.date,
                    "message": commit.message,
                    "message_word_count": word_count(commit.message),
                    "tickets": ticket_references(commit.message, self._ticket_pattern),
                }
            )
        return rows

    def collect_rows(
        self,
        kind: EntityKind,
        repositories: Sequence[Union[str, tuple]],
    ) -> List[Row]:
        """Aggregate rows of ``kind`` across repositories.

        ``repositories`` holds slugs or ``(slug, project_key)`` pairs.
        """
        builder = self._builders[kind]
        rows: List[Row] = []
        for entry in repositories:
            slug, project_key = entry if isinstance(entry, tuple) else (entry, None)
            rows.extend(builder(slug, project_key))
        return rows


def write_csv(rows: Sequence[Row], path: Union[str, Path]) -> bool:
    """Write ``rows`` to ``path`` with a header taken from the first row.

    Returns:
        ``True`` if a file was written, ``False`` when there was nothing to export.

    Raises:
        ExportError: If the file cannot be written.
    """
    if not rows:
        logger.info("No data to export; '%s' was not written.", path)
        return False

    fieldnames = list(rows[0].keys())
    try:
        with open(path, "w", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=fieldnames, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(rows)
    except OSError as exc:
        raise ExportError(f"Could not serialize data to file '{path}'.") from exc

    logger.info("Exported %d row(s) to '%s'.", len(rows), path)
    return True
