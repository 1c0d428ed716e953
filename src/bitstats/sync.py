"""Incremental synchronization of Bitbucket pull request data into the record cache.

Every sync runs the same steps: compute the delta against the cache, walk the
relevant paged API collection, enrich each element, and persist it. Pull
requests are synced by asking the API only for ids above the highest cached
id. Comments, commits, and approvals have no server-side id filter, so their
delta is a range of cached pull request ids whose sub-resources are walked
one pull request at a time.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from .bitbucket_client import BitbucketClient
from .cache import EntityKind, IdRange, RecordCache, validate_slug
from .errors import ApiError, ConfigurationError, NotFoundError
from .models import PullRequest, RepoCommit, display_name_of
from .repositories import RepositoryIndex

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], bool]

_LINK_ATTRIBUTES = {
    EntityKind.COMMENT: "comments_url",
    EntityKind.COMMIT: "commits_url",
    EntityKind.APPROVAL: "activity_url",
}


@dataclass(slots=True)
class SyncSummary:
    """Outcome counters for one sync of one entity kind in one repository."""

    repo_slug: str
    kind: EntityKind
    written: int = 0
    failed_writes: int = 0
    prs_processed: int = 0
    prs_skipped: int = 0
    noop: bool = False


def secondary_pr_range(pr_range: Optional[IdRange], secondary_range: Optional[IdRange]) -> Optional[IdRange]:
    """Compute which cached pull requests need their comments/commits/approvals (re)fetched.

    When the secondary kind already has data, the range restarts at the last
    pull request it covers so that pull request is fetched again along with
    every newer one. Otherwise it spans every cached pull request.
    """
    if pr_range is None:
        return None
    if secondary_range is None:
        return IdRange(min=pr_range.min, max=pr_range.max)
    return IdRange(min=max(1, min(pr_range.max, secondary_range.max)), max=pr_range.max)


def is_pr_author(actor: Any, pr: PullRequest) -> bool:
    name = display_name_of(actor)
    return bool(name) and name == pr.author


def enrich_comment(comment: Dict[str, Any], pr: PullRequest) -> Dict[str, Any]:
    enriched = dict(comment)
    enriched["is_pr_author"] = is_pr_author(comment.get("user"), pr)
    return enriched


def commit_entry(commit: Dict[str, Any], pr: PullRequest) -> Dict[str, Any]:
    author = commit.get("author") or {}
    return {
        "hash": commit.get("hash"),
        "date": commit.get("date"),
        "message": commit.get("message"),
        "author": author,
        "pullrequest": {"id": pr.id},
        "is_pr_author": is_pr_author(author, pr),
        "is_merge": len(commit.get("parents") or []) > 1,
    }


def approval_entry(event: Dict[str, Any], pr: PullRequest) -> Optional[Dict[str, Any]]:
    """Classify an activity event; return ``None`` for events that are neither approvals nor updates."""
    approval = event.get("approval")
    update = event.get("update")

    if approval is not None:
        actor = (approval or {}).get("user")
        return {
            "display_name": display_name_of(actor),
            "date": (approval or {}).get("date"),
            "state": None,
            "reason": None,
            "is_approval": True,
            "is_declined": False,
            "is_update": False,
            "is_pr_author": is_pr_author(actor, pr),
        }

    if update is not None:
        actor = (update or {}).get("author")
        state = (update or {}).get("state")
        return {
            "display_name": display_name_of(actor),
            "date": (update or {}).get("date"),
            "state": state,
            "reason": (update or {}).get("reason"),
            "is_approval": False,
            "is_declined": state == "DECLINED",
            "is_update": True,
            "is_pr_author": is_pr_author(actor, pr),
        }

    return None


class SyncEngine:
    """Mirrors pull requests and their comments, commits, and approvals into a ``RecordCache``."""

    def __init__(
        self,
        cache: RecordCache,
        client: BitbucketClient,
        index: Optional[RepositoryIndex] = None,
    ) -> None:
        self._cache = cache
        self._client = client
        self._index = index

    def _indexed_repository_url(self, repo_slug: str, attribute: str) -> Optional[str]:
        if self._index is None or self._index.load() is None:
            return None
        return getattr(self._index.find(repo_slug), attribute)

    def _write(self, summary: SyncSummary, kind: EntityKind, *ids_and_data: Any) -> bool:
        try:
            self._cache.write(kind, summary.repo_slug, *ids_and_data)
        except OSError as exc:
            summary.failed_writes += 1
            logger.error(
                "Could not write %s record for '%s': %s",
                kind.directory,
                summary.repo_slug,
                exc,
                extra={"ids": ids_and_data[:-1]},
            )
            return False
        summary.written += 1
        return True

    def sync_pull_requests(self, repo_slug: str, state: Optional[str] = "MERGED") -> SyncSummary:
        """Fetch pull requests newer than the highest cached id and cache one file per PR.

        Cached pull requests are never fetched again, even if they changed
        remotely.

        Raises:
            NotFoundError: If the repository no longer exists.
        """
        slug = validate_slug(repo_slug)
        with self._cache.lock(slug):
            summary = SyncSummary(repo_slug=slug, kind=EntityKind.PULL_REQUEST)
            cached = self._cache.id_range(EntityKind.PULL_REQUEST, slug)
            after_id = cached.max if cached else None
            url = self._indexed_repository_url(slug, "pullrequests_url") or self._client.pull_requests_url(slug)

            logger.info(
                "Fetching pull requests for '%s' (%s).",
                slug,
                f"ids > {after_id}" if after_id is not None else "all",
            )

            try:
                for pr in self._client.iter_pull_requests(url, state=state, after_id=after_id):
                    pr_id = pr.get("id")
                    if not isinstance(pr_id, int):
                        logger.warning("Skipping pull request without an integer id", extra={"repo": slug})
                        continue
                    if after_id is not None and pr_id <= after_id:
                        continue
                    if not self._write(summary, EntityKind.PULL_REQUEST, pr_id, pr):
                        # The cached max must never move past a missing id.
                        logger.error("Stopping pull request sync for '%s' at pull request %d.", slug, pr_id)
                        break
            except NotFoundError as exc:
                raise NotFoundError(
                    f"Repository '{slug}' no longer exists or has moved.",
                    status_code=exc.status_code,
                    url=exc.url,
                ) from exc

            if summary.written == 0:
                logger.info("No new pull requests for '%s'.", slug)
            else:
                logger.info("Cached %d new pull request(s) for '%s'.", summary.written, slug)
            return summary

    def sync_comments(self, repo_slug: str) -> SyncSummary:
        """Fetch comments for each pull request in the secondary delta range, one file per comment."""

        def handle(summary: SyncSummary, pr: PullRequest, url: str) -> None:
            for comment in self._client.paginate(url):
                comment_id = comment.get("id")
                if not isinstance(comment_id, int):
                    continue
                self._write(summary, EntityKind.COMMENT, pr.id, comment_id, enrich_comment(comment, pr))

        return self._sync_secondary(repo_slug, EntityKind.COMMENT, handle)

    def sync_commits(self, repo_slug: str) -> SyncSummary:
        """Fetch commits for each pull request in the delta range, replacing its commit bundle."""

        def handle(summary: SyncSummary, pr: PullRequest, url: str) -> None:
            commits = [commit_entry(commit, pr) for commit in self._client.paginate(url)]
            self._write(summary, EntityKind.COMMIT, pr.id, {"commits": commits})

        return self._sync_secondary(repo_slug, EntityKind.COMMIT, handle)

    def sync_approvals(self, repo_slug: str) -> SyncSummary:
        """Fetch activity for each pull request in the delta range, replacing its approval bundle."""

        def handle(summary: SyncSummary, pr: PullRequest, url: str) -> None:
            approvals = []
            for event in self._client.paginate(url):
                entry = approval_entry(event, pr)
                if entry is not None:
                    approvals.append(entry)
            self._write(summary, EntityKind.APPROVAL, pr.id, {"approvals": approvals})

        return self._sync_secondary(repo_slug, EntityKind.APPROVAL, handle)

    def _sync_secondary(
        self,
        repo_slug: str,
        kind: EntityKind,
        handle: Callable[[SyncSummary, PullRequest, str], None],
    ) -> SyncSummary:
        slug = validate_slug(repo_slug)
        link_attribute = _LINK_ATTRIBUTES[kind]

        with self._cache.lock(slug):
            summary = SyncSummary(repo_slug=slug, kind=kind)
            pr_range = secondary_pr_range(
                self._cache.id_range(EntityKind.PULL_REQUEST, slug),
                self._cache.id_range(kind, slug),
            )

            if pr_range is None or pr_range.max - pr_range.min <= 0:
                logger.info("No %s to fetch for '%s'.", kind.directory, slug)
                summary.noop = True
                return summary

            logger.info(
                "Fetching %s for '%s' pull requests %d..%d.",
                kind.directory,
                slug,
                pr_range.min,
                pr_range.max,
            )

            for pr_id in range(pr_range.min, pr_range.max + 1):
                record = self._cache.read(EntityKind.PULL_REQUEST, slug, pr_id)
                if record is None or not isinstance(record.get("id"), int):
                    continue

                pr = PullRequest.from_dict(record)
                url = getattr(pr, link_attribute)
                if not url:
                    logger.warning("Pull request %d of '%s' has no %s link.", pr_id, slug, kind.directory)
                    summary.prs_skipped += 1
                    continue

                try:
                    handle(summary, pr, url)
                except NotFoundError:
                    logger.info("The %s of pull request %d in '%s' no longer exist; skipping.", kind.directory, pr_id, slug)
                    summary.prs_skipped += 1
                    continue
                except ApiError as exc:
                    logger.error("Could not fetch %s of pull request %d in '%s': %s", kind.directory, pr_id, slug, exc)
                    summary.prs_skipped += 1
                    continue

                summary.prs_processed += 1

            logger.info(
                "Synced %s for '%s'.",
                kind.directory,
                slug,
                extra={
                    "written": summary.written,
                    "prs_processed": summary.prs_processed,
                    "prs_skipped": summary.prs_skipped,
                },
            )
            return summary

    def sync_repo_commits(self, repo_slug: str) -> SyncSummary:
        """Fetch every commit of a repository, caching one file per commit hash.

        Raises:
            NotFoundError: If the repository no longer exists.
        """
        slug = validate_slug(repo_slug)
        with self._cache.lock(slug):
            summary = SyncSummary(repo_slug=slug, kind=EntityKind.REPO_COMMIT)
            url = self._indexed_repository_url(slug, "commits_url") or self._client.commits_url(slug)

            try:
                for commit in self._client.paginate(url):
                    commit_hash = commit.get("hash")
                    if not commit_hash:
                        continue
                    self._write(summary, EntityKind.REPO_COMMIT, commit_hash, RepoCommit.from_dict(commit).to_dict())
            except NotFoundError as exc:
                raise NotFoundError(
                    f"Repository '{slug}' no longer exists or has moved.",
                    status_code=exc.status_code,
                    url=exc.url,
                ) from exc

            logger.info("Cached %d commit(s) for '%s'.", summary.written, slug)
            return summary

    def sync_project(
        self,
        projects: Sequence[str],
        comments: bool = False,
        commits: bool = False,
        approvals: bool = False,
    ) -> List[SyncSummary]:
        """Sync every repository of the given projects (or ``"global"``), one repository at a time.

        A repository whose API calls fail is logged and skipped. Configuration
        and authentication errors stop the whole run.
        """
        worklist = deque(self._require_index().for_projects(projects))
        if not worklist:
            logger.info("No repositories matched projects: %s", ", ".join(projects) or "global")
            return []

        summaries: List[SyncSummary] = []
        while worklist:
            repository = worklist.popleft()
            logger.info("=== Repo: %s (%d remaining) ===", repository.slug, len(worklist))
            try:
                summaries.append(self.sync_pull_requests(repository.slug))
                if comments:
                    summaries.append(self.sync_comments(repository.slug))
                if commits:
                    summaries.append(self.sync_commits(repository.slug))
                if approvals:
                    summaries.append(self.sync_approvals(repository.slug))
            except ApiError as exc:
                logger.error("Sync failed for '%s': %s", repository.slug, exc)

        return summaries

    def clear_cache(
        self,
        target: str,
        force: bool = False,
        project: bool = False,
        confirm: Optional[ConfirmCallback] = None,
    ) -> List[str]:
        """Delete cached records for a repository, or for every repository of a project.

        Unless ``force`` is set, ``confirm`` is asked first and nothing is
        deleted without a yes.

        Returns:
            Slugs whose cache was deleted.
        """
        if project:
            slugs = [repository.slug for repository in self._require_index().for_projects([target])]
        else:
            slugs = [validate_slug(target)]

        existing = [slug for slug in slugs if self._cache.repo_dir(slug).exists()]
        if not existing:
            logger.info("No PR data was found.")
            return []

        if not force:
            prompt = f"Delete cached PR files for '{', '.join(existing)}' (n/Y)? : "
            if confirm is None or not confirm(prompt):
                logger.info("Nothing deleted.")
                return []

        for slug in existing:
            with self._cache.lock(slug):
                self._cache.delete_subtree(slug)
        logger.info("Deleted PR files for %d repository(ies).", len(existing))
        return existing

    def _require_index(self) -> RepositoryIndex:
        if self._index is None:
            raise ConfigurationError("Project operations require a repository index.")
        return self._index

