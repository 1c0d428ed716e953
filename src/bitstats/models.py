"""Domain models for Bitbucket data mirrored by bitstats.

Cached records are stored as the raw JSON the API returned (plus a few derived
flags). These dataclasses are typed, null-safe views over that JSON: missing
nested properties become ``None`` (or ``0`` for counts) instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


def dig(data: Any, *keys: str, default: Any = None) -> Any:
    """Follow nested mapping keys, returning ``default`` when any level is missing."""
    current = data
    for key in keys:
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    return default if current is None else current


def display_name_of(actor: Any) -> Optional[str]:
    """Return an actor's display name, falling back to nested ``user`` or username."""
    return (
        dig(actor, "display_name")
        or dig(actor, "user", "display_name")
        or dig(actor, "username")
        or dig(actor, "user", "username")
    )


@dataclass(slots=True)
class Credentials:
    """OAuth consumer key/secret pair, plus the optional repositories URL."""

    key: str
    secret: str
    repositories_url: Optional[str] = None


@dataclass(slots=True)
class Token:
    """Access/refresh token pair returned by the Bitbucket OAuth endpoint."""

    access_token: str
    refresh_token: str
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Token":
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        if not isinstance(access_token, str) or not isinstance(refresh_token, str):
            raise ValueError("Token payload is missing 'access_token' or 'refresh_token'.")
        return cls(access_token=access_token, refresh_token=refresh_token, raw=dict(data))

    def to_dict(self) -> Dict[str, Any]:
        payload = dict(self.raw)
        payload["access_token"] = self.access_token
        payload["refresh_token"] = self.refresh_token
        return payload


@dataclass(slots=True)
class Repository:
    """Represents a repository entry in the local repository index."""

    slug: str
    project_key: Optional[str]
    project_name: Optional[str]
    description: Optional[str]
    pullrequests_url: Optional[str]
    commits_url: Optional[str]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Repository":
        return cls(
            slug=str(data.get("slug") or ""),
            project_key=dig(data, "project", "key"),
            project_name=dig(data, "project", "name"),
            description=dig(data, "description"),
            pullrequests_url=dig(data, "links", "pullrequests", "href"),
            commits_url=dig(data, "links", "commits", "href"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the trimmed shape stored in the repository index file."""
        return {
            "slug": self.slug,
            "project": {"key": self.project_key, "name": self.project_name},
            "description": self.description,
            "links": {
                "pullrequests": {"href": self.pullrequests_url},
                "commits": {"href": self.commits_url},
            },
        }


@dataclass(slots=True)
class PullRequest:
    """Null-safe view of a cached pull request record."""

    id: int
    state: Optional[str]
    title: Optional[str]
    description: Optional[str]
    author: Optional[str]
    closed_by: Optional[str]
    created_on: Optional[str]
    updated_on: Optional[str]
    source_branch: Optional[str]
    destination_branch: Optional[str]
    comment_count: int
    comments_url: Optional[str]
    commits_url: Optional[str]
    activity_url: Optional[str]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PullRequest":
        return cls(
            id=int(data["id"]),
            state=dig(data, "state"),
            title=dig(data, "title"),
            description=dig(data, "description"),
            author=display_name_of(dig(data, "author")),
            closed_by=display_name_of(dig(data, "closed_by")),
            created_on=dig(data, "created_on"),
            updated_on=dig(data, "updated_on"),
            source_branch=dig(data, "source", "branch", "name"),
            destination_branch=dig(data, "destination", "branch", "name"),
            comment_count=int(dig(data, "comment_count", default=0)),
            comments_url=dig(data, "links", "comments", "href"),
            commits_url=dig(data, "links", "commits", "href"),
            activity_url=dig(data, "links", "activity", "href"),
        )


@dataclass(slots=True)
class Comment:
    """Null-safe view of a cached pull request comment."""

    id: Optional[int]
    pr_id: Optional[int]
    author: Optional[str]
    body: Optional[str]
    parent_id: Optional[int]
    is_inline: bool
    created_on: Optional[str]
    is_pr_author: bool

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Comment":
        return cls(
            id=dig(data, "id"),
            pr_id=dig(data, "pullrequest", "id"),
            author=display_name_of(dig(data, "user")),
            body=dig(data, "content", "raw"),
            parent_id=dig(data, "parent", "id"),
            is_inline=dig(data, "inline") is not None,
            created_on=dig(data, "created_on"),
            is_pr_author=bool(dig(data, "is_pr_author", default=False)),
        )


@dataclass(slots=True)
class CommitEntry:
    """One commit inside a pull request's commit bundle."""

    hash: Optional[str]
    date: Optional[str]
    message: Optional[str]
    author: Optional[str]
    pr_id: Optional[int]
    is_pr_author: bool
    is_merge: bool

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CommitEntry":
        return cls(
            hash=dig(data, "hash"),
            date=dig(data, "date"),
            message=dig(data, "message"),
            author=display_name_of(dig(data, "author")) or dig(data, "author", "raw"),
            pr_id=dig(data, "pullrequest", "id"),
            is_pr_author=bool(dig(data, "is_pr_author", default=False)),
            is_merge=bool(dig(data, "is_merge", default=False)),
        )


@dataclass(slots=True)
class ApprovalEntry:
    """One approval, decline, or update event inside a pull request's approval bundle."""

    display_name: Optional[str]
    date: Optional[str]
    state: Optional[str]
    reason: Optional[str]
    is_approval: bool
    is_declined: bool
    is_update: bool
    is_pr_author: bool

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ApprovalEntry":
        return cls(
            display_name=dig(data, "display_name"),
            date=dig(data, "date"),
            state=dig(data, "state"),
            reason=dig(data, "reason"),
            is_approval=bool(dig(data, "is_approval", default=False)),
            is_declined=bool(dig(data, "is_declined", default=False)),
            is_update=bool(dig(data, "is_update", default=False)),
            is_pr_author=bool(dig(data, "is_pr_author", default=False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "display_name": self.display_name,
            "date": self.date,
            "state": self.state,
            "reason": self.reason,
            "is_approval": self.is_approval,
            "is_declined": self.is_declined,
            "is_update": self.is_update,
            "is_pr_author": self.is_pr_author,
        }


@dataclass(slots=True)
class RepoCommit:
    """Repository-scoped commit as stored in the cache."""

    hash: Optional[str]
    date: Optional[str]
    message: Optional[str]
    username: Optional[str]
    display_name: Optional[str]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RepoCommit":
        return cls(
            hash=dig(data, "hash"),
            date=dig(data, "date"),
            message=dig(data, "message"),
            username=dig(data, "author", "user", "username"),
            display_name=dig(data, "author", "user", "display_name"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "date": self.date,
            "message": self.message,
            "author": {
                "user": {
                    "username": self.username or "Unknown",
                    "display_name": self.display_name or "Unknown",
                }
            },
        }
