"""Typed records for data read from the Bitbucket Cloud API.

The client parses raw JSON into these records so the rest of the exporter
never has to navigate nested response dictionaries. Archive output has its own
records in ``archive_models``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

PullRequestState = Literal["OPEN", "MERGED", "DECLINED", "SUPERSEDED"]


@dataclass
class SourceRepository:
    """Repository metadata as reported by the API."""

    workspace: str
    slug: str
    name: str
    description: str = ""
    created_at: datetime | None = None
    is_private: bool = True
    main_branch: str | None = None  # Declared default branch, None if the repository is empty
    website: str = ""
    has_issues: bool = False
    has_wiki: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.workspace}/{self.slug}"


@dataclass
class PullRequestEndpoint:
    """One side (source or destination) of a pull request."""

    branch: str
    commit_sha: str
    repository: str  # "workspace/slug", may differ from the exported repository for forks


@dataclass
class PullRequest:
    """A pull request with short SHAs already promoted where possible."""

    id: int
    title: str
    body: str
    state: PullRequestState
    source: PullRequestEndpoint
    destination: PullRequestEndpoint
    author: str
    created_at: datetime | None
    updated_at: datetime | None = None
    work_in_progress: bool = False
    merge_commit_sha: str | None = None


@dataclass
class InlineAnchor:
    """File location a review comment is attached to.

    ``position`` is None for file-level comments that have no line.
    """

    path: str
    position: int | None = None


@dataclass
class Comment:
    """A pull request comment, either general or inline."""

    id: int
    pull_request_id: int
    body: str
    author: str
    created_at: datetime | None
    updated_at: datetime | None = None
    inline: InlineAnchor | None = None
    parent_id: int | None = None
    thread_id: str | None = None  # Only set when the source groups comments explicitly

    @property
    def is_reply(self) -> bool:
        return self.parent_id is not None

    @property
    def position(self) -> int | None:
        return self.inline.position if self.inline else None


@dataclass
class PullRequestComments:
    """Comments of one pull request, split by kind."""

    general: list[Comment] = field(default_factory=list)
    inline: list[Comment] = field(default_factory=list)


@dataclass
class WorkspaceMember:
    """A member of the exported workspace."""

    login: str  # Account UUID without braces
    display_name: str = ""
    nickname: str = ""
