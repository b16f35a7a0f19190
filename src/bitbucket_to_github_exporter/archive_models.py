"""Records written to the GitHub migration archive.

Each dataclass mirrors one JSON document type of the archive. Field names are
the archive's own keys, so ``to_archive_dict`` can serialize them directly.
Fields marked with ``metadata={"archive": False}`` are kept in memory only.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any

SCHEMA_VERSION = "1.2.0"

# Review and review comment states as the importer encodes them
REVIEW_STATE_COMMENTED = 1

MARKDOWN_FORMATTER = "markdown"


def to_archive_dict(record: Any) -> dict[str, Any]:  # noqa: ANN401
    """Serialize an archive record (and nested records) into plain JSON data."""
    return {f.name: _to_plain(getattr(record, f.name)) for f in fields(record) if f.metadata.get("archive", True)}


def _to_plain(value: Any) -> Any:  # noqa: ANN401
    if is_dataclass(value) and not isinstance(value, type):
        return to_archive_dict(value)
    if isinstance(value, list):
        return [_to_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    return value


@dataclass
class RepositoryRecord:
    url: str
    owner: str
    name: str
    description: str
    private: bool
    created_at: str
    git_url: str
    default_branch: str = "main"
    website: str | None = None
    has_issues: bool = True
    has_wiki: bool = False
    has_downloads: bool = True
    labels: list[dict[str, Any]] = field(default_factory=list)
    webhooks: list[Any] = field(default_factory=list)
    collaborators: list[Any] = field(default_factory=list)
    public_keys: list[Any] = field(default_factory=list)
    wiki_url: str = ""
    type: str = "repository"


@dataclass
class UserRecord:
    url: str
    login: str
    name: str
    created_at: str
    company: str | None = None
    website: str | None = None
    location: str | None = None
    emails: list[dict[str, Any]] = field(default_factory=list)
    type: str = "user"


@dataclass
class OrganizationRecord:
    url: str
    login: str
    name: str
    description: str = ""
    website: str | None = None
    location: str | None = None
    email: str | None = None
    members: list[dict[str, str]] = field(default_factory=list)
    type: str = "organization"


@dataclass
class TeamRecord:
    """A team granting its members access to the exported repository."""

    url: str
    organization: str
    name: str
    created_at: str
    description: str = ""
    # {"repository": <repository url>, "access": "admin" | "write" | "read"}
    permissions: list[dict[str, str]] = field(default_factory=list)
    members: list[dict[str, str]] = field(default_factory=list)
    type: str = "team"


@dataclass
class ProtectedBranchRecord:
    url: str
    name: str
    creator_url: str
    repository_url: str
    admin_enforced: bool = True
    # 0 = off, 1 = non-admins, 2 = everyone
    block_deletions_enforcement_level: int = 0
    block_force_pushes_enforcement_level: int = 0
    dismiss_stale_reviews_on_push: bool = False
    pull_request_reviews_enforcement_level: str = "off"
    require_code_owner_review: bool = False
    required_status_checks_enforcement_level: str = "off"
    strict_required_status_checks_policy: bool = False
    authorized_actors_only: bool = False
    authorized_user_urls: list[str] = field(default_factory=list)
    authorized_team_urls: list[str] = field(default_factory=list)
    dismissal_restricted_user_urls: list[str] = field(default_factory=list)
    dismissal_restricted_team_urls: list[str] = field(default_factory=list)
    required_status_checks: list[str] = field(default_factory=list)
    type: str = "protected_branch"


@dataclass
class PullRequestBranch:
    """Base or head of an archived pull request."""

    ref: str
    sha: str
    user: str
    repo: str


@dataclass
class PullRequestRecord:
    url: str
    user: str
    repository: str
    title: str
    body: str
    base: PullRequestBranch
    head: PullRequestBranch
    created_at: str
    merged_at: str | None = None
    closed_at: str | None = None
    merge_commit_sha: str | None = None
    work_in_progress: bool = False
    assignee: str | None = None
    assignees: list[str] = field(default_factory=list)
    milestone: str | None = None
    labels: list[str] = field(default_factory=list)
    reactions: list[Any] = field(default_factory=list)
    review_requests: list[Any] = field(default_factory=list)
    close_issue_references: list[Any] = field(default_factory=list)
    type: str = "pull_request"


@dataclass
class IssueCommentRecord:
    """A general (non-review) pull request comment."""

    url: str
    pull_request: str
    user: str
    body: str
    created_at: str
    updated_at: str = ""
    formatter: str = MARKDOWN_FORMATTER
    reactions: list[Any] = field(default_factory=list)
    type: str = "issue_comment"


@dataclass
class ReviewCommentRecord:
    """An inline comment attached to a file position."""

    url: str
    pull_request: str
    pull_request_review: str
    pull_request_review_thread: str
    user: str
    body: str
    path: str
    position: int
    commit_id: str
    created_at: str
    updated_at: str = ""
    original_position: int | None = None
    original_commit_id: str = ""
    diff_hunk: str = ""
    in_reply_to: str | None = None
    state: int = REVIEW_STATE_COMMENTED
    formatter: str = MARKDOWN_FORMATTER
    subject_type: str = "line"
    reactions: list[Any] = field(default_factory=list)
    type: str = "pull_request_review_comment"


@dataclass
class ReviewThreadRecord:
    """Review comments anchored to one (path, position) in a pull request."""

    url: str
    pull_request: str
    path: str
    position: int
    original_position: int
    commit_id: str
    original_commit_id: str
    diff_hunk: str
    created_at: str
    resolved_at: str | None = None
    resolver: str | None = None
    comments: list[ReviewCommentRecord] = field(default_factory=list, metadata={"archive": False})
    type: str = "pull_request_review_thread"


@dataclass
class ReviewRecord:
    """A review made of a root comment and all of its replies."""

    url: str
    pull_request: str
    user: str
    head_sha: str
    state: int
    created_at: str
    submitted_at: str
    body: str = ""
    formatter: str = MARKDOWN_FORMATTER
    reactions: list[Any] = field(default_factory=list)
    comments: list[ReviewCommentRecord] = field(default_factory=list, metadata={"archive": False})
    type: str = "pull_request_review"
