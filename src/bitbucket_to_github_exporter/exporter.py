"""Export orchestrator.

Export Flow
-----------
Phase 1: Repository
    - Fetch repository metadata (essential: failures end the run)
    - Write schema.json, urls.json and the repository record with a
      placeholder default branch

Phase 2: Git
    - Mirror the repository (or fall back to an empty bare repository)
    - Patch the repository record with the real default branch and git URL
    - Write the admin team and protect the default branch

Phase 3: Pull requests (best-effort)
    - Fetch pull requests, then the comments of each one
    - Rebuild review threads and reviews from the inline comments
    - Write one document per record type

Phase 4: Users and organization
    - Workspace members (or a synthetic workspace user) plus every author
      referenced by exported records

Phase 5: Validation and packaging
    - Sanitize and check the written files
    - Optionally pack the directory into <output>.tar.gz

Essential-path errors (authentication, missing repository, exhausted rate
limit) propagate. Best-effort failures are logged, counted as warnings and
replaced by empty results.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from .archive import create_archive
from .archive_models import (
    SCHEMA_VERSION,
    IssueCommentRecord,
    OrganizationRecord,
    ProtectedBranchRecord,
    PullRequestBranch,
    PullRequestRecord,
    RepositoryRecord,
    ReviewCommentRecord,
    ReviewRecord,
    ReviewThreadRecord,
    TeamRecord,
    UserRecord,
    to_archive_dict,
)
from .exceptions import ExportError, NotFoundError, TransientFetchError, ValidationError
from .repository_materializer import RepositoryMaterializer
from .threads import ThreadReconstructor
from .urls import (
    archive_git_url,
    issue_comment_url,
    organization_url,
    protected_branch_url,
    pull_request_url,
    repository_url,
    team_url,
    url_templates,
    user_url,
)
from .utils import format_date_to_z, write_json_atomic
from .validation import DataValidator, ValidationReport

if TYPE_CHECKING:
    from pathlib import Path

    from .bitbucket_client import BitbucketClient
    from .config import ExportOptions
    from .models import Comment, PullRequest, SourceRepository, WorkspaceMember

logger: logging.Logger = logging.getLogger(__name__)

REPOSITORIES_FILE = "repositories_000001.json"
USERS_FILE = "users_000001.json"
ORGANIZATIONS_FILE = "organizations_000001.json"
PULL_REQUESTS_FILE = "pull_requests_000001.json"
ISSUE_COMMENTS_FILE = "issue_comments_000001.json"
REVIEW_COMMENTS_FILE = "pull_request_review_comments_000001.json"
REVIEW_THREADS_FILE = "pull_request_review_threads_000001.json"
REVIEWS_FILE = "pull_request_reviews_000001.json"
TEAMS_FILE = "teams_000001.json"
PROTECTED_BRANCHES_FILE = "protected_branches_000001.json"


@dataclass
class ExportStats:
    """Statistics collected during export."""

    pull_requests: int = 0
    issue_comments: int = 0
    review_comments: int = 0
    review_threads: int = 0
    reviews: int = 0
    users: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass
class ExportResult:
    """Result of an export run."""

    output_dir: Path
    default_branch: str
    used_empty_repository: bool
    stats: ExportStats
    validation: ValidationReport
    archive_path: Path | None = None


def update_repository_record(output_dir: Path, workspace: str, slug: str, updates: dict[str, Any]) -> bool:
    """Patch fields of the already-written repository record in place.

    The record is matched by name (case-insensitive) or by its URL.

    Returns:
        True if a record was updated

    Raises:
        ValidationError: If the repository document cannot be read or parsed
    """
    path = output_dir / REPOSITORIES_FILE
    try:
        records = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        msg = f"Cannot update {REPOSITORIES_FILE}: {e}"
        raise ValidationError(msg) from e

    url_suffix = f"/{workspace}/{slug}".lower()
    updated = False
    for record in records:
        name = str(record.get("name", "")).lower()
        url = str(record.get("url", "")).lower()
        if name == slug.lower() or url.endswith(url_suffix):
            record.update(updates)
            updated = True

    if updated:
        write_json_atomic(path, records)
    return updated


class BitbucketExporter:
    """Exports one Bitbucket repository into a GitHub migration archive directory.

    Usage:
        client = BitbucketClient(credentials)
        exporter = BitbucketExporter(client, ExportOptions(output_dir=Path("out")))
        result = exporter.export("workspace", "repo")
    """

    def __init__(
        self,
        client: BitbucketClient,
        options: ExportOptions,
        *,
        materializer: RepositoryMaterializer | None = None,
    ) -> None:
        self.client = client
        self.options = options
        self.output_dir = options.output_dir
        self.web_base_url = options.web_base_url.rstrip("/")
        self.materializer = materializer or RepositoryMaterializer(
            self.output_dir,
            client.credentials,
            client=client,
            clone_base_url=options.clone_base_url,
        )

    def export(self, workspace: str, slug: str) -> ExportResult:
        """Run the full export.

        Raises:
            AuthenticationError: If the credentials are rejected
            NotFoundError: If the repository does not exist
            RateLimitExhaustedError: If the API keeps rate limiting after all retries
            ExportError: If the output directory cannot be written
        """
        logger.info(f"Starting export of {workspace}/{slug} to {self.output_dir}")
        stats = ExportStats()

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)

            repository = self.client.get_repository(workspace, slug)
            self._write("schema.json", {"version": SCHEMA_VERSION})
            self._write("urls.json", url_templates())
            self._write(REPOSITORIES_FILE, [to_archive_dict(self._repository_record(repository))])

            materialized = self.materializer.materialize(
                workspace, slug, repository=repository, clone_url=self.options.clone_url
            )
            if materialized.is_empty:
                stats.warnings.append(f"Git mirror failed, exported an empty repository: {materialized.error}")
            self._patch_repository_record(workspace, slug, materialized.default_branch, stats)
            self._write(TEAMS_FILE, [to_archive_dict(self._team_record(workspace, slug))])
            self._write(
                PROTECTED_BRANCHES_FILE,
                [to_archive_dict(self._protected_branch_record(workspace, slug, materialized.default_branch))],
            )

            members = self.client.get_users(workspace)
            authors = self._export_pull_requests(workspace, slug, stats)
            users = self._user_records(workspace, members, authors)
            stats.users = len(users)
            self._write(USERS_FILE, [to_archive_dict(u) for u in users])
            self._write(ORGANIZATIONS_FILE, [to_archive_dict(self._organization_record(workspace, users))])

            validation = DataValidator(self.output_dir).validate()

        except OSError as e:
            logger.exception("Export failed")
            msg = f"Export failed: {e}"
            raise ExportError(msg) from e

        archive_path: Path | None = None
        if self.options.create_archive:
            try:
                archive_path = create_archive(self.output_dir)
            except OSError as e:
                logger.warning(f"Failed to create archive, the export directory is still usable: {e}")
                stats.warnings.append(f"Archive not created: {e}")

        logger.info(f"Export of {workspace}/{slug} completed")
        return ExportResult(
            output_dir=self.output_dir,
            default_branch=materialized.default_branch,
            used_empty_repository=materialized.is_empty,
            stats=stats,
            validation=validation,
            archive_path=archive_path,
        )

    def _write(self, name: str, data: Any) -> None:  # noqa: ANN401
        write_json_atomic(self.output_dir / name, data)
        logger.debug(f"Wrote {name}")

    def _patch_repository_record(self, workspace: str, slug: str, default_branch: str, stats: ExportStats) -> None:
        updates = {"default_branch": default_branch, "git_url": archive_git_url(workspace, slug)}
        try:
            updated = update_repository_record(self.output_dir, workspace, slug, updates)
        except ValidationError as e:
            logger.error(f"Repository record not patched: {e}")
            stats.warnings.append(str(e))
            return
        if not updated:
            logger.warning(f"No repository record matched {workspace}/{slug}; default branch not patched")
            stats.warnings.append("Repository record not patched")

    def _export_pull_requests(self, workspace: str, slug: str, stats: ExportStats) -> set[str]:
        """Write pull requests and their comments, returning the logins of all authors."""
        try:
            pull_requests = self.client.get_pull_requests(
                workspace,
                slug,
                open_only=self.options.open_prs_only,
                from_date=self.options.prs_from_date,
            )
        except (TransientFetchError, NotFoundError) as e:
            logger.warning(f"Failed to fetch pull requests, exporting none: {e}")
            stats.warnings.append(f"Pull requests not exported: {e}")
            pull_requests = []

        authors = {pr.author for pr in pull_requests}
        reconstructor = ThreadReconstructor(workspace, slug, web_base_url=self.web_base_url)
        issue_comments: list[IssueCommentRecord] = []
        review_comments: list[ReviewCommentRecord] = []
        threads: list[ReviewThreadRecord] = []
        reviews: list[ReviewRecord] = []

        for pr in pull_requests:
            try:
                comments = self.client.get_pull_request_comments(workspace, slug, pr.id)
            except (TransientFetchError, NotFoundError) as e:
                logger.warning(f"Failed to fetch comments for PR #{pr.id}, skipping them: {e}")
                stats.warnings.append(f"Comments of PR #{pr.id} not exported: {e}")
                continue

            rebuilt = reconstructor.reconstruct(pr, comments.inline)
            for comment in [*comments.general, *rebuilt.plain_comments]:
                issue_comments.append(self._issue_comment_record(workspace, slug, pr, comment))
            review_comments.extend(rebuilt.review_comments)
            threads.extend(rebuilt.threads)
            reviews.extend(rebuilt.reviews)
            authors.update(c.author for c in [*comments.general, *comments.inline])

        stats.pull_requests = len(pull_requests)
        stats.issue_comments = len(issue_comments)
        stats.review_comments = len(review_comments)
        stats.review_threads = len(threads)
        stats.reviews = len(reviews)

        documents: list[tuple[str, list[Any]]] = [
            (PULL_REQUESTS_FILE, [self._pull_request_record(workspace, slug, pr) for pr in pull_requests]),
            (ISSUE_COMMENTS_FILE, issue_comments),
            (REVIEW_COMMENTS_FILE, review_comments),
            (REVIEW_THREADS_FILE, threads),
            (REVIEWS_FILE, reviews),
        ]
        for name, records in documents:
            if records:
                self._write(name, [to_archive_dict(r) for r in records])

        logger.info(
            f"Exported {stats.pull_requests} pull requests, {stats.issue_comments} comments, "
            f"{stats.review_comments} review comments in {stats.review_threads} threads"
        )
        if "" in authors:
            # Records without an author are attributed to the workspace
            authors.discard("")
            authors.add(workspace)
        return authors

    def _user(self, login: str, workspace: str) -> str:
        return user_url(login or workspace, self.web_base_url)

    def _repository_record(self, repository: SourceRepository) -> RepositoryRecord:
        workspace, slug = repository.workspace, repository.slug
        return RepositoryRecord(
            url=repository_url(workspace, slug, self.web_base_url),
            owner=organization_url(workspace, self.web_base_url),
            name=slug,
            description=repository.description,
            private=repository.is_private,
            created_at=format_date_to_z(repository.created_at),
            git_url=archive_git_url(workspace, slug),
            website=repository.website or None,
            has_issues=repository.has_issues,
        )

    def _pull_request_record(self, workspace: str, slug: str, pr: PullRequest) -> PullRequestRecord:
        closed_at: str | None = None
        merged_at: str | None = None
        if pr.state == "MERGED":
            merged_at = format_date_to_z(pr.updated_at) or None
            closed_at = merged_at
        elif pr.state in ("DECLINED", "SUPERSEDED"):
            closed_at = format_date_to_z(pr.updated_at) or None

        owner = organization_url(workspace, self.web_base_url)
        # Forks are not exported, so both sides point at the exported repository
        repo = repository_url(workspace, slug, self.web_base_url)
        return PullRequestRecord(
            url=pull_request_url(workspace, slug, pr.id, self.web_base_url),
            user=self._user(pr.author, workspace),
            repository=repository_url(workspace, slug, self.web_base_url),
            title=pr.title,
            body=pr.body,
            base=PullRequestBranch(
                ref=pr.destination.branch,
                sha=pr.destination.commit_sha,
                user=owner,
                repo=repo,
            ),
            head=PullRequestBranch(
                ref=pr.source.branch,
                sha=pr.source.commit_sha,
                user=owner,
                repo=repo,
            ),
            created_at=format_date_to_z(pr.created_at),
            merged_at=merged_at,
            closed_at=closed_at,
            merge_commit_sha=pr.merge_commit_sha,
            work_in_progress=pr.work_in_progress,
        )

    def _issue_comment_record(
        self, workspace: str, slug: str, pr: PullRequest, comment: Comment
    ) -> IssueCommentRecord:
        return IssueCommentRecord(
            url=issue_comment_url(workspace, slug, pr.id, comment.id, self.web_base_url),
            pull_request=pull_request_url(workspace, slug, pr.id, self.web_base_url),
            user=self._user(comment.author, workspace),
            body=comment.body,
            created_at=format_date_to_z(comment.created_at),
            updated_at=format_date_to_z(comment.updated_at or comment.created_at),
        )

    def _user_records(
        self, workspace: str, members: list[WorkspaceMember], authors: set[str]
    ) -> list[UserRecord]:
        """Workspace members plus any author not among them.

        Without any member the workspace itself is exported as the only
        (synthetic) user, since it stands in for unknown authors.
        """
        now = format_date_to_z(datetime.now(UTC))
        users: dict[str, UserRecord] = {}
        for member in members:
            users[member.login] = UserRecord(
                url=user_url(member.login, self.web_base_url),
                login=member.login,
                name=member.display_name or member.nickname or member.login,
                created_at=now,
            )

        if not users:
            logger.info(f"No workspace members available, exporting {workspace} as the only user")
            users[workspace] = UserRecord(
                url=user_url(workspace, self.web_base_url), login=workspace, name=workspace, created_at=now
            )

        for login in sorted(authors - users.keys()):
            users[login] = UserRecord(
                url=user_url(login, self.web_base_url), login=login, name=login, created_at=now
            )
        return list(users.values())

    def _organization_record(self, workspace: str, users: list[UserRecord]) -> OrganizationRecord:
        return OrganizationRecord(
            url=organization_url(workspace, self.web_base_url),
            login=workspace,
            name=workspace,
            members=[{"user": u.url, "role": "direct_member", "state": "active"} for u in users],
        )

    def _team_record(self, workspace: str, slug: str) -> TeamRecord:
        return TeamRecord(
            url=team_url(workspace, f"{workspace}-admin-access", self.web_base_url),
            organization=organization_url(workspace, self.web_base_url),
            name=f"{workspace} Admin Access",
            created_at=format_date_to_z(datetime.now(UTC)),
            permissions=[{"repository": repository_url(workspace, slug, self.web_base_url), "access": "admin"}],
        )

    def _protected_branch_record(self, workspace: str, slug: str, branch: str) -> ProtectedBranchRecord:
        """Protect the default branch against deletion and force pushes."""
        return ProtectedBranchRecord(
            url=protected_branch_url(workspace, slug, branch, self.web_base_url),
            name=branch,
            creator_url=organization_url(workspace, self.web_base_url),
            repository_url=repository_url(workspace, slug, self.web_base_url),
            block_deletions_enforcement_level=2,
            block_force_pushes_enforcement_level=2,
        )
