"""URL formats used to identify records inside the migration archive.

The importer matches records by these URLs, so every reference (a comment's
pull request, a review comment's thread) must be built from the same helpers.
"""

from __future__ import annotations

DEFAULT_WEB_BASE_URL = "https://bitbucket.org"


def repository_url(workspace: str, slug: str, base_url: str = DEFAULT_WEB_BASE_URL) -> str:
    return f"{base_url}/{workspace}/{slug}"


def user_url(login: str, base_url: str = DEFAULT_WEB_BASE_URL) -> str:
    return f"{base_url}/{login}"


def organization_url(workspace: str, base_url: str = DEFAULT_WEB_BASE_URL) -> str:
    return f"{base_url}/{workspace}"


def team_url(workspace: str, team: str, base_url: str = DEFAULT_WEB_BASE_URL) -> str:
    return f"{base_url}/{workspace}/teams/{team}"


def protected_branch_url(workspace: str, slug: str, branch: str, base_url: str = DEFAULT_WEB_BASE_URL) -> str:
    return f"{repository_url(workspace, slug, base_url)}/protected_branches/{branch}"


def pull_request_url(workspace: str, slug: str, number: int, base_url: str = DEFAULT_WEB_BASE_URL) -> str:
    return f"{repository_url(workspace, slug, base_url)}/pull/{number}"


def issue_comment_url(
    workspace: str, slug: str, number: int, comment_id: int | str, base_url: str = DEFAULT_WEB_BASE_URL
) -> str:
    return f"{pull_request_url(workspace, slug, number, base_url)}#issuecomment-{comment_id}"


def review_url(
    workspace: str, slug: str, number: int, review_id: int | str, base_url: str = DEFAULT_WEB_BASE_URL
) -> str:
    return f"{pull_request_url(workspace, slug, number, base_url)}/files#pullrequestreview-{review_id}"


def review_comment_url(
    workspace: str, slug: str, number: int, comment_id: int | str, base_url: str = DEFAULT_WEB_BASE_URL
) -> str:
    return f"{pull_request_url(workspace, slug, number, base_url)}/files#r{comment_id}"


def review_thread_url(
    workspace: str, slug: str, number: int, thread_id: int | str, base_url: str = DEFAULT_WEB_BASE_URL
) -> str:
    return f"{pull_request_url(workspace, slug, number, base_url)}/files#pullrequestreviewthread-{thread_id}"


def canonical_clone_url(workspace: str, slug: str, base_url: str = DEFAULT_WEB_BASE_URL) -> str:
    """Credential-free HTTPS clone URL written as the mirror's ``origin``."""
    return f"{base_url}/{workspace}/{slug}.git"


def archive_git_url(workspace: str, slug: str) -> str:
    """Virtual locator of the bare repository inside the archive."""
    return f"tarball://root/repositories/{workspace}/{slug}.git"


def url_templates() -> dict[str, object]:
    """URL templates (RFC 6570) written to ``urls.json``."""
    return {
        "user": "{scheme}://{+host}{/segments*}/{user}",
        "organization": "{scheme}://{+host}/{organization}",
        "team": "{scheme}://{+host}/{owner}/teams/{team}",
        "repository": "{scheme}://{+host}/{owner}/{repository}",
        "protected_branch": "{scheme}://{+host}/{owner}/{repository}/protected_branches/{protected_branch}",
        "pull_request": "{scheme}://{+host}/{owner}/{repository}/pull/{number}",
        "pull_request_review_comment": "{scheme}://{+host}/{owner}/{repository}/pull/{number}/files#r{pull_request_review_comment}",
        "pull_request_review": "{scheme}://{+host}/{owner}/{repository}/pull/{number}/files#pullrequestreview-{pull_request_review}",
        "pull_request_review_thread": "{scheme}://{+host}/{owner}/{repository}/pull/{number}/files#pullrequestreviewthread-{pull_request_review_thread}",
        "commit_comment": "{scheme}://{+host}/{owner}/{repository}/commit/{commit}#commitcomment-{commit_comment}",
        "issue_comment": {
            "pull_request": "{scheme}://{+host}/{owner}/{repository}/pull/{number}#issuecomment-{issue_comment}",
        },
        "release": "{scheme}://{+host}/{owner}/{repository}/releases/tag/{release}",
        "label": "{scheme}://{+host}/{owner}/{repository}/labels#/{label}",
    }
