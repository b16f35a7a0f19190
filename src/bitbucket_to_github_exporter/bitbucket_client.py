"""Bitbucket Cloud REST API client.

Wraps a ``requests.Session`` with authentication, cursor pagination, HTTP 429
backoff, and a run-scoped cache that promotes short commit hashes to full SHAs.
The client is synchronous and not thread-safe; one instance serves one export.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import requests
from requests.auth import HTTPBasicAuth

from .config import API_TOKEN_USERNAME, DEFAULT_API_URL, Credentials, normalize_api_url
from .exceptions import (
    APIError,
    AuthenticationError,
    NotFoundError,
    RateLimitExhaustedError,
    ResponseDecodeError,
    TransientFetchError,
)
from .models import (
    Comment,
    InlineAnchor,
    PullRequest,
    PullRequestComments,
    PullRequestEndpoint,
    SourceRepository,
    WorkspaceMember,
)
from .urls import DEFAULT_WEB_BASE_URL, pull_request_url
from .utils import parse_timestamp

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger: logging.Logger = logging.getLogger(__name__)

PULL_REQUEST_PAGE_SIZE = 50
COMMENT_PAGE_SIZE = 100
MEMBER_PAGE_SIZE = 100

ALL_PULL_REQUEST_STATES = ("OPEN", "MERGED", "DECLINED", "SUPERSEDED")

_FULL_SHA_LENGTH = 40
_BODY_EXCERPT_LENGTH = 500


class BitbucketClient:
    """Authenticated access to the Bitbucket Cloud REST API (2.0)."""

    base_url: str
    session: requests.Session
    commit_sha_cache: dict[str, str]

    def __init__(
        self,
        credentials: Credentials,
        base_url: str = DEFAULT_API_URL,
        *,
        session: requests.Session | None = None,
        max_retries: int = 5,
        initial_backoff: float = 1.0,
        max_backoff: float = 60.0,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        web_base_url: str = DEFAULT_WEB_BASE_URL,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            credentials: Validated credentials; exactly one method should be configured
            base_url: API base URL, normalized to include ``/2.0`` for api.bitbucket.org
            session: Session to use (a new one is created if None)
            max_retries: Retries after the first attempt when the API answers HTTP 429
            initial_backoff: First backoff delay in seconds, doubled after each retry
            max_backoff: Upper bound for a single backoff delay in seconds
            timeout: Per-request timeout in seconds
            sleep: Function used to wait between retries
            web_base_url: Web URL used when rewriting pull request references
            log: Logger to use instead of the module logger
        """
        self.base_url = normalize_api_url(base_url)
        self.credentials = credentials
        self.session = session if session is not None else requests.Session()
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.timeout = timeout
        self.web_base_url = web_base_url.rstrip("/")
        self._sleep = sleep
        self._log = log or logger
        self.commit_sha_cache = {}

        self._configure_auth()
        self._log.debug(f"Bitbucket client for {self.base_url} using {credentials.describe()}")

    def _configure_auth(self) -> None:
        self.session.headers.update({"Accept": "application/json", "Content-Type": "application/json"})

        creds = self.credentials
        match creds.method:
            case "access_token":
                self.session.headers["Authorization"] = f"Bearer {creds.access_token}"
            case "api_token":
                self.session.auth = HTTPBasicAuth(creds.email or API_TOKEN_USERNAME, creds.api_token or "")
            case "app_password":
                self.session.auth = HTTPBasicAuth(creds.username or "", creds.app_password or "")
            case _:
                self._log.debug("No Bitbucket credentials configured; only public data will be readable")

    def _build_url(self, endpoint: str) -> str:
        # Cursor URLs from paginated responses are already absolute
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def make_request(self, endpoint: str, params: dict[str, Any] | list[tuple[str, Any]] | None = None) -> Any:  # noqa: ANN401
        """Issue one GET request and decode the JSON response.

        HTTP 429 responses are retried up to ``max_retries`` times with
        exponential backoff starting at ``initial_backoff`` seconds.

        Args:
            endpoint: Path relative to the API base URL, or an absolute URL
            params: Query parameters

        Returns:
            Decoded JSON body

        Raises:
            AuthenticationError: On HTTP 401 or 403
            NotFoundError: On HTTP 404
            RateLimitExhaustedError: If HTTP 429 persists after all retries
            TransientFetchError: On network errors or any other non-2xx status
            ResponseDecodeError: If the body is not valid JSON
        """
        url = self._build_url(endpoint)
        delay = self.initial_backoff
        attempt = 0

        while True:
            attempt += 1
            try:
                response = self.session.request("GET", url, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                msg = f"Request to {url} failed: {e}"
                raise TransientFetchError(msg) from e

            if response.status_code != 429:
                break

            if attempt > self.max_retries:
                msg = f"Rate limit exceeded for {url} after {attempt} attempts"
                raise RateLimitExhaustedError(msg, attempts=attempt, body=response.text)

            wait = min(delay, self.max_backoff)
            self._log.warning(
                f"Rate limited by Bitbucket API, retrying in {wait:g}s (retry {attempt}/{self.max_retries}): {url}"
            )
            self._sleep(wait)
            delay *= 2

        self._raise_for_status(response, url)

        try:
            return response.json()
        except ValueError as e:
            msg = f"Failed to decode JSON response from {url}: {e}"
            raise ResponseDecodeError(msg, status_code=response.status_code, body=response.text) from e

    @staticmethod
    def _raise_for_status(response: requests.Response, url: str) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        body = response.text[:_BODY_EXCERPT_LENGTH]
        if status in (401, 403):
            msg = f"Authentication failed (HTTP {status}) for {url}: {body}"
            raise AuthenticationError(msg, status_code=status, body=body)
        if status == 404:
            msg = f"Resource not found (HTTP 404): {url}"
            raise NotFoundError(msg, status_code=status, body=body)
        msg = f"API request failed with status {status} for {url}: {body}"
        raise TransientFetchError(msg, status_code=status, body=body)

    def paginate(
        self, endpoint: str, params: dict[str, Any] | list[tuple[str, Any]] | None = None
    ) -> Iterator[dict[str, Any]]:
        """Yield the ``values`` of every page, following ``next`` cursors until exhausted."""
        next_url: str | None = endpoint
        page_params = params

        while next_url:
            page = self.make_request(next_url, page_params)
            if not isinstance(page, dict):
                msg = f"Unexpected page format from {next_url}: expected an object"
                raise ResponseDecodeError(msg)

            yield from page.get("values") or []
            next_url = page.get("next") or None
            # The cursor URL already carries the original query string
            page_params = None

    def get_repository(self, workspace: str, slug: str) -> SourceRepository:
        """Fetch repository metadata.

        Raises:
            NotFoundError: If the repository does not exist or is not visible to the credentials
        """
        try:
            data = self.make_request(f"repositories/{workspace}/{slug}")
        except NotFoundError as e:
            msg = f"Repository not found: {workspace}/{slug}"
            raise NotFoundError(msg, status_code=404, body=e.body) from e

        mainbranch = data.get("mainbranch") or {}
        return SourceRepository(
            workspace=workspace,
            slug=slug,
            name=data.get("name") or slug,
            description=data.get("description") or "",
            created_at=parse_timestamp(data.get("created_on")),
            is_private=bool(data.get("is_private", True)),
            main_branch=mainbranch.get("name") or None,
            website=data.get("website") or "",
            has_issues=bool(data.get("has_issues", False)),
            has_wiki=bool(data.get("has_wiki", False)),
        )

    def get_pull_requests(
        self,
        workspace: str,
        slug: str,
        *,
        open_only: bool = False,
        from_date: str | None = None,
    ) -> list[PullRequest]:
        """Fetch pull requests, following cursor pages until exhausted.

        Short head, base and merge commit hashes are promoted to full SHAs where
        the API can resolve them.

        Args:
            workspace: Workspace slug
            slug: Repository slug
            open_only: Only request open pull requests
            from_date: Inclusive creation-date floor (``YYYY-MM-DD``, UTC)

        Raises:
            ValueError: If ``from_date`` is not a valid date
        """
        floor: datetime | None = None
        if from_date:
            floor = datetime.strptime(from_date, "%Y-%m-%d").replace(tzinfo=UTC)

        states = ("OPEN",) if open_only else ALL_PULL_REQUEST_STATES
        params: list[tuple[str, Any]] = [("pagelen", PULL_REQUEST_PAGE_SIZE)]
        params += [("state", state) for state in states]

        pull_requests: list[PullRequest] = []
        for raw in self.paginate(f"repositories/{workspace}/{slug}/pullrequests", params):
            created_at = parse_timestamp(raw.get("created_on"))
            if floor and created_at and created_at < floor:
                self._log.debug(f"Skipping PR #{raw.get('id')} created before {from_date}")
                continue
            pull_requests.append(self._parse_pull_request(workspace, slug, raw, created_at))

        self._log.info(f"Fetched {len(pull_requests)} pull requests from {workspace}/{slug}")
        return pull_requests

    def _parse_pull_request(
        self, workspace: str, slug: str, raw: dict[str, Any], created_at: datetime | None
    ) -> PullRequest:
        state = raw.get("state") or "OPEN"
        merge_commit_sha: str | None = None
        if state == "MERGED":
            merge_hash = (raw.get("merge_commit") or {}).get("hash")
            if merge_hash:
                merge_commit_sha = self.resolve_commit_sha(workspace, slug, merge_hash)

        return PullRequest(
            id=int(raw["id"]),
            title=raw.get("title") or "",
            body=self.transform_comment_body(raw.get("description") or "", workspace, slug),
            state=state,
            source=self._parse_endpoint(workspace, slug, raw.get("source") or {}),
            destination=self._parse_endpoint(workspace, slug, raw.get("destination") or {}),
            author=account_login(raw.get("author")),
            created_at=created_at,
            updated_at=parse_timestamp(raw.get("updated_on")),
            work_in_progress=bool(raw.get("draft", False)),
            merge_commit_sha=merge_commit_sha,
        )

    def _parse_endpoint(self, workspace: str, slug: str, raw: dict[str, Any]) -> PullRequestEndpoint:
        sha = (raw.get("commit") or {}).get("hash") or ""
        repository = (raw.get("repository") or {}).get("full_name") or f"{workspace}/{slug}"
        return PullRequestEndpoint(
            branch=(raw.get("branch") or {}).get("name") or "",
            commit_sha=self.resolve_commit_sha(workspace, slug, sha),
            repository=repository,
        )

    def get_full_commit_sha(self, workspace: str, slug: str, sha: str) -> str:
        """Resolve a short commit hash to its full 40-character SHA.

        Results are memoized for the lifetime of the client, keyed by the short SHA.

        Raises:
            APIError: If the commit cannot be fetched or the API returns a malformed hash
        """
        if not sha or len(sha) >= _FULL_SHA_LENGTH:
            return sha
        if sha in self.commit_sha_cache:
            return self.commit_sha_cache[sha]

        data = self.make_request(f"repositories/{workspace}/{slug}/commit/{sha}")
        full_sha = (data.get("hash") or "") if isinstance(data, dict) else ""
        if len(full_sha) != _FULL_SHA_LENGTH:
            msg = f"Commit {sha} resolved to unexpected hash {full_sha!r}"
            raise ResponseDecodeError(msg)

        self.commit_sha_cache[sha] = full_sha
        return full_sha

    def resolve_commit_sha(self, workspace: str, slug: str, sha: str) -> str:
        """Best-effort variant of ``get_full_commit_sha`` that falls back to the input on failure."""
        try:
            return self.get_full_commit_sha(workspace, slug, sha)
        except (TransientFetchError, NotFoundError) as e:
            self._log.warning(f"Could not resolve full SHA for commit {sha}, keeping short form: {e}")
            return sha

    def get_pull_request_comments(self, workspace: str, slug: str, pr_id: int) -> PullRequestComments:
        """Fetch all comments of a pull request, split into general and inline comments.

        Deleted comments are skipped. Same-repository pull request references in
        comment bodies are rewritten to the archive's URL convention.
        """
        comments = PullRequestComments()
        endpoint = f"repositories/{workspace}/{slug}/pullrequests/{pr_id}/comments"

        for raw in self.paginate(endpoint, {"pagelen": COMMENT_PAGE_SIZE}):
            if raw.get("deleted"):
                continue
            comment = self._parse_comment(workspace, slug, pr_id, raw)
            if comment.inline is not None:
                comments.inline.append(comment)
            else:
                comments.general.append(comment)

        self._log.debug(
            f"PR #{pr_id}: {len(comments.general)} general and {len(comments.inline)} inline comments"
        )
        return comments

    def _parse_comment(self, workspace: str, slug: str, pr_id: int, raw: dict[str, Any]) -> Comment:
        inline: InlineAnchor | None = None
        raw_inline = raw.get("inline") or {}
        if raw_inline.get("path"):
            line = raw_inline.get("to")
            if line is None:
                line = raw_inline.get("from")
            inline = InlineAnchor(path=raw_inline["path"], position=int(line) if line is not None else None)

        parent_id = (raw.get("parent") or {}).get("id")
        thread_id = (raw.get("thread") or {}).get("id")

        return Comment(
            id=int(raw["id"]),
            pull_request_id=pr_id,
            body=self.transform_comment_body((raw.get("content") or {}).get("raw") or "", workspace, slug),
            author=account_login(raw.get("user")),
            created_at=parse_timestamp(raw.get("created_on")),
            updated_at=parse_timestamp(raw.get("updated_on")),
            inline=inline,
            parent_id=int(parent_id) if parent_id is not None else None,
            thread_id=str(thread_id) if thread_id is not None else None,
        )

    def transform_comment_body(self, body: str, workspace: str, slug: str) -> str:
        """Rewrite references to pull requests of this repository.

        ``https://bitbucket.org/<ws>/<slug>/pull-requests/<n>`` becomes
        ``https://bitbucket.org/<ws>/<slug>/pull/<n>`` and a stand-alone ``#<n>``
        becomes a link to that URL. Links to other repositories are kept as-is.
        """
        if not body:
            return body

        full_url = re.compile(
            rf"https?://bitbucket\.org/{re.escape(workspace)}/{re.escape(slug)}/pull-requests/(\d+)(?![\w-])",
            re.IGNORECASE,
        )
        body = full_url.sub(lambda m: pull_request_url(workspace, slug, int(m.group(1)), self.web_base_url), body)

        # Only bare "#12" tokens; skips URL fragments, HTML entities and existing "[#12]" links
        short_ref = re.compile(r"(?<![\w\[/#&])#(\d+)\b")
        return short_ref.sub(
            lambda m: f"[#{m.group(1)}]({pull_request_url(workspace, slug, int(m.group(1)), self.web_base_url)})",
            body,
        )

    def get_users(self, workspace: str) -> list[WorkspaceMember]:
        """Fetch workspace members.

        Best-effort: any API failure is logged and an empty list is returned so
        the caller can substitute a synthetic workspace user.
        """
        members: list[WorkspaceMember] = []
        try:
            for raw in self.paginate(f"workspaces/{workspace}/members", {"pagelen": MEMBER_PAGE_SIZE}):
                user = raw.get("user") or {}
                login = account_login(user)
                if not login:
                    continue
                members.append(
                    WorkspaceMember(
                        login=login,
                        display_name=user.get("display_name") or "",
                        nickname=user.get("nickname") or "",
                    )
                )
        except APIError as e:
            self._log.warning(f"Failed to fetch members of workspace {workspace}: {e}")
            return []

        return members


def account_login(account: dict[str, Any] | None) -> str:
    """Stable login for a Bitbucket account: the UUID without braces, else the nickname."""
    if not account:
        return ""
    uuid = (account.get("uuid") or "").strip("{}")
    return uuid or account.get("nickname") or account.get("account_id") or ""
