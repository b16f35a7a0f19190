"""Rebuild review threads and reviews from flat inline comments.

Bitbucket models a pull request conversation as a flat list of comments where
replies point at their parent. The archive expects three levels instead:

    review ──► review comments ◄── thread

- A **thread** collects every comment anchored to the same (path, position) of
  one pull request, or sharing an explicit source thread id.
- A **review** is one root comment plus all replies below it. Replies never
  open a review of their own.

Reconstruction is a pure function of its input: the same comments always
produce the same thread and review identifiers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from .archive_models import (
    REVIEW_STATE_COMMENTED,
    ReviewCommentRecord,
    ReviewRecord,
    ReviewThreadRecord,
)
from .urls import (
    DEFAULT_WEB_BASE_URL,
    pull_request_url,
    review_comment_url,
    review_thread_url,
    review_url,
    user_url,
)
from .utils import format_date_to_z

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .models import Comment, PullRequest

logger: logging.Logger = logging.getLogger(__name__)

ThreadKey = tuple[str, ...]

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass
class ReconstructedReviews:
    """Archive records derived from the inline comments of one pull request."""

    review_comments: list[ReviewCommentRecord] = field(default_factory=list)
    threads: list[ReviewThreadRecord] = field(default_factory=list)
    reviews: list[ReviewRecord] = field(default_factory=list)
    # Comments without a position; exported as plain pull request comments
    plain_comments: list[Comment] = field(default_factory=list)


def _sort_key(comment: Comment) -> tuple[datetime, int]:
    return (comment.created_at or _EPOCH, comment.id)


class ThreadReconstructor:
    """Groups inline comments of a pull request into threads and reviews."""

    def __init__(self, workspace: str, slug: str, *, web_base_url: str = DEFAULT_WEB_BASE_URL) -> None:
        self.workspace = workspace
        self.slug = slug
        self.web_base_url = web_base_url

    def reconstruct(self, pull_request: PullRequest, comments: Iterable[Comment]) -> ReconstructedReviews:
        """Build threads, reviews and review comments for one pull request.

        Args:
            pull_request: The pull request the comments belong to
            comments: Inline comments of that pull request

        Returns:
            ReconstructedReviews; comments without a position are returned
            unchanged in ``plain_comments``
        """
        result = ReconstructedReviews()

        positioned: list[Comment] = []
        for comment in comments:
            if comment.inline is not None and comment.position is not None:
                positioned.append(comment)
            else:
                result.plain_comments.append(comment)

        if not positioned:
            return result

        by_id = {c.id: c for c in positioned}
        roots = {c.id: self._find_root(c, by_id) for c in positioned}
        ordered = sorted(positioned, key=_sort_key)

        # Dicts keep insertion order, so groups are ordered by their earliest member
        threads: dict[ThreadKey, list[Comment]] = {}
        reviews: dict[int, list[Comment]] = {}
        for comment in ordered:
            root = roots[comment.id]
            threads.setdefault(self._thread_key(pull_request.id, root), []).append(comment)
            reviews.setdefault(root.id, []).append(comment)

        thread_urls: dict[ThreadKey, str] = {}
        records: dict[int, ReviewCommentRecord] = {}
        for key, members in threads.items():
            thread_urls[key] = self._thread_url(pull_request.id, key, members[0])
        for comment in ordered:
            root = roots[comment.id]
            records[comment.id] = self._build_comment(
                pull_request, comment, root, thread_urls[self._thread_key(pull_request.id, root)]
            )

        result.review_comments = [records[c.id] for c in ordered]
        result.threads = [
            self._build_thread(thread_urls[key], members, [records[c.id] for c in members])
            for key, members in threads.items()
        ]
        result.reviews = [
            self._build_review(
                pull_request, records[roots[members[0].id].id], members, [records[c.id] for c in members]
            )
            for members in reviews.values()
        ]

        logger.debug(
            f"PR #{pull_request.id}: {len(positioned)} inline comments -> "
            f"{len(result.threads)} threads, {len(result.reviews)} reviews"
        )
        return result

    def _find_root(self, comment: Comment, by_id: dict[int, Comment]) -> Comment:
        """Follow parent references up to the root comment.

        A reply whose parent is missing from the fetched set (or that sits in a
        parent cycle) becomes a root itself.
        """
        current = comment
        seen = {comment.id}
        while current.is_reply:
            parent = by_id.get(current.parent_id)  # type: ignore[arg-type]
            if parent is None:
                logger.debug(
                    f"Comment {current.id} replies to unknown comment {current.parent_id}; treating it as a root"
                )
                break
            if parent.id in seen:
                logger.debug(f"Parent cycle detected at comment {parent.id}; treating {current.id} as a root")
                break
            seen.add(parent.id)
            current = parent
        return current

    @staticmethod
    def _thread_key(pull_request_id: int, root: Comment) -> ThreadKey:
        if root.thread_id:
            return ("thread", root.thread_id)
        # position is non-None for every comment that reaches grouping
        path = root.inline.path if root.inline else ""
        return ("position", str(pull_request_id), path, str(root.position))

    def _thread_url(self, pull_request_id: int, key: ThreadKey, earliest: Comment) -> str:
        thread_id = key[1] if key[0] == "thread" else str(earliest.id)
        return review_thread_url(self.workspace, self.slug, pull_request_id, thread_id, self.web_base_url)

    def _user(self, login: str) -> str:
        return user_url(login or self.workspace, self.web_base_url)

    def _build_comment(
        self, pull_request: PullRequest, comment: Comment, root: Comment, thread_url: str
    ) -> ReviewCommentRecord:
        position = comment.position or 1
        path = comment.inline.path if comment.inline else ""
        head_sha = pull_request.source.commit_sha
        # A reply points at its direct parent; an orphan (its own root) has no parent to point at
        in_reply_to = str(comment.parent_id) if comment.parent_id is not None and root.id != comment.id else None

        return ReviewCommentRecord(
            url=review_comment_url(self.workspace, self.slug, pull_request.id, comment.id, self.web_base_url),
            pull_request=pull_request_url(self.workspace, self.slug, pull_request.id, self.web_base_url),
            pull_request_review=review_url(self.workspace, self.slug, pull_request.id, root.id, self.web_base_url),
            pull_request_review_thread=thread_url,
            user=self._user(comment.author),
            body=comment.body,
            path=path,
            position=position,
            original_position=position,
            commit_id=head_sha,
            original_commit_id=head_sha,
            diff_hunk=f"@@ -0,0 +1,{position} @@\n+{comment.body}",
            in_reply_to=in_reply_to,
            state=REVIEW_STATE_COMMENTED,
            created_at=format_date_to_z(comment.created_at),
            updated_at=format_date_to_z(comment.updated_at or comment.created_at),
        )

    def _build_thread(
        self,
        url: str,
        members: list[Comment],
        records: list[ReviewCommentRecord],
    ) -> ReviewThreadRecord:
        earliest = records[0]
        return ReviewThreadRecord(
            url=url,
            pull_request=earliest.pull_request,
            path=earliest.path,
            position=earliest.position,
            original_position=earliest.original_position or earliest.position,
            commit_id=earliest.commit_id,
            original_commit_id=earliest.original_commit_id,
            diff_hunk=earliest.diff_hunk,
            created_at=format_date_to_z(min((c.created_at for c in members if c.created_at), default=None)),
            comments=records,
        )

    def _build_review(
        self,
        pull_request: PullRequest,
        root: ReviewCommentRecord,
        members: list[Comment],
        records: list[ReviewCommentRecord],
    ) -> ReviewRecord:
        submitted_at = format_date_to_z(min((c.created_at for c in members if c.created_at), default=None))
        return ReviewRecord(
            url=root.pull_request_review,
            pull_request=root.pull_request,
            user=root.user,
            head_sha=pull_request.source.commit_sha,
            state=root.state,
            created_at=submitted_at,
            submitted_at=submitted_at,
            comments=records,
        )
