"""Git repository operations using git CLI."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from typing import TYPE_CHECKING
from urllib.parse import quote

from .exceptions import InvalidReferenceError

if TYPE_CHECKING:
    from pathlib import Path

logger: logging.Logger = logging.getLogger(__name__)

# Tree object of an empty commit; git knows it without it being stored
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

DEFAULT_BRANCH_CANDIDATES = ("main", "master", "develop", "development")

_HEX_SHA = re.compile(r"[0-9a-fA-F]{40}")
_DISALLOWED_SUBSTRINGS = (" ", "~", "^", ":", "?", "*", "[", "\\", "..", "@{", "//")


def validate_branch_name(name: str) -> None:
    """Check that a branch name can be written to a ref file.

    Raises:
        InvalidReferenceError: If the name is empty, looks like a full commit SHA,
            or contains sequences git does not allow in ref names
    """
    if not name:
        msg = "invalid branch reference: empty reference"
        raise InvalidReferenceError(msg)
    if _HEX_SHA.fullmatch(name):
        msg = f"invalid branch reference: ambiguous reference {name!r} (exactly 40 hex characters)"
        raise InvalidReferenceError(msg)
    for bad in _DISALLOWED_SUBSTRINGS:
        if bad in name:
            msg = f"invalid branch reference: {name!r} contains {bad!r}"
            raise InvalidReferenceError(msg)
    if name.startswith(".") or name.endswith("."):
        msg = f"invalid branch reference: {name!r} cannot start or end with '.'"
        raise InvalidReferenceError(msg)
    if name.startswith("/") or name.endswith("/"):
        msg = f"invalid branch reference: {name!r} cannot start or end with '/'"
        raise InvalidReferenceError(msg)
    if name.endswith(".lock"):
        msg = f"invalid branch reference: {name!r} cannot end with '.lock'"
        raise InvalidReferenceError(msg)


def is_valid_branch_name(name: str) -> bool:
    try:
        validate_branch_name(name)
    except InvalidReferenceError:
        return False
    return True


def _inject_credentials(url: str, credentials: tuple[str, str] | None) -> str:
    """Inject username and secret into an HTTPS URL.

    Args:
        url: The URL to modify
        credentials: (username, secret) pair; None returns the original URL

    Returns:
        URL with credentials injected, or original if not HTTPS or no credentials
    """
    if not credentials or not url.startswith("https://"):
        return url
    username, secret = credentials
    return url.replace("https://", f"https://{quote(username, safe='')}:{quote(secret, safe='')}@", 1)


def _sanitize_error(error: str, secrets: list[str | None]) -> str:
    """Remove secrets from error message to prevent leakage.

    Both the raw and the URL-quoted form of each secret are redacted.
    """
    result = error
    for secret in secrets:
        if secret:
            for form in {secret, quote(secret, safe="")}:
                result = result.replace(form, "***TOKEN***")
    return result


def git_environment() -> dict[str, str]:
    """Environment for git subprocesses that must never prompt for input."""
    return os.environ.copy() | {"GIT_TERMINAL_PROMPT": "0"}


def run_git(args: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    """Run a git command without raising on non-zero exit."""
    return subprocess.run(  # noqa: S603
        ["git", *args],  # noqa: S607
        cwd=cwd,
        check=False,
        capture_output=True,
        text=True,
        env=git_environment(),
    )


def branch_exists(repo_path: Path, branch: str) -> bool:
    """True if ``refs/heads/<branch>`` resolves in the repository."""
    result = run_git(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=repo_path)
    return result.returncode == 0


def most_recent_branch(repo_path: Path) -> str | None:
    """Branch whose tip has the most recent committer date, or None for a repository without branches."""
    result = run_git(
        ["for-each-ref", "--sort=-committerdate", "--count=1", "--format=%(refname:short)", "refs/heads/"],
        cwd=repo_path,
    )
    if result.returncode != 0:
        logger.debug(f"git for-each-ref failed: {result.stderr.strip()}")
        return None
    return result.stdout.strip() or None


def resolve_default_branch(repo_path: Path, declared: str) -> str:
    """Pick the branch HEAD should point at.

    Tries, in order: the declared branch, the most recently committed branch,
    and the first existing of the common default branch names. If none exists
    the declared name is returned unchanged.
    """
    if branch_exists(repo_path, declared):
        return declared

    recent = most_recent_branch(repo_path)
    if recent:
        logger.warning(f"Default branch {declared!r} not found in mirror, using most recent branch {recent!r}")
        return recent

    for candidate in DEFAULT_BRANCH_CANDIDATES:
        if branch_exists(repo_path, candidate):
            logger.warning(f"Default branch {declared!r} not found in mirror, using {candidate!r}")
            return candidate

    logger.warning(f"No branch found in mirror, keeping declared default branch {declared!r}")
    return declared
