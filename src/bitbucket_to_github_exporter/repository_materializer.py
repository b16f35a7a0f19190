"""Materialize the exported repository as a bare git mirror.

The mirror is cloned into a temporary sibling directory, its default branch
is reconciled and validated there, and only then is it renamed into
``repositories/<workspace>/<slug>.git``. A failed or interrupted clone never
touches a previously exported mirror.

If mirroring fails for any reason, an empty bare repository whose HEAD points
at a synthetic ``main`` branch is created instead, so every export contains a
repository the importer can open.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import APIError, CloneError, InvalidReferenceError, MaterializationError
from .git_utils import (
    EMPTY_TREE_SHA,
    _inject_credentials,
    _sanitize_error,
    resolve_default_branch,
    run_git,
    validate_branch_name,
)
from .urls import DEFAULT_WEB_BASE_URL, archive_git_url, canonical_clone_url

if TYPE_CHECKING:
    from .bitbucket_client import BitbucketClient
    from .config import Credentials
    from .models import SourceRepository

logger: logging.Logger = logging.getLogger(__name__)

FALLBACK_BRANCH = "main"
LAST_SYNC_FORMAT = "%Y-%m-%dT%H:%M:%S"

_SKELETON_DIRS = ("objects/info", "objects/pack", "refs/heads", "refs/tags", "hooks", "info")


@dataclass
class MaterializedRepository:
    """Outcome of materializing the git repository."""

    path: Path
    default_branch: str
    git_url: str
    is_empty: bool = False  # True when the empty-repository fallback was used
    error: str | None = None  # Why mirroring failed, if it did


class RepositoryMaterializer:
    """Clones the source repository into the export directory."""

    def __init__(
        self,
        output_dir: Path,
        credentials: Credentials | None = None,
        *,
        client: BitbucketClient | None = None,
        clone_base_url: str = DEFAULT_WEB_BASE_URL,
    ) -> None:
        self.output_dir = output_dir
        self.credentials = credentials
        self.client = client
        self.clone_base_url = clone_base_url.rstrip("/")

    def repository_path(self, workspace: str, slug: str) -> Path:
        return self.output_dir / "repositories" / workspace / f"{slug}.git"

    def materialize(
        self,
        workspace: str,
        slug: str,
        *,
        repository: SourceRepository | None = None,
        clone_url: str | None = None,
    ) -> MaterializedRepository:
        """Mirror the repository, falling back to an empty bare repository on failure.

        Args:
            workspace: Workspace slug
            slug: Repository slug
            repository: Already fetched metadata; fetched through the client if None
            clone_url: Source URL to clone (defaults to the canonical HTTPS URL)

        Returns:
            MaterializedRepository describing the resolved default branch

        Raises:
            MaterializationError: If not even the empty fallback repository can be created
        """
        declared = self._declared_branch(workspace, slug, repository)
        path = self.repository_path(workspace, slug)

        try:
            branch = self.clone_repository(workspace, slug, declared, clone_url=clone_url)
            result = MaterializedRepository(path=path, default_branch=branch, git_url=archive_git_url(workspace, slug))
        except (CloneError, InvalidReferenceError, OSError) as e:
            logger.warning(f"Failed to mirror {workspace}/{slug}, creating empty repository instead: {e}")
            _ = self.create_empty_repository(workspace, slug)
            result = MaterializedRepository(
                path=path,
                default_branch=FALLBACK_BRANCH,
                git_url=archive_git_url(workspace, slug),
                is_empty=True,
                error=str(e),
            )

        self.write_info_files(workspace, slug)
        return result

    def _declared_branch(self, workspace: str, slug: str, repository: SourceRepository | None) -> str:
        if repository is None and self.client is not None:
            try:
                repository = self.client.get_repository(workspace, slug)
            except APIError as e:
                logger.warning(f"Could not read repository details, assuming default branch {FALLBACK_BRANCH!r}: {e}")

        if repository is not None and repository.main_branch:
            logger.info(f"Declared default branch: {repository.main_branch}")
            return repository.main_branch
        return FALLBACK_BRANCH

    def clone_repository(self, workspace: str, slug: str, declared_branch: str, *, clone_url: str | None = None) -> str:
        """Mirror-clone the repository into its final location.

        Args:
            workspace: Workspace slug
            slug: Repository slug
            declared_branch: Default branch reported by the API
            clone_url: Source URL (defaults to the canonical HTTPS URL with credentials injected)

        Returns:
            The default branch HEAD now points at

        Raises:
            CloneError: If git cannot clone the source
            InvalidReferenceError: If the declared or resolved branch name is unsafe
        """
        # Reject hash-like names before anything is written
        validate_branch_name(declared_branch)

        secrets = self.credentials.secrets() if self.credentials else []
        git_credentials = self.credentials.git_credentials() if self.credentials else None
        source_url = clone_url or canonical_clone_url(workspace, slug, self.clone_base_url)
        source_url = _inject_credentials(source_url, git_credentials)

        final_path = self.repository_path(workspace, slug)
        final_path.parent.mkdir(parents=True, exist_ok=True)
        self._remove_stale_clones(final_path.parent, slug)
        temp_path = Path(tempfile.mkdtemp(prefix=f".{slug}.git.", suffix=".tmp", dir=final_path.parent))

        logger.info(f"Cloning {workspace}/{slug} into {final_path}")
        try:
            result = run_git(["clone", "--mirror", source_url, str(temp_path)])
            if result.returncode != 0:
                msg = f"Failed to clone repository: {_sanitize_error(result.stderr.strip(), secrets)}"
                raise CloneError(msg)

            origin = canonical_clone_url(workspace, slug, self.clone_base_url)
            remote = run_git(["remote", "set-url", "origin", origin], cwd=temp_path)
            if remote.returncode != 0:
                logger.warning(f"Failed to reset origin URL: {_sanitize_error(remote.stderr.strip(), secrets)}")

            branch = resolve_default_branch(temp_path, declared_branch)
            validate_branch_name(branch)
            self._point_head(temp_path, branch)

            if final_path.exists():
                logger.debug(f"Removing stale repository at {final_path}")
                shutil.rmtree(final_path)
            _ = temp_path.rename(final_path)
        finally:
            if temp_path.exists():
                shutil.rmtree(temp_path, ignore_errors=True)

        logger.info(f"Repository mirrored with default branch {branch!r}")
        return branch

    @staticmethod
    def _remove_stale_clones(parent: Path, slug: str) -> None:
        """Delete temporary clones left behind by an interrupted earlier run."""
        for stale in parent.glob(f".{slug}.git.*.tmp"):
            logger.debug(f"Removing leftover clone {stale}")
            shutil.rmtree(stale, ignore_errors=True)

    @staticmethod
    def _point_head(repo_path: Path, branch: str) -> None:
        """Point HEAD at ``branch``, writing a loose ref file if the mirror only has packed refs."""
        _ = (repo_path / "HEAD").write_text(f"ref: refs/heads/{branch}\n")

        ref_file = repo_path / "refs" / "heads" / branch
        if ref_file.exists():
            return

        result = run_git(["rev-parse", "HEAD"], cwd=repo_path)
        sha = result.stdout.strip()
        if result.returncode != 0 or not sha:
            logger.warning(f"Could not resolve a commit for branch {branch!r}; HEAD points at a missing ref")
            return
        ref_file.parent.mkdir(parents=True, exist_ok=True)
        _ = ref_file.write_text(f"{sha}\n")

    def create_empty_repository(self, workspace: str, slug: str) -> Path:
        """Create an empty bare repository whose ``main`` branch holds the empty tree.

        Uses ``git init --bare`` and builds the directory skeleton by hand if git
        is unavailable or fails.

        Raises:
            MaterializationError: If the repository cannot be written
        """
        repo_path = self.repository_path(workspace, slug)
        origin = canonical_clone_url(workspace, slug, self.clone_base_url)

        try:
            if repo_path.exists():
                shutil.rmtree(repo_path)
            repo_path.parent.mkdir(parents=True, exist_ok=True)

            initialized = False
            try:
                result = run_git(["init", "--bare", str(repo_path)])
                initialized = result.returncode == 0
                if not initialized:
                    logger.warning(f"git init --bare failed, building repository by hand: {result.stderr.strip()}")
            except OSError as e:
                logger.warning(f"git unavailable, building repository by hand: {e}")

            if not initialized:
                for subdir in _SKELETON_DIRS:
                    (repo_path / subdir).mkdir(parents=True, exist_ok=True)

            heads = repo_path / "refs" / "heads"
            heads.mkdir(parents=True, exist_ok=True)
            _ = (heads / FALLBACK_BRANCH).write_text(f"{EMPTY_TREE_SHA}\n")
            _ = (repo_path / "HEAD").write_text(f"ref: refs/heads/{FALLBACK_BRANCH}\n")
            _ = (repo_path / "config").write_text(
                "[core]\n"
                "\trepositoryformatversion = 0\n"
                "\tfilemode = true\n"
                "\tbare = true\n"
                '[remote "origin"]\n'
                f"\turl = {origin}\n"
                "\tfetch = +refs/*:refs/*\n"
                "\tmirror = true\n"
            )
            _ = (repo_path / "description").write_text(f"Empty export of {workspace}/{slug}\n")
        except OSError as e:
            msg = f"failed to create empty repository at {repo_path}: {e}"
            raise MaterializationError(msg) from e

        logger.info(f"Created empty repository at {repo_path}")
        return repo_path

    def write_info_files(self, workspace: str, slug: str) -> None:
        """Write ``info/nwo`` and ``info/last-sync`` next to the repository data.

        Raises:
            MaterializationError: If the files cannot be written
        """
        info_dir = self.repository_path(workspace, slug) / "info"
        try:
            info_dir.mkdir(parents=True, exist_ok=True)
            _ = (info_dir / "nwo").write_text(f"{workspace}/{slug}\n")
            _ = (info_dir / "last-sync").write_text(datetime.now(UTC).strftime(LAST_SYNC_FORMAT))
        except OSError as e:
            msg = f"failed to write repository info files in {info_dir}: {e}"
            raise MaterializationError(msg) from e
