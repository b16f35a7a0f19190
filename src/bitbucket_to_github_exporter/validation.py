"""Post-write validation of an export directory.

Runs after every JSON document and the git mirror have been written:

- normalizes whitespace in free-text description fields,
- reports commit SHAs that are still abbreviated,
- re-checks the branch names HEAD files point at.

Problems are logged and collected into a report; nothing here aborts an
export, and files that cannot be parsed are left untouched.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .exceptions import InvalidReferenceError
from .git_utils import validate_branch_name
from .utils import collapse_whitespace, is_short_sha, to_unix_path, write_json_atomic

if TYPE_CHECKING:
    from pathlib import Path

logger: logging.Logger = logging.getLogger(__name__)

DESCRIPTION_FILES = ("repositories_000001.json", "organizations_000001.json")

# Document -> fields holding commit SHAs. Dotted names reach into nested objects.
SHA_FIELDS: dict[str, tuple[str, ...]] = {
    "pull_requests_000001.json": ("base.sha", "head.sha", "merge_commit_sha"),
    "pull_request_review_comments_000001.json": ("commit_id", "original_commit_id"),
    "pull_request_review_threads_000001.json": ("commit_id", "original_commit_id"),
    "pull_request_reviews_000001.json": ("head_sha",),
}

_HEAD_REF_PREFIX = "ref: refs/heads/"


@dataclass
class ShortShaFinding:
    file: str
    url: str
    field: str
    sha: str


@dataclass
class ValidationReport:
    """Findings of one validation pass."""

    descriptions_sanitized: int = 0
    short_shas: list[ShortShaFinding] = field(default_factory=list)
    invalid_refs: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.invalid_refs and not self.errors


def _lookup(record: dict[str, Any], dotted: str) -> Any:  # noqa: ANN401
    value: Any = record
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class DataValidator:
    """Sanitizes and checks the files of an export directory."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def validate(self) -> ValidationReport:
        report = ValidationReport()
        self.sanitize_descriptions(report)
        self.check_commit_shas(report)
        self.check_head_refs(report)

        if report.short_shas:
            logger.warning(f"{len(report.short_shas)} commit SHA(s) in the export are not full 40-character SHAs")
        logger.info(
            f"Validation finished: {report.descriptions_sanitized} description(s) sanitized, "
            f"{len(report.invalid_refs)} invalid ref(s), {len(report.errors)} error(s)"
        )
        return report

    def _load(self, name: str, report: ValidationReport) -> list[dict[str, Any]] | None:
        path = self.output_dir / name
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            msg = f"Skipping unreadable {name}: {e}"
            logger.error(msg)
            report.errors.append(msg)
            return None
        if not isinstance(data, list):
            msg = f"Skipping {name}: expected a JSON array"
            logger.error(msg)
            report.errors.append(msg)
            return None
        return [r for r in data if isinstance(r, dict)]

    def sanitize_descriptions(self, report: ValidationReport) -> None:
        """Collapse whitespace runs in ``description`` fields and rewrite changed documents."""
        for name in DESCRIPTION_FILES:
            records = self._load(name, report)
            if records is None:
                continue

            changed = 0
            for record in records:
                description = record.get("description")
                if isinstance(description, str):
                    cleaned = collapse_whitespace(description)
                    if cleaned != description:
                        record["description"] = cleaned
                        changed += 1

            if not changed:
                continue
            try:
                write_json_atomic(self.output_dir / name, records)
            except OSError as e:
                msg = f"Could not rewrite {name}: {e}"
                logger.error(msg)
                report.errors.append(msg)
                continue
            logger.debug(f"Sanitized {changed} description(s) in {name}")
            report.descriptions_sanitized += changed

    def check_commit_shas(self, report: ValidationReport) -> None:
        """Report SHAs that fetch-time resolution could not promote to full length."""
        for name, fields in SHA_FIELDS.items():
            records = self._load(name, report)
            for record in records or []:
                for dotted in fields:
                    sha = _lookup(record, dotted)
                    if isinstance(sha, str) and is_short_sha(sha):
                        url = str(record.get("url", ""))
                        logger.debug(f"Short SHA {sha!r} in {name} ({dotted}) of {url}")
                        report.short_shas.append(ShortShaFinding(file=name, url=url, field=dotted, sha=sha))

    def check_head_refs(self, report: ValidationReport) -> None:
        """Re-check the branch named by each exported repository's HEAD."""
        repositories = self.output_dir / "repositories"
        if not repositories.is_dir():
            return

        for head in sorted(repositories.glob("*/*.git/HEAD")):
            location = to_unix_path(head.relative_to(self.output_dir))
            try:
                content = head.read_text(encoding="utf-8").strip()
            except OSError as e:
                msg = f"Cannot read {location}: {e}"
                logger.error(msg)
                report.errors.append(msg)
                continue

            if not content.startswith(_HEAD_REF_PREFIX):
                # Detached HEAD holding a commit SHA
                continue
            try:
                validate_branch_name(content.removeprefix(_HEAD_REF_PREFIX))
            except InvalidReferenceError as e:
                logger.error(f"{location}: {e}")
                report.invalid_refs.append(f"{location}: {e}")
