"""
Command-line interface for the Bitbucket to GitHub export tool.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from .bitbucket_client import BitbucketClient
from .config import DEFAULT_API_URL, Credentials, ExportOptions, default_output_dir, normalize_api_url
from .exceptions import ConfigurationError, ExportError
from .exporter import BitbucketExporter
from .utils import setup_logging

if TYPE_CHECKING:
    from .exporter import ExportResult

logger: logging.Logger = logging.getLogger(__name__)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Export a Bitbucket Cloud repository to a GitHub migration archive",
        epilog=(
            "Credentials may also be provided via BITBUCKET_ACCESS_TOKEN, BITBUCKET_API_TOKEN, "
            "BITBUCKET_EMAIL, BITBUCKET_USERNAME and BITBUCKET_APP_PASSWORD."
        ),
    )

    _ = parser.add_argument("--workspace", "-w", required=True, help="Bitbucket workspace slug")
    _ = parser.add_argument("--repo", "-r", required=True, help="Repository slug")
    _ = parser.add_argument(
        "--output", "-o", help="Output directory (default: ./bitbucket-export-YYYYMMDD-HHMMSS)"
    )

    auth = parser.add_argument_group("authentication (use exactly one method)")
    _ = auth.add_argument("--access-token", "-t", help="Workspace access token")
    _ = auth.add_argument("--api-token", help="Atlassian API token")
    _ = auth.add_argument("--email", "-e", help="Account email used with --api-token")
    _ = auth.add_argument("--user", "-u", help="Bitbucket username (with --app-password)")
    _ = auth.add_argument("--app-password", "-p", help="Bitbucket app password (deprecated)")

    _ = parser.add_argument(
        "--bbc-api-url", "-a", default=DEFAULT_API_URL, help=f"Bitbucket API base URL (default: {DEFAULT_API_URL})"
    )
    _ = parser.add_argument("--open-prs-only", action="store_true", help="Only export open pull requests")
    _ = parser.add_argument(
        "--prs-from-date", help="Only export pull requests created on or after this date (YYYY-MM-DD)"
    )
    _ = parser.add_argument("--clone-url", help="Clone git data from this URL or path instead of Bitbucket")
    _ = parser.add_argument("--no-archive", action="store_true", help="Do not pack the export into a .tar.gz")
    _ = parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    return parser.parse_args(argv)


def _print_summary(result: ExportResult) -> None:
    """Print a human-readable summary of an export."""
    stats = result.stats
    print(f"Export written to {result.output_dir}")
    if result.archive_path:
        print(f"Archive: {result.archive_path}")
    branch_note = " (empty repository fallback)" if result.used_empty_repository else ""
    print(f"Default branch: {result.default_branch}{branch_note}")
    print(
        f"Pull requests: {stats.pull_requests}, comments: {stats.issue_comments}, "
        f"review comments: {stats.review_comments}, threads: {stats.review_threads}, "
        f"reviews: {stats.reviews}, users: {stats.users}"
    )

    validation = result.validation
    if validation.short_shas:
        print(f"Unresolved short SHAs: {len(validation.short_shas)}")
    for problem in [*validation.invalid_refs, *validation.errors]:
        print(f"  - {problem}")
    if stats.warnings:
        print(f"Warnings ({len(stats.warnings)}):")
        for warning in stats.warnings:
            print(f"  - {warning}")


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)

    verbose: bool = getattr(args, "verbose", False)
    setup_logging(verbose=verbose)

    try:
        credentials = Credentials.from_env(
            access_token=args.access_token,
            api_token=args.api_token,
            email=args.email,
            username=args.user,
            app_password=args.app_password,
        )
        credentials.validate()

        options = ExportOptions(
            output_dir=Path(args.output) if args.output else default_output_dir(),
            open_prs_only=args.open_prs_only,
            prs_from_date=args.prs_from_date,
            create_archive=not args.no_archive,
            clone_url=args.clone_url,
        )
        options.validate()

        client = BitbucketClient(credentials, normalize_api_url(args.bbc_api_url))
        logger.info(f"Authenticating with {credentials.describe()}")

        result = BitbucketExporter(client, options).export(args.workspace, args.repo)

    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")  # noqa: TRY400
        sys.exit(1)
    except ExportError:
        logger.exception("Export failed")
        sys.exit(1)
    except Exception:
        logger.exception("Unexpected error during export")
        sys.exit(1)

    _print_summary(result)
    if not result.validation.success:
        print(f"Exported {args.workspace}/{args.repo} with validation errors")
        sys.exit(1)
    print(f"Successfully exported {args.workspace}/{args.repo}")
    sys.exit(0)
