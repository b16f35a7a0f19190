"""Credential selection and export options."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from .exceptions import ConfigurationError
from .urls import DEFAULT_WEB_BASE_URL

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.bitbucket.org/2.0"

# Username Bitbucket expects for API tokens when no account email is supplied
API_TOKEN_USERNAME = "x-bitbucket-api-token-auth"
# Username Bitbucket expects for workspace/repository access tokens in git URLs
ACCESS_TOKEN_USERNAME = "x-token-auth"

AuthMethod = Literal["access_token", "api_token", "app_password", "none"]

ENV_ACCESS_TOKEN = "BITBUCKET_ACCESS_TOKEN"
ENV_API_TOKEN = "BITBUCKET_API_TOKEN"
ENV_EMAIL = "BITBUCKET_EMAIL"
ENV_USERNAME = "BITBUCKET_USERNAME"
ENV_APP_PASSWORD = "BITBUCKET_APP_PASSWORD"


@dataclass
class Credentials:
    """Bitbucket credentials. Exactly one authentication method must be configured.

    Supported methods:
        - Workspace access token (sent as a bearer token)
        - API token, optionally with the account email (HTTP basic auth)
        - Username and app password (HTTP basic auth, deprecated by Bitbucket)
    """

    access_token: str | None = None
    api_token: str | None = None
    email: str | None = None
    username: str | None = None
    app_password: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        # Empty strings from the CLI or environment mean "not set"
        for name in ("access_token", "api_token", "email", "username", "app_password"):
            if not getattr(self, name):
                setattr(self, name, None)

    @classmethod
    def from_env(
        cls,
        *,
        access_token: str | None = None,
        api_token: str | None = None,
        email: str | None = None,
        username: str | None = None,
        app_password: str | None = None,
    ) -> Credentials:
        """Build credentials from explicit values, falling back to ``BITBUCKET_*`` environment variables."""
        return cls(
            access_token=access_token or os.environ.get(ENV_ACCESS_TOKEN),
            api_token=api_token or os.environ.get(ENV_API_TOKEN),
            email=email or os.environ.get(ENV_EMAIL),
            username=username or os.environ.get(ENV_USERNAME),
            app_password=app_password or os.environ.get(ENV_APP_PASSWORD),
        )

    @property
    def method(self) -> AuthMethod:
        if self.access_token:
            return "access_token"
        if self.api_token:
            return "api_token"
        if self.username and self.app_password:
            return "app_password"
        return "none"

    def validate(self) -> None:
        """Check that exactly one complete authentication method is configured.

        Raises:
            ConfigurationError: If no method, an incomplete method, or more than one method is configured
        """
        has_app_password = bool(self.username or self.app_password)
        selected = sum([bool(self.access_token), bool(self.api_token), has_app_password])

        if selected == 0:
            msg = (
                "authentication credentials required: provide a workspace access token, "
                "an API token (with optional email), or a username and app password"
            )
            raise ConfigurationError(msg)
        if selected > 1:
            msg = (
                "mixed authentication methods: use only one of workspace access token, "
                "API token, or username and app password"
            )
            raise ConfigurationError(msg)
        if has_app_password and not (self.username and self.app_password):
            msg = "username and app password must be provided together"
            raise ConfigurationError(msg)
        if self.email and not self.api_token:
            msg = "email is only used together with an API token"
            raise ConfigurationError(msg)

        if self.method == "app_password":
            logger.warning(
                "App passwords are deprecated by Bitbucket; consider switching to an API token or workspace access token"
            )

    def describe(self) -> str:
        """Human-readable name of the configured authentication method (never includes secrets)."""
        match self.method:
            case "access_token":
                return "workspace access token"
            case "api_token":
                return "API token with email" if self.email else f"API token with {API_TOKEN_USERNAME}"
            case "app_password":
                return "username and app password"
            case _:
                return "no authentication"

    def git_credentials(self) -> tuple[str, str] | None:
        """Username and secret to embed in an HTTPS clone URL, or None without credentials."""
        match self.method:
            case "access_token":
                return ACCESS_TOKEN_USERNAME, self.access_token or ""
            case "api_token":
                return API_TOKEN_USERNAME, self.api_token or ""
            case "app_password":
                return self.username or "", self.app_password or ""
            case _:
                return None

    def secrets(self) -> list[str | None]:
        """Values that must be redacted from any logged output."""
        return [self.access_token, self.api_token, self.app_password]


def normalize_api_url(url: str | None) -> str:
    """Normalize the Bitbucket API base URL.

    Strips trailing slashes and appends ``/2.0`` for api.bitbucket.org when the
    version segment is missing.
    """
    if not url:
        return DEFAULT_API_URL

    normalized = url.rstrip("/")
    if urlparse(normalized).hostname == "api.bitbucket.org" and not normalized.endswith("/2.0"):
        normalized += "/2.0"
    return normalized


def parse_date_floor(value: str | None) -> datetime | None:
    """Parse a ``YYYY-MM-DD`` creation-date floor.

    Raises:
        ConfigurationError: If the value is not a valid date
    """
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")  # noqa: DTZ007
    except ValueError as e:
        msg = f"Invalid date {value!r}: expected YYYY-MM-DD"
        raise ConfigurationError(msg) from e


def default_output_dir(now: datetime | None = None) -> Path:
    """Timestamped output directory in the current working directory."""
    now = now or datetime.now()  # noqa: DTZ005
    return Path(f"./bitbucket-export-{now.strftime('%Y%m%d-%H%M%S')}")


@dataclass
class ExportOptions:
    """Options controlling what is exported and where."""

    output_dir: Path = field(default_factory=default_output_dir)
    open_prs_only: bool = False
    prs_from_date: str | None = None  # YYYY-MM-DD, inclusive
    create_archive: bool = True
    web_base_url: str = DEFAULT_WEB_BASE_URL
    clone_base_url: str = DEFAULT_WEB_BASE_URL
    clone_url: str | None = None  # Overrides the git source, e.g. a local mirror path

    def validate(self) -> None:
        """Raises ConfigurationError for an invalid date floor."""
        _ = parse_date_floor(self.prs_from_date)
