"""Tests for credential selection and export options."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import pytest

from bitbucket_to_github_exporter.config import (
    DEFAULT_API_URL,
    Credentials,
    ExportOptions,
    default_output_dir,
    normalize_api_url,
    parse_date_floor,
)
from bitbucket_to_github_exporter.exceptions import ConfigurationError

_ENV_VARS = (
    "BITBUCKET_ACCESS_TOKEN",
    "BITBUCKET_API_TOKEN",
    "BITBUCKET_EMAIL",
    "BITBUCKET_USERNAME",
    "BITBUCKET_APP_PASSWORD",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.mark.unit
class TestCredentialsValidate:
    @pytest.mark.parametrize(
        "credentials",
        [
            Credentials(access_token="tok"),
            Credentials(api_token="tok"),
            Credentials(api_token="tok", email="me@example.com"),
            Credentials(username="bob", app_password="pw"),
        ],
    )
    def test_single_method_is_valid(self, credentials: Credentials) -> None:
        credentials.validate()

    def test_no_credentials(self) -> None:
        with pytest.raises(ConfigurationError, match="authentication credentials required"):
            Credentials().validate()

    def test_empty_strings_count_as_missing(self) -> None:
        with pytest.raises(ConfigurationError, match="authentication credentials required"):
            Credentials(access_token="", api_token="").validate()

    @pytest.mark.parametrize(
        "credentials",
        [
            Credentials(access_token="a", api_token="b"),
            Credentials(access_token="a", username="bob", app_password="pw"),
            Credentials(api_token="a", app_password="pw"),
        ],
    )
    def test_mixed_methods_rejected(self, credentials: Credentials) -> None:
        with pytest.raises(ConfigurationError, match="mixed authentication methods"):
            credentials.validate()

    @pytest.mark.parametrize("credentials", [Credentials(username="bob"), Credentials(app_password="pw")])
    def test_incomplete_app_password(self, credentials: Credentials) -> None:
        with pytest.raises(ConfigurationError, match="must be provided together"):
            credentials.validate()

    def test_email_without_api_token(self) -> None:
        with pytest.raises(ConfigurationError, match="email is only used together with an API token"):
            Credentials(access_token="tok", email="me@example.com").validate()

    def test_app_password_logs_deprecation(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            Credentials(username="bob", app_password="pw").validate()
        assert "deprecated" in caplog.text


@pytest.mark.unit
class TestCredentialsFromEnv:
    def test_environment_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BITBUCKET_API_TOKEN", "env-token")
        monkeypatch.setenv("BITBUCKET_EMAIL", "env@example.com")

        credentials = Credentials.from_env()

        assert credentials.method == "api_token"
        assert credentials.email == "env@example.com"

    def test_explicit_values_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BITBUCKET_ACCESS_TOKEN", "env-token")

        assert Credentials.from_env(access_token="cli-token").access_token == "cli-token"


@pytest.mark.unit
class TestCredentialsDescribe:
    @pytest.mark.parametrize(
        ("credentials", "expected"),
        [
            (Credentials(access_token="tok"), "workspace access token"),
            (Credentials(api_token="tok", email="me@example.com"), "API token with email"),
            (Credentials(api_token="tok"), "API token with x-bitbucket-api-token-auth"),
            (Credentials(username="bob", app_password="pw"), "username and app password"),
            (Credentials(), "no authentication"),
        ],
    )
    def test_describe(self, credentials: Credentials, expected: str) -> None:
        assert credentials.describe() == expected

    def test_secrets_not_in_repr_or_description(self) -> None:
        credentials = Credentials(username="bob", app_password="hunter2")
        assert "hunter2" not in repr(credentials)
        assert "hunter2" not in credentials.describe()

    @pytest.mark.parametrize(
        ("credentials", "expected"),
        [
            (Credentials(access_token="tok"), ("x-token-auth", "tok")),
            (Credentials(api_token="tok", email="me@example.com"), ("x-bitbucket-api-token-auth", "tok")),
            (Credentials(username="bob", app_password="pw"), ("bob", "pw")),
            (Credentials(), None),
        ],
    )
    def test_git_credentials(self, credentials: Credentials, expected: tuple[str, str] | None) -> None:
        assert credentials.git_credentials() == expected


@pytest.mark.unit
class TestOptions:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            (None, DEFAULT_API_URL),
            ("https://api.bitbucket.org", "https://api.bitbucket.org/2.0"),
            ("https://api.bitbucket.org/2.0/", "https://api.bitbucket.org/2.0"),
            ("http://localhost:8080/api/", "http://localhost:8080/api"),
        ],
    )
    def test_normalize_api_url(self, url: str | None, expected: str) -> None:
        assert normalize_api_url(url) == expected

    def test_parse_date_floor(self) -> None:
        assert parse_date_floor("2023-01-01") == datetime(2023, 1, 1)  # noqa: DTZ001
        assert parse_date_floor(None) is None

    def test_invalid_date_floor(self) -> None:
        with pytest.raises(ConfigurationError, match="expected YYYY-MM-DD"):
            ExportOptions(output_dir=Path("out"), prs_from_date="01/02/2023").validate()

    def test_default_output_dir(self) -> None:
        path = default_output_dir(datetime(2024, 2, 3, 4, 5, 6))  # noqa: DTZ001
        assert path == Path("./bitbucket-export-20240203-040506")
