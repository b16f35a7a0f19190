"""
Pytest configuration and fixtures.

- Integration tests fail on any WARNING (or worse) logged by the exporter:
  a clean export of a healthy repository must not degrade anywhere.
- Unit and local tests may log warnings freely; many exercise degraded paths.
- Shared helpers build fake API responses and git repositories.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest
import requests
from typing_extensions import override

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from pathlib import Path

_integration_test_warnings: dict[str, list[logging.LogRecord]] = {}


class IntegrationTestWarningHandler(logging.Handler):
    """Collects WARNING and above records emitted while an integration test runs."""

    test_nodeid: str

    def __init__(self, test_nodeid: str) -> None:
        super().__init__(level=logging.WARNING)
        self.test_nodeid = test_nodeid

    @override
    def emit(self, record: logging.LogRecord) -> None:
        _integration_test_warnings.setdefault(self.test_nodeid, []).append(record)


@pytest.fixture(autouse=True)
def fail_on_log_warnings_for_integration_tests(request: pytest.FixtureRequest) -> Generator[None]:
    """Capture logger warnings during integration tests so the report hook can fail them."""
    if request.node.get_closest_marker("integration") is None:
        yield
        return

    test_nodeid = request.node.nodeid
    _integration_test_warnings[test_nodeid] = []
    handler = IntegrationTestWarningHandler(test_nodeid)
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    try:
        yield
    finally:
        root_logger.removeHandler(handler)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[None]) -> Generator[None]:  # type: ignore[misc]
    """Turn a passed integration test into a failure if it logged warnings."""
    outcome = yield
    report = outcome.get_result()

    if call.when == "call" and report.outcome == "passed":
        records = _integration_test_warnings.pop(item.nodeid, [])
        if records:
            lines = [f"  - {r.levelname}: {r.getMessage()} (in {r.name}:{r.lineno})" for r in records]
            report.outcome = "failed"
            report.longrepr = f"Integration test failed: {len(records)} warning(s) detected:\n" + "\n".join(lines)


def make_response(status_code: int = 200, payload: Any = None, text: str | None = None) -> MagicMock:  # noqa: ANN401
    """Fake ``requests.Response`` with the given status and JSON payload."""
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    if text is None:
        text = json.dumps(payload) if payload is not None else ""
    response.text = text
    if payload is None and text:
        response.json.side_effect = requests.JSONDecodeError("Expecting value", text, 0)
    else:
        response.json.return_value = payload
    return response


def page(values: list[dict[str, Any]], next_url: str | None = None) -> dict[str, Any]:
    """One page of a paginated Bitbucket list endpoint."""
    data: dict[str, Any] = {"values": values, "pagelen": len(values)}
    if next_url:
        data["next"] = next_url
    return data


@pytest.fixture
def session() -> requests.Session:
    """Real session whose ``request`` method is a mock, so headers and auth stay inspectable."""
    s = requests.Session()
    s.request = MagicMock()  # type: ignore[method-assign]
    return s


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    """Sleep replacement recording requested delays instead of waiting."""
    delays: list[float] = []

    def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep


def git(args: list[str], cwd: Path) -> str:
    """Run a git command in *cwd* and return stdout."""
    return subprocess.run(  # noqa: S603
        ["git", *args],  # noqa: S607
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    ).stdout.strip()


def make_source_repo(path: Path, branches: tuple[str, ...] = ("main",)) -> Path:
    """Create a non-bare repository with one commit on each of *branches*."""
    path.mkdir(parents=True, exist_ok=True)
    git(["init", "--initial-branch", branches[0]], path)
    git(["config", "user.email", "test@example.com"], path)
    git(["config", "user.name", "Test"], path)
    _ = (path / "README.md").write_text("# test\n")
    git(["add", "README.md"], path)
    git(["commit", "-m", "Initial commit"], path)
    for branch in branches[1:]:
        git(["branch", branch], path)
    return path
