"""
Utility functions for the Bitbucket to GitHub export tool.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger: logging.Logger = logging.getLogger(__name__)

ARCHIVE_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Formats tried after datetime.fromisoformat() gives up
_FALLBACK_TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%a, %d %b %Y %H:%M:%S %z",
    "%Y-%m-%d",
)

_FULL_SHA_LENGTH = 40
_WHITESPACE_RUN = re.compile(r"\s+")


def setup_logging(*, verbose: bool = False) -> None:
    """Configure logging for the export process."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(), logging.FileHandler("bitbucket-export.log", mode="a")],
    )


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an API timestamp into an aware UTC datetime.

    Naive values are assumed to be UTC. Bitbucket emits microsecond (and
    occasionally longer) fractions, so anything beyond six digits is truncated
    before parsing.

    Args:
        value: Timestamp string as returned by the API

    Returns:
        Parsed datetime in UTC, or None if the value is empty or unparseable
    """
    if not value:
        return None

    text = value.strip()
    # Trim sub-microsecond precision: "12:00:00.123456789+00:00" -> "12:00:00.123456+00:00"
    text = re.sub(r"(\.\d{6})\d+", r"\1", text)

    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _FALLBACK_TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)  # noqa: DTZ007
                break
            except ValueError:
                continue

    if parsed is None:
        logger.debug(f"Unparseable timestamp: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_date_to_z(value: str | datetime | None) -> str:
    """Format a timestamp as ``YYYY-MM-DDTHH:MM:SSZ`` in UTC.

    Returns an empty string for empty or unparseable input.
    """
    parsed = value if isinstance(value, datetime) else parse_timestamp(value)
    if parsed is None:
        return ""
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).strftime(ARCHIVE_TIMESTAMP_FORMAT)


def is_short_sha(sha: str | None) -> bool:
    """True if a non-empty commit hash is shorter than a full 40-character SHA."""
    return bool(sha) and len(sha or "") < _FULL_SHA_LENGTH


def collapse_whitespace(text: str) -> str:
    """Collapse whitespace runs (including CR/LF/tab) to single spaces and trim the ends."""
    return _WHITESPACE_RUN.sub(" ", text).strip()


def to_unix_path(path: str | Path) -> str:
    """Convert a path to the platform-neutral form using forward slashes."""
    return str(path).replace("\\", "/")


def to_native_path(path: str | Path) -> str:
    """Convert a platform-neutral path to the native separator style."""
    text = str(path)
    if os.sep == "\\":
        return text.replace("/", "\\")
    return text


def write_json_atomic(path: Path, data: Any) -> None:  # noqa: ANN401
    """Write a complete JSON document to ``path`` without ever leaving a partial file.

    The document is serialized in memory first, written to a temporary file in
    the same directory and then renamed over the destination.

    Args:
        path: Destination file
        data: JSON-serializable data

    Raises:
        TypeError: If the data is not JSON-serializable (nothing is written)
        OSError: If the file cannot be written
    """
    payload = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            _ = f.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
