"""Tests for utility functions."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from bitbucket_to_github_exporter.utils import (
    collapse_whitespace,
    format_date_to_z,
    is_short_sha,
    parse_timestamp,
    to_native_path,
    to_unix_path,
    write_json_atomic,
)


@pytest.mark.unit
class TestParseTimestamp:
    def test_bitbucket_microseconds(self) -> None:
        parsed = parse_timestamp("2023-04-05T06:07:08.123456+00:00")
        assert parsed == datetime(2023, 4, 5, 6, 7, 8, 123456, tzinfo=UTC)

    def test_excess_fraction_digits_truncated(self) -> None:
        parsed = parse_timestamp("2023-04-05T06:07:08.123456789+00:00")
        assert parsed == datetime(2023, 4, 5, 6, 7, 8, 123456, tzinfo=UTC)

    def test_z_suffix(self) -> None:
        assert parse_timestamp("2023-04-05T06:07:08Z") == datetime(2023, 4, 5, 6, 7, 8, tzinfo=UTC)

    def test_offset_converted_to_utc(self) -> None:
        parsed = parse_timestamp("2023-04-05T08:07:08+02:00")
        assert parsed == datetime(2023, 4, 5, 6, 7, 8, tzinfo=UTC)
        assert parsed is not None
        assert parsed.tzinfo == UTC

    def test_naive_value_assumed_utc(self) -> None:
        assert parse_timestamp("2023-04-05 06:07:08") == datetime(2023, 4, 5, 6, 7, 8, tzinfo=UTC)

    def test_fallback_format(self) -> None:
        assert parse_timestamp("2023/04/05 06:07:08") == datetime(2023, 4, 5, 6, 7, 8, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", "yesterday", "2023-99-99"])
    def test_unparseable_is_none(self, value: str | None) -> None:
        assert parse_timestamp(value) is None


@pytest.mark.unit
class TestFormatDateToZ:
    def test_string_input(self) -> None:
        assert format_date_to_z("2023-04-05T06:07:08.999999+00:00") == "2023-04-05T06:07:08Z"

    def test_aware_datetime_is_converted(self) -> None:
        value = datetime(2023, 4, 5, 8, 7, 8, tzinfo=timezone(timedelta(hours=2)))
        assert format_date_to_z(value) == "2023-04-05T06:07:08Z"

    def test_naive_datetime_is_utc(self) -> None:
        assert format_date_to_z(datetime(2023, 4, 5, 6, 7, 8)) == "2023-04-05T06:07:08Z"  # noqa: DTZ001

    @pytest.mark.parametrize("value", [None, "", "garbage"])
    def test_empty_output(self, value: str | None) -> None:
        assert format_date_to_z(value) == ""


@pytest.mark.unit
class TestSmallHelpers:
    def test_is_short_sha(self) -> None:
        assert is_short_sha("abc1234")
        assert not is_short_sha("a" * 40)
        assert not is_short_sha("")
        assert not is_short_sha(None)

    def test_collapse_whitespace(self) -> None:
        assert collapse_whitespace("  a\r\n\tb   c  ") == "a b c"

    def test_unix_path(self) -> None:
        assert to_unix_path("repositories\\ws\\repo.git\\HEAD") == "repositories/ws/repo.git/HEAD"
        assert to_unix_path(Path("a") / "b") == "a/b"

    @pytest.mark.parametrize(
        "path",
        ["repositories/ws/repo.git", "repositories\\ws\\repo.git", "repositories\\ws/repo.git"],
    )
    def test_native_path_round_trip(self, path: str) -> None:
        assert to_unix_path(to_native_path(path)) == "repositories/ws/repo.git"

    @pytest.mark.parametrize("path", ["a/b/c", "a\\b\\c", "a/b\\c"])
    def test_native_path_round_trip_on_windows(self, path: str) -> None:
        with patch("bitbucket_to_github_exporter.utils.os.sep", "\\"):
            assert to_unix_path(to_native_path(path)) == "a/b/c"

    def test_native_path_on_windows(self) -> None:
        with patch("bitbucket_to_github_exporter.utils.os.sep", "\\"):
            assert to_native_path("a/b/c") == "a\\b\\c"


@pytest.mark.unit
class TestWriteJsonAtomic:
    def test_writes_pretty_json(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "data.json"

        write_json_atomic(path, [{"name": "Zoë"}])

        text = path.read_text(encoding="utf-8")
        assert text.endswith("\n")
        assert "Zoë" in text
        assert json.loads(text) == [{"name": "Zoë"}]

    def test_unserializable_data_leaves_existing_file(self, tmp_path: Path) -> None:
        path = tmp_path / "data.json"
        _ = path.write_text("[]\n")

        with pytest.raises(TypeError):
            write_json_atomic(path, [object()])

        assert path.read_text() == "[]\n"
        assert list(tmp_path.iterdir()) == [path]

    def test_failed_replace_removes_temp_file(self, tmp_path: Path) -> None:
        path = tmp_path / "data.json"

        with (
            patch("bitbucket_to_github_exporter.utils.os.replace", side_effect=OSError("read-only")),
            pytest.raises(OSError, match="read-only"),
        ):
            write_json_atomic(path, {"a": 1})

        assert list(tmp_path.iterdir()) == []
