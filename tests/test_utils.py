"""Unit tests for utility functions."""

import pytest

from pygsync.utils import (
    conflict_copy_path,
    detect_mime_type,
    format_rfc3339_ms,
    format_size,
    format_timestamp,
    normalize_path,
    now_ms,
    parent_path,
    parse_rfc3339_ms,
)


class TestTimestamps:
    """Tests for millisecond timestamp helpers."""

    def test_parse_utc(self):
        """Test parsing a Drive timestamp with milliseconds."""
        assert parse_rfc3339_ms("2024-01-01T00:00:00.250Z") == 1704067200250

    def test_parse_offset(self):
        """Test parsing a timestamp with an explicit offset."""
        assert parse_rfc3339_ms("2024-01-01T01:00:00+01:00") == 1704067200000

    def test_parse_naive_is_utc(self):
        """Test that a timestamp without zone is read as UTC."""
        assert parse_rfc3339_ms("2024-01-01T00:00:00") == 1704067200000

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_parse_invalid(self, value):
        """Test that unparseable values give None."""
        assert parse_rfc3339_ms(value) is None

    def test_format(self):
        """Test formatting keeps millisecond precision."""
        assert format_rfc3339_ms(1704067200250) == "2024-01-01T00:00:00.250Z"

    def test_format_then_parse_is_exact(self):
        """Test that an uploaded mtime reads back unchanged."""
        value = 1_600_000_000_123
        assert parse_rfc3339_ms(format_rfc3339_ms(value)) == value

    def test_format_timestamp_never(self):
        """Test the display value of an empty watermark."""
        assert format_timestamp(0) == "never"
        assert format_timestamp(1704067200000) != "never"

    def test_now_ms_is_milliseconds(self):
        """Test that the clock reports milliseconds."""
        assert now_ms() > 1_600_000_000_000


class TestFormatSize:
    """Tests for format_size function."""

    @pytest.mark.parametrize(
        "size,expected",
        [
            (0, "0 B"),
            (1023, "1023 B"),
            (1536, "1.5 KB"),
            (5 * 1024 * 1024, "5.0 MB"),
            (2 * 1024**3, "2.0 GB"),
        ],
    )
    def test_format_size(self, size, expected):
        """Test unit selection."""
        assert format_size(size) == expected


class TestPaths:
    """Tests for path helpers."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("/notes//daily/", "notes/daily"),
            ("a\\b.md", "a/b.md"),
            ("./a/./b", "a/b"),
            ("", ""),
        ],
    )
    def test_normalize_path(self, raw, expected):
        """Test separator and empty segment handling."""
        assert normalize_path(raw) == expected

    def test_parent_path(self):
        """Test parent extraction."""
        assert parent_path("a/b/c.md") == "a/b"
        assert parent_path("c.md") == ""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("note.md", "text/markdown"),
            ("board.canvas", "application/json"),
            ("image.PNG", "image/png"),
            ("blob", "application/octet-stream"),
        ],
    )
    def test_detect_mime_type(self, path, expected):
        """Test MIME detection with vault overrides."""
        assert detect_mime_type(path) == expected


class TestConflictCopyPath:
    """Tests for conflict copy naming."""

    def test_marker_before_extension(self):
        """Test that the marker goes before the last extension."""
        assert conflict_copy_path("notes/c.md", 42) == "notes/c_conflict_42.md"

    def test_multiple_dots(self):
        """Test that only the last extension is kept after the marker."""
        assert conflict_copy_path("a.tar.gz", 1) == "a.tar_conflict_1.gz"

    def test_no_extension(self):
        """Test files without an extension."""
        assert conflict_copy_path("Makefile", 5) == "Makefile_conflict_5"

    def test_dot_file(self):
        """Test that a leading dot is not an extension."""
        assert conflict_copy_path("d/.env", 5) == "d/.env_conflict_5"
