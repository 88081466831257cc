# =============================================================================
# tests/test_utils.py - Shared Utility Tests
# =============================================================================
# Run with: pytest tests/test_utils.py -v
# =============================================================================

from datetime import datetime, timezone

from lib.utils import from_unix, parse_timestamp


class TestParseTimestamp:

    def test_none(self):
        assert parse_timestamp(None) is None

    def test_offset_and_z_suffix_agree(self):
        expected = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert parse_timestamp("2024-01-15T10:30:00+00:00") == expected
        assert parse_timestamp("2024-01-15T10:30:00Z") == expected

    def test_short_fractional_seconds(self):
        parsed = parse_timestamp("2024-01-15T10:30:00.12345+00:00")
        assert parsed.microsecond == 123450
        assert parsed.tzinfo is not None

    def test_naive_is_utc(self):
        assert parse_timestamp("2024-01-15T10:30:00").tzinfo == timezone.utc
        assert parse_timestamp(datetime(2024, 1, 15)).tzinfo == timezone.utc

    def test_from_unix(self):
        assert from_unix(None) is None
        assert from_unix(0) == "1970-01-01T00:00:00+00:00"
