"""Tests for utils.timestamps and utils.formatting."""

from datetime import datetime, timedelta, timezone

import pytest

from utils.formatting import (
    channel_mention,
    format_duration,
    format_rfc1123,
    severity_text,
    user_mention,
)
from utils.timestamps import (
    TimestampParseError,
    elapsed_whole_hours,
    ensure_utc,
    format_date_layout,
    format_message_ts,
    is_fresher_than,
    parse_date_layout,
    parse_message_ts,
)

T0 = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class TestMessageTimestamps:
    def test_parses_seconds_and_fraction(self):
        ts = parse_message_ts("1709283600.000200")
        assert ts == T0 + timedelta(microseconds=200)
        assert ts.tzinfo is not None

    def test_short_fraction_is_padded(self):
        assert parse_message_ts("1709283600.5") == T0 + timedelta(microseconds=500000)

    def test_format_is_inverse_of_parse(self):
        value = T0 + timedelta(microseconds=42)
        assert parse_message_ts(format_message_ts(value)) == value

    @pytest.mark.parametrize("raw", ["", "abc", "1709283600", "1709283600.", ".123"])
    def test_malformed_raises(self, raw):
        with pytest.raises(TimestampParseError) as exc_info:
            parse_message_ts(raw)
        assert exc_info.value.raw == raw


class TestDateLayout:
    def test_parses_offset_and_converts_to_utc(self):
        parsed = parse_date_layout("2024-03-01T11:00:00+0200")
        assert parsed == T0

    def test_round_trip_text(self):
        assert format_date_layout(T0) == "2024-03-01T09:00:00+0000"

    def test_bad_layout_raises(self):
        with pytest.raises(TimestampParseError):
            parse_date_layout("01/03/2024 09:00")

    def test_naive_values_are_treated_as_utc(self):
        assert ensure_utc(datetime(2024, 3, 1, 9, 0, 0)) == T0


class TestElapsedHours:
    def test_truncates_partial_hours(self):
        assert elapsed_whole_hours(T0, T0 + timedelta(hours=168, minutes=59)) == 168

    def test_exact_hours(self):
        assert elapsed_whole_hours(T0, T0 + timedelta(hours=169)) == 169


class TestFreshness:
    def test_none_is_never_fresh(self):
        assert is_fresher_than(None, T0, timedelta(hours=2)) is False

    def test_inside_window_is_fresh(self):
        assert is_fresher_than(T0 - timedelta(minutes=30), T0, timedelta(hours=2)) is True

    def test_exactly_window_old_is_stale(self):
        assert is_fresher_than(T0 - timedelta(hours=2), T0, timedelta(hours=2)) is False


class TestFormatting:
    def test_severity_text_known_levels(self):
        assert severity_text(0).startswith("SEV0")
        assert severity_text(3).startswith("SEV3")

    def test_rfc1123(self):
        assert format_rfc1123(T0) == "Fri, 01 Mar 2024 09:00:00 UTC"

    def test_mentions(self):
        assert channel_mention("C1") == "<#C1>"
        assert user_mention("U1") == "<@U1>"
        assert user_mention("") == ""

    def test_duration(self):
        assert format_duration(7200) == "2h"
        assert format_duration(90) == "1m30s"
