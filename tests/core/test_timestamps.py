"""Tests for pxe_fleet.core.timestamps — UTC helpers and display formatting."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from pxe_fleet.core.timestamps import (
    ensure_utc,
    estimate_eta,
    format_eta,
    format_relative_time,
    from_iso8601,
    to_iso8601,
    utc_now,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class TestUtcNow:
    def test_has_utc_timezone(self):
        assert utc_now().tzinfo is UTC

    def test_is_recent(self):
        before = datetime.now(UTC)
        result = utc_now()
        after = datetime.now(UTC)
        assert before <= result <= after


class TestIso8601:
    def test_fixed_precision(self):
        assert to_iso8601(NOW) == "2024-01-01T12:00:00.000000+00:00"

    def test_offsets_are_normalised(self):
        plus_two = timezone(timedelta(hours=2))
        assert to_iso8601(datetime(2024, 1, 1, 14, 0, tzinfo=plus_two)) == "2024-01-01T12:00:00.000000+00:00"

    def test_naive_is_taken_as_utc(self):
        assert ensure_utc(datetime(2024, 1, 1, 12, 0)) == NOW

    def test_lexical_order_matches_time_order(self):
        a = NOW
        b = NOW + timedelta(microseconds=1)
        c = NOW + timedelta(seconds=10)
        assert to_iso8601(a) < to_iso8601(b) < to_iso8601(c)

    def test_parse(self):
        assert from_iso8601("2024-01-01T12:00:00+00:00") == NOW
        assert from_iso8601("2024-01-01T14:00:00+02:00") == NOW

    def test_none_passthrough(self):
        assert to_iso8601(None) is None
        assert from_iso8601(None) is None


class TestRelativeTime:
    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(seconds=30), "in 0 minutes"),
            (timedelta(minutes=1), "in 1 minute"),
            (timedelta(minutes=45), "in 45 minutes"),
            (timedelta(hours=1), "in 1 hour"),
            (timedelta(hours=3, minutes=20), "in 3 hours"),
            (timedelta(days=2), "in 2 days"),
            (timedelta(days=15), "in 2 weeks"),
        ],
    )
    def test_future(self, delta, expected):
        assert format_relative_time(NOW + delta, NOW) == expected

    def test_past(self):
        assert format_relative_time(NOW - timedelta(minutes=1), NOW) == "in the past"


class TestEta:
    @pytest.mark.parametrize(
        "progress,expected",
        [(100, "Complete"), (95, "1m"), (50, "5m"), (0, "10m")],
    )
    def test_format(self, progress, expected):
        assert format_eta(progress) == expected

    def test_estimate(self):
        assert estimate_eta(50, NOW) == NOW + timedelta(minutes=5)
        assert estimate_eta(100, NOW) is None
