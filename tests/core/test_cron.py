"""Tests for cron evaluation (validate / next_occurrences / is_occurrence)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from pxe_fleet.core.scheduling.cron import (
    EMPTY_PATTERN_ERROR,
    FIELD_COUNT_ERROR,
    CronValidation,
    is_occurrence,
    next_occurrence,
    next_occurrences,
    validate,
)


class TestValidate:
    @pytest.mark.parametrize(
        "pattern",
        ["* * * * *", "0 1 * * *", "*/15 * * * *", "0 2 * * 1-5", "30 6 1 * *"],
    )
    def test_valid_patterns(self, pattern):
        assert validate(pattern) == CronValidation(valid=True)

    @pytest.mark.parametrize("pattern", ["", "   ", None])
    def test_empty_pattern(self, pattern):
        result = validate(pattern)
        assert result.valid is False
        assert result.error == EMPTY_PATTERN_ERROR

    @pytest.mark.parametrize("pattern", ["not-a-pattern", "61 * * * *", "* * * *", "0 25 * * *"])
    def test_invalid_patterns_carry_reason(self, pattern):
        result = validate(pattern)
        assert result.valid is False
        assert result.error

    def test_surrounding_whitespace_is_ignored(self):
        assert validate("  0 1 * * *  ").valid is True

    @pytest.mark.parametrize("pattern", ["0 0 1 1 * 0 2001", "0 0 1 1 * 0", "*/5 * * * * *"])
    def test_seconds_and_year_fields_rejected(self, pattern):
        result = validate(pattern)
        assert result == CronValidation(valid=False, error=FIELD_COUNT_ERROR)
        assert next_occurrences(pattern, datetime(2024, 1, 1, tzinfo=UTC), 3) == []

    @pytest.mark.parametrize("pattern", ["@hourly", "@daily", "@weekly"])
    def test_aliases(self, pattern):
        assert validate(pattern).valid is True
        assert len(next_occurrences(pattern, datetime(2024, 1, 1, tzinfo=UTC), 2)) == 2


class TestNextOccurrences:
    def test_hourly(self):
        start = datetime(2024, 1, 1, tzinfo=UTC)
        assert next_occurrences("0 * * * *", start, 3) == [
            datetime(2024, 1, 1, 1, tzinfo=UTC),
            datetime(2024, 1, 1, 2, tzinfo=UTC),
            datetime(2024, 1, 1, 3, tzinfo=UTC),
        ]

    def test_strictly_after_start(self):
        start = datetime(2024, 1, 1, 1, 0, tzinfo=UTC)
        result = next_occurrences("0 1 * * *", start, 1)
        assert result == [datetime(2024, 1, 2, 1, 0, tzinfo=UTC)]

    def test_sub_minute_start(self):
        start = datetime(2024, 1, 1, 1, 0, 1, tzinfo=UTC)
        assert next_occurrence("0 1 * * *", start) == datetime(2024, 1, 2, 1, 0, tzinfo=UTC)

    def test_results_are_ordered_and_utc(self):
        start = datetime(2024, 3, 1, 12, 7, tzinfo=UTC)
        result = next_occurrences("*/5 * * * *", start, 5)
        assert len(result) == 5
        assert result == sorted(result)
        assert all(r > start for r in result)
        assert all(r.utcoffset() == timedelta(0) for r in result)

    def test_default_count_is_three(self):
        assert len(next_occurrences("* * * * *", datetime(2024, 1, 1, tzinfo=UTC))) == 3

    def test_naive_start_is_taken_as_utc(self):
        assert next_occurrence("0 * * * *", datetime(2024, 1, 1)) == datetime(2024, 1, 1, 1, tzinfo=UTC)

    def test_other_offset_is_normalised(self):
        plus_two = timezone(timedelta(hours=2))
        start = datetime(2024, 1, 1, 2, 30, tzinfo=plus_two)  # 00:30 UTC
        assert next_occurrence("0 * * * *", start) == datetime(2024, 1, 1, 1, tzinfo=UTC)

    def test_invalid_pattern_yields_empty(self):
        assert next_occurrences("bogus", datetime(2024, 1, 1, tzinfo=UTC), 3) == []
        assert next_occurrence("bogus", datetime(2024, 1, 1, tzinfo=UTC)) is None

    def test_zero_count(self):
        assert next_occurrences("* * * * *", datetime(2024, 1, 1, tzinfo=UTC), 0) == []

    def test_pure_function(self):
        start = datetime(2024, 5, 17, 8, 45, tzinfo=UTC)
        assert next_occurrences("0 2 * * 1-5", start, 4) == next_occurrences("0 2 * * 1-5", start, 4)


class TestIsOccurrence:
    def test_exact_occurrence(self):
        assert is_occurrence("0 1 * * *", datetime(2024, 1, 1, 1, tzinfo=UTC))

    def test_not_an_occurrence(self):
        assert not is_occurrence("0 1 * * *", datetime(2024, 1, 1, 1, 30, tzinfo=UTC))

    def test_invalid_pattern(self):
        assert not is_occurrence("bogus", datetime(2024, 1, 1, 1, tzinfo=UTC))
