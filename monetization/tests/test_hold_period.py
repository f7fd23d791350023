"""
Unit Tests for the Hold-Period Policy

Tests cover:
1. 14-day available date calculation
2. Month, year and DST boundaries
3. Availability check boundaries
4. Invalid input handling
"""

import pytest
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from monetization.errors import InvalidInputError
from monetization.hold_period import (
    calculate_available_date,
    ensure_instant,
    is_available_for_withdrawal,
)


NOW = datetime(2025, 10, 26, 10, 0, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestAvailableDateCalculation:
    """Tests for calculate_available_date."""

    def test_adds_fourteen_days(self):
        """Test available date is 14 days after the earning date."""
        assert calculate_available_date(utc(2025, 10, 26, 10)) == utc(2025, 11, 9, 10)

    @pytest.mark.parametrize("created_at, expected", [
        (utc(2025, 10, 1), utc(2025, 10, 15)),
        (utc(2025, 10, 15, 12), utc(2025, 10, 29, 12)),
        (utc(2025, 10, 31, 23, 59, 59), utc(2025, 11, 14, 23, 59, 59)),
        (utc(2025, 10, 25, 10), utc(2025, 11, 8, 10)),
        (utc(2025, 12, 25, 10), utc(2026, 1, 8, 10)),
        (utc(2024, 2, 20, 8), utc(2024, 3, 5, 8)),
    ])
    def test_month_and_year_transitions(self, created_at, expected):
        """Test month ends, year ends and leap February."""
        assert calculate_available_date(created_at) == expected

    def test_preserves_time_of_day(self):
        """Test hour, minute, second and millisecond are unchanged."""
        created_at = utc(2025, 10, 26, 15, 30, 45, 123000)
        available = calculate_available_date(created_at)

        assert (available.hour, available.minute, available.second) == (15, 30, 45)
        assert available.microsecond == 123000

    def test_dst_transition_keeps_wall_clock_hour(self):
        """Test calendar-day arithmetic across the US spring-forward change."""
        new_york = ZoneInfo("America/New_York")
        created_at = datetime(2025, 3, 1, 10, 0, tzinfo=new_york)

        available = calculate_available_date(created_at)

        assert available.hour == 10
        assert (available.date() - created_at.date()).days == 14
        # One hour was skipped on March 9, so the elapsed real time is shorter.
        elapsed = available.astimezone(timezone.utc) - created_at.astimezone(timezone.utc)
        assert elapsed == timedelta(days=14) - timedelta(hours=1)

    def test_iso_string_input(self):
        """Test ISO-8601 strings with a Z suffix are accepted."""
        assert calculate_available_date("2025-12-25T10:00:00Z") == utc(2026, 1, 8, 10)

    def test_naive_datetime_is_utc(self):
        """Test naive datetimes are read as UTC."""
        assert calculate_available_date(datetime(2025, 10, 1)) == utc(2025, 10, 15)

    @pytest.mark.parametrize("bad_value", [None, "invalid", "", 12345, object()])
    def test_invalid_dates_rejected(self, bad_value):
        """Test unparseable, null and non-date inputs raise InvalidInputError."""
        with pytest.raises(InvalidInputError):
            calculate_available_date(bad_value)


class TestAvailabilityCheck:
    """Tests for is_available_for_withdrawal."""

    def test_within_hold_period(self):
        """Test a 6-day-old earning is not available."""
        assert is_available_for_withdrawal(utc(2025, 10, 20, 10), NOW) is False

    def test_after_hold_period(self):
        """Test a 15-day-old earning is available."""
        assert is_available_for_withdrawal(utc(2025, 10, 11, 10), NOW) is True

    def test_exactly_fourteen_days(self):
        """Test the boundary is inclusive."""
        assert is_available_for_withdrawal(utc(2025, 10, 12, 10), NOW) is True

    def test_one_second_short(self):
        """Test 13 days 23:59:59 is still held."""
        assert is_available_for_withdrawal(utc(2025, 10, 12, 10, 0, 1), NOW) is False

    def test_millisecond_precision(self):
        """Test availability resolves at millisecond precision."""
        now = utc(2025, 10, 26, 10, 0, 0, 500000)
        assert is_available_for_withdrawal(utc(2025, 10, 12, 10, 0, 0, 499000), now) is True
        assert is_available_for_withdrawal(utc(2025, 10, 12, 10, 0, 0, 501000), now) is False

    def test_very_old_earning(self):
        assert is_available_for_withdrawal(utc(2025, 1, 1, 10), NOW) is True

    def test_future_earning_not_available(self):
        """Test future-dated earnings are never prematurely available."""
        assert is_available_for_withdrawal(utc(2025, 10, 27, 10), NOW) is False

    def test_monotonic_in_now(self):
        """Test once available, an earning stays available for every later instant."""
        created_at = utc(2025, 10, 1, 9, 30)
        checks = [
            is_available_for_withdrawal(created_at, created_at + timedelta(hours=h))
            for h in range(0, 24 * 20, 7)
        ]
        first_true = checks.index(True)
        assert all(checks[first_true:])
        assert not any(checks[:first_true])

    def test_invalid_now_rejected(self):
        with pytest.raises(InvalidInputError):
            is_available_for_withdrawal(utc(2025, 10, 1), None)


class TestEnsureInstant:
    """Tests for instant coercion."""

    def test_offset_preserved(self):
        value = ensure_instant("2025-10-26T19:00:00+09:00")
        assert value == NOW

    def test_aware_datetime_unchanged(self):
        assert ensure_instant(NOW) is NOW
