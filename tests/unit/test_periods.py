"""
Unit Tests - Period Bucketing
"""
from datetime import datetime, timedelta, timezone

import pytest

from backoffice.database.models import TargetPeriod
from backoffice.reporting.periods import (
    IST,
    GrowthWindow,
    RevenueWindow,
    add_months,
    add_period,
    day_progress,
    from_storage,
    last_months,
    month_bucket,
    period_window,
    revenue_buckets,
    shift_month,
    start_of_day,
    to_ist,
    to_storage,
    trailing_window,
    week_buckets,
    year_bounds,
)

NOW = datetime(2026, 10, 19, 6, 30, tzinfo=timezone.utc)  # Monday, 12:00 IST


class TestInstantConversion:
    """Tests for IST and storage conversions"""

    def test_naive_values_are_utc(self):
        """Test naive datetimes are read as UTC"""
        assert to_ist(datetime(2026, 10, 19, 6, 30)) == datetime(2026, 10, 19, 12, 0, tzinfo=IST)

    def test_to_storage_is_naive_utc(self):
        """Test aware instants are stored as naive UTC"""
        stored = to_storage(datetime(2026, 10, 1, tzinfo=IST))
        assert stored == datetime(2026, 9, 30, 18, 30)
        assert stored.tzinfo is None

    def test_from_storage_round_trip(self):
        """Test stored values come back as the same instant"""
        instant = datetime(2026, 10, 1, tzinfo=IST)
        assert from_storage(to_storage(instant)) == instant

    def test_start_of_day_uses_ist_date(self):
        """Test 20:00 UTC already belongs to the next IST day"""
        midnight = start_of_day(datetime(2026, 10, 18, 20, 0, tzinfo=timezone.utc))
        assert midnight == datetime(2026, 10, 19, tzinfo=IST)


class TestCalendarArithmetic:
    """Tests for month and period arithmetic"""

    def test_shift_month_wraps_years(self):
        """Test month shifts wrap across year boundaries"""
        assert shift_month(2026, 1, -1) == (2025, 12)
        assert shift_month(2026, 12, 1) == (2027, 1)
        assert shift_month(2026, 3, -15) == (2024, 12)

    def test_add_months_clamps_day(self):
        """Test Jan 31 plus one month is Feb 28"""
        assert add_months(datetime(2026, 1, 31, tzinfo=IST), 1) == datetime(2026, 2, 28, tzinfo=IST)

    def test_add_period(self):
        """Test implied period lengths"""
        start = datetime(2026, 10, 1, tzinfo=IST)

        assert add_period(start, TargetPeriod.DAILY) == datetime(2026, 10, 2, tzinfo=IST)
        assert add_period(start, TargetPeriod.WEEKLY) == datetime(2026, 10, 8, tzinfo=IST)
        assert add_period(start, TargetPeriod.MONTHLY) == datetime(2026, 11, 1, tzinfo=IST)
        assert add_period(start, TargetPeriod.QUARTERLY) == datetime(2027, 1, 1, tzinfo=IST)
        assert add_period(start, TargetPeriod.ANNUALLY) == datetime(2027, 10, 1, tzinfo=IST)

    def test_add_period_clamps_month_end(self):
        """Test month-end and leap-day starts clamp to the shorter month"""
        assert add_period(datetime(2026, 8, 31, tzinfo=IST), TargetPeriod.QUARTERLY) == \
            datetime(2026, 11, 30, tzinfo=IST)
        assert add_period(datetime(2028, 2, 29, tzinfo=IST), TargetPeriod.YEARLY) == \
            datetime(2029, 2, 28, tzinfo=IST)

    def test_year_bounds(self):
        assert year_bounds(2025) == (datetime(2025, 1, 1, tzinfo=IST), datetime(2026, 1, 1, tzinfo=IST))

    def test_custom_period_has_no_length(self):
        """Test custom periods cannot derive an end date"""
        with pytest.raises(ValueError):
            add_period(datetime(2026, 10, 1, tzinfo=IST), TargetPeriod.CUSTOM)

    def test_month_bucket_boundary_is_ist_midnight(self):
        """Test an order at 19:00 UTC on Sep 30 falls in October"""
        october = month_bucket(2026, 10)

        assert october.label == "Oct"
        assert october.contains(datetime(2026, 9, 30, 19, 0, tzinfo=timezone.utc))
        assert not october.contains(datetime(2026, 9, 30, 18, 0, tzinfo=timezone.utc))
        assert october.end == datetime(2026, 11, 1, tzinfo=IST)

    def test_trailing_window(self):
        """Test the previous window ends where the current one starts"""
        current = trailing_window(NOW, 30)
        previous = trailing_window(NOW, 30, periods_back=1)

        assert current[1] == NOW
        assert current[1] - current[0] == timedelta(days=30)
        assert previous[1] == current[0]


class TestPeriodWindow:
    """Tests for calendar period windows"""

    def test_quarter(self):
        """Test Q4 and its predecessor"""
        current, previous = period_window(TargetPeriod.QUARTERLY, NOW)

        assert current.start == datetime(2026, 10, 1, tzinfo=IST)
        assert current.end == datetime(2027, 1, 1, tzinfo=IST)
        assert previous.start == datetime(2026, 7, 1, tzinfo=IST)

    def test_half_year(self):
        """Test H2 and its predecessor"""
        current, previous = period_window(TargetPeriod.HALF_YEARLY, NOW)

        assert current.start == datetime(2026, 7, 1, tzinfo=IST)
        assert previous.start == datetime(2026, 1, 1, tzinfo=IST)

    def test_daily_is_not_a_calendar_window(self):
        """Test unsupported periods are rejected"""
        with pytest.raises(ValueError):
            period_window(TargetPeriod.DAILY, NOW)

    def test_day_progress(self):
        """Test day counts for the 19th of a 31-day month"""
        october = month_bucket(2026, 10)
        days = day_progress(october.start, october.end, NOW)

        assert (days.total, days.elapsed, days.remaining) == (31, 19, 12)

    def test_day_progress_before_window(self):
        """Test a window that has not started has nothing elapsed"""
        november = month_bucket(2026, 11)
        days = day_progress(november.start, november.end, NOW)

        assert days.elapsed == 0
        assert days.remaining == 30


class TestBucketSequences:
    """Tests for chart bucket sequences"""

    def test_yearly_is_january_to_december(self):
        """Test yearly buckets cover the whole calendar year"""
        buckets = revenue_buckets(RevenueWindow.YEARLY, NOW)

        assert [b.label for b in buckets] == [
            "Jan", "Feb", "Mar", "Apr", "May", "Jun",
            "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
        ]
        assert buckets[0].start == datetime(2026, 1, 1, tzinfo=IST)

    def test_three_months_ends_with_current(self):
        """Test trailing months include the current month"""
        buckets = revenue_buckets(RevenueWindow.THREE_MONTHS, NOW)
        assert [b.label for b in buckets] == ["Aug", "Sep", "Oct"]

    def test_last_months_across_year_end(self):
        """Test month buckets cross into the previous year"""
        buckets = last_months(3, datetime(2026, 1, 15, tzinfo=IST))
        assert [(b.start.year, b.label) for b in buckets] == [(2025, "Nov"), (2025, "Dec"), (2026, "Jan")]

    def test_window_lengths(self):
        """Test window enums expose their size"""
        assert RevenueWindow("6months").months == 6
        assert GrowthWindow("12weeks").weeks == 12

    def test_eight_complete_weeks(self):
        """Test week buckets stop at the Sunday before the current week"""
        buckets = week_buckets(GrowthWindow.EIGHT_WEEKS, NOW)

        assert len(buckets) == 8
        assert all(b.start.weekday() == 0 for b in buckets)
        assert buckets[0].label == "24 Aug - 30 Aug"
        assert buckets[-1].label == "12 Oct - 18 Oct"
        assert buckets[-1].end == datetime(2026, 10, 19, tzinfo=IST)

    def test_running_sunday_is_excluded(self):
        """Test a Sunday still in progress is not reported"""
        sunday = datetime(2026, 10, 18, 12, 0, tzinfo=IST)
        buckets = week_buckets(GrowthWindow.FOUR_WEEKS, sunday)

        assert len(buckets) == 4
        assert buckets[-1].label == "5 Oct - 11 Oct"
