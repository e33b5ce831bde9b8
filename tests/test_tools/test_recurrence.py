"""
Tests for Recurrence Expander Tool
Tests date expansion for daily, weekly and monthly templates
"""

import pytest
from datetime import date, time, datetime, timezone, timedelta

from exceptions import InvalidRecurrenceError
from models import Frequency
from tools.recurrence import RecurrenceRule, validate_recurrence, expand, count_occurrences
from tools.timeutils import local_to_utc, occurrence_window, to_naive_utc, get_zone


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def daily_rule():
    """Daily rule over the first five days of 2025"""
    return RecurrenceRule(
        start_date=date(2025, 1, 1),
        end_date=date(2025, 1, 5),
        frequency=Frequency.DAILY
    )


@pytest.fixture
def mwf_rule():
    """Mon/Wed/Fri rule starting on a Wednesday"""
    return RecurrenceRule(
        start_date=date(2025, 1, 1),
        end_date=date(2025, 1, 14),
        frequency=Frequency.WEEKLY,
        days_of_week=[1, 3, 5]
    )


# =============================================================================
# Daily
# =============================================================================

@pytest.mark.unit
class TestDailyExpansion:
    """Tests for daily recurrence"""

    def test_five_day_range_yields_five_dates(self, daily_rule):
        """Every day from start to end is due"""
        dates = expand(daily_rule, date(2025, 1, 1), date(2025, 1, 5))

        assert dates == [date(2025, 1, d) for d in range(1, 6)]

    def test_window_wider_than_range_is_clipped(self, daily_rule):
        """Dates outside the template range are never produced"""
        dates = expand(daily_rule, date(2024, 12, 1), date(2025, 2, 1))

        assert dates[0] == date(2025, 1, 1)
        assert dates[-1] == date(2025, 1, 5)

    def test_interval_counts_from_start_date(self):
        """Every other day stays on the grid even when the window starts off-grid"""
        rule = RecurrenceRule(
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 10),
            frequency=Frequency.DAILY,
            interval=2
        )

        assert expand(rule, date(2025, 1, 2), date(2025, 1, 10)) == [
            date(2025, 1, 3), date(2025, 1, 5), date(2025, 1, 7), date(2025, 1, 9)
        ]

    def test_window_after_end_is_empty(self, daily_rule):
        """A window entirely after end_date produces nothing"""
        assert expand(daily_rule, date(2025, 2, 1), date(2025, 2, 28)) == []

    def test_split_windows_match_single_window(self):
        """Expansion is restartable at any boundary"""
        rule = RecurrenceRule(
            start_date=date(2025, 1, 1),
            end_date=date(2025, 3, 31),
            frequency=Frequency.DAILY,
            interval=3
        )
        whole = expand(rule, date(2025, 1, 1), date(2025, 3, 31))
        first = expand(rule, date(2025, 1, 1), date(2025, 2, 10))
        second = expand(rule, date(2025, 2, 11), date(2025, 3, 31))

        assert first + second == whole


# =============================================================================
# Weekly
# =============================================================================

@pytest.mark.unit
class TestWeeklyExpansion:
    """Tests for weekly recurrence"""

    def test_mon_wed_fri_over_two_weeks(self, mwf_rule):
        """Two weeks from a Wednesday give six Mon/Wed/Fri dates"""
        dates = expand(mwf_rule, date(2025, 1, 1), date(2025, 1, 14))

        assert dates == [
            date(2025, 1, 1), date(2025, 1, 3), date(2025, 1, 6),
            date(2025, 1, 8), date(2025, 1, 10), date(2025, 1, 13)
        ]
        assert all(d.isoweekday() in (1, 3, 5) for d in dates)

    def test_every_other_week(self):
        """Interval 2 skips the week after the first matching week"""
        rule = RecurrenceRule(
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 20),
            frequency=Frequency.WEEKLY,
            interval=2,
            days_of_week=[1, 3]
        )

        assert expand(rule, date(2025, 1, 1), date(2025, 1, 20)) == [
            date(2025, 1, 1), date(2025, 1, 13), date(2025, 1, 15)
        ]

    def test_interval_anchors_on_first_matching_week(self):
        """A Saturday start with Monday-only days counts weeks from the following Monday"""
        rule = RecurrenceRule(
            start_date=date(2025, 1, 4),
            end_date=date(2025, 2, 3),
            frequency=Frequency.WEEKLY,
            interval=2,
            days_of_week=[1]
        )

        assert expand(rule, date(2025, 1, 1), date(2025, 2, 28)) == [
            date(2025, 1, 6), date(2025, 1, 20), date(2025, 2, 3)
        ]
        # a window opening mid-series stays on the same grid
        assert expand(rule, date(2025, 1, 7), date(2025, 2, 3)) == [
            date(2025, 1, 20), date(2025, 2, 3)
        ]

    def test_duplicate_and_unsorted_days_are_normalized(self):
        """Day list order and duplicates do not change the result"""
        rule = RecurrenceRule(
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 14),
            frequency=Frequency.WEEKLY,
            days_of_week=[5, 1, 3, 5]
        )

        assert len(expand(rule, date(2025, 1, 1), date(2025, 1, 14))) == 6


# =============================================================================
# Monthly
# =============================================================================

@pytest.mark.unit
class TestMonthlyExpansion:
    """Tests for monthly recurrence"""

    def test_short_months_clamp_to_last_day(self):
        """Jan 31 falls on the last day of shorter months and returns to the 31st"""
        rule = RecurrenceRule(
            start_date=date(2025, 1, 31),
            end_date=date(2025, 5, 31),
            frequency=Frequency.MONTHLY
        )

        assert expand(rule, date(2025, 1, 1), date(2025, 5, 31)) == [
            date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31),
            date(2025, 4, 30), date(2025, 5, 31)
        ]

    def test_leap_year_february(self):
        """Feb 29 exists in 2024"""
        rule = RecurrenceRule(
            start_date=date(2024, 1, 30),
            end_date=date(2024, 3, 30),
            frequency=Frequency.MONTHLY
        )

        assert expand(rule, date(2024, 1, 1), date(2024, 12, 31)) == [
            date(2024, 1, 30), date(2024, 2, 29), date(2024, 3, 30)
        ]

    def test_quarterly_interval_crosses_year(self):
        """Interval 3 steps over the year boundary"""
        rule = RecurrenceRule(
            start_date=date(2024, 11, 15),
            end_date=date(2025, 12, 31),
            frequency=Frequency.MONTHLY,
            interval=3
        )

        assert expand(rule, date(2025, 1, 1), date(2025, 12, 31)) == [
            date(2025, 2, 15), date(2025, 5, 15), date(2025, 8, 15), date(2025, 11, 15)
        ]

    def test_clamp_does_not_drift_from_anchor(self):
        """A window starting after a clamped month still lands on the 31st"""
        rule = RecurrenceRule(
            start_date=date(2025, 1, 31),
            end_date=date(2025, 12, 31),
            frequency=Frequency.MONTHLY,
            interval=2
        )

        assert expand(rule, date(2025, 3, 1), date(2025, 9, 30)) == [
            date(2025, 3, 31), date(2025, 5, 31), date(2025, 7, 31), date(2025, 9, 30)
        ]


# =============================================================================
# Validation
# =============================================================================

@pytest.mark.unit
class TestValidation:
    """Tests for recurrence validation"""

    def test_weekly_without_days_rejected(self):
        with pytest.raises(InvalidRecurrenceError):
            validate_recurrence(Frequency.WEEKLY, 1, [], date(2025, 1, 1), date(2025, 1, 31))

    @pytest.mark.parametrize("interval", [0, -1, None, 1.5, True])
    def test_bad_interval_rejected(self, interval):
        with pytest.raises(InvalidRecurrenceError):
            validate_recurrence(Frequency.DAILY, interval, None, date(2025, 1, 1), date(2025, 1, 31))

    def test_start_after_end_rejected(self):
        with pytest.raises(InvalidRecurrenceError):
            validate_recurrence(Frequency.DAILY, 1, None, date(2025, 2, 1), date(2025, 1, 1))

    @pytest.mark.parametrize("days", [[0], [8], [1, 9]])
    def test_weekday_out_of_range_rejected(self, days):
        with pytest.raises(InvalidRecurrenceError):
            validate_recurrence(Frequency.WEEKLY, 1, days, date(2025, 1, 1), date(2025, 1, 31))

    def test_unknown_frequency_rejected(self):
        with pytest.raises(InvalidRecurrenceError):
            validate_recurrence("hourly", 1, None, date(2025, 1, 1), date(2025, 1, 31))

    def test_days_ignored_for_daily(self):
        """days_of_week only matters for weekly templates"""
        assert validate_recurrence("daily", 1, [9], date(2025, 1, 1), date(2025, 1, 2)) == []

    def test_expand_validates_first(self):
        rule = RecurrenceRule(
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 31),
            frequency=Frequency.WEEKLY,
            days_of_week=[]
        )

        with pytest.raises(InvalidRecurrenceError):
            expand(rule, date(2025, 1, 1), date(2025, 1, 31))


@pytest.mark.unit
class TestCountOccurrences:
    """Tests for total / remaining counters"""

    def test_total_and_remaining(self, mwf_rule):
        assert count_occurrences(mwf_rule) == 6
        assert count_occurrences(mwf_rule, date(2025, 1, 7)) == 3


# =============================================================================
# Time Utilities
# =============================================================================

@pytest.mark.unit
class TestTimeUtils:
    """Tests for local time conversion"""

    def test_utc_passthrough(self):
        assert local_to_utc(date(2025, 1, 1), time(8, 0), "UTC") == datetime(2025, 1, 1, 8, 0)

    def test_daylight_saving_moves_utc_instant(self):
        """08:00 in Berlin is 07:00Z in winter and 06:00Z in summer"""
        assert local_to_utc(date(2025, 1, 15), time(8, 0), "Europe/Berlin") == datetime(2025, 1, 15, 7, 0)
        assert local_to_utc(date(2025, 7, 15), time(8, 0), "Europe/Berlin") == datetime(2025, 7, 15, 6, 0)

    def test_occurrence_window_adds_grace(self):
        start, end = occurrence_window(date(2025, 1, 1), time(8, 0), "UTC", 30)

        assert start == datetime(2025, 1, 1, 8, 0)
        assert end == datetime(2025, 1, 1, 8, 30)

    def test_aware_datetime_normalized(self):
        aware = datetime(2025, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))

        assert to_naive_utc(aware) == datetime(2025, 1, 1, 8, 0)

    def test_unknown_zone(self):
        with pytest.raises(ValueError):
            get_zone("Mars/Olympus_Mons")
