from datetime import datetime, timezone

import pytest
from smartrouter.quota.models import ResetSchedule
from smartrouter.quota.reset import compute_next_reset, describe, hours_until_reset, is_due, parse_reset_schedule


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestComputeNextReset:
    def test_weekly_just_after_slot_moves_a_full_week(self):
        schedule = ResetSchedule(type="weekly", day_of_week=3, hour=7)
        assert compute_next_reset(schedule, utc(2026, 3, 4, 7, 0, 1)) == utc(2026, 3, 11, 7)

    def test_weekly_before_slot_same_day(self):
        schedule = ResetSchedule(type="weekly", day_of_week=3, hour=7)
        assert compute_next_reset(schedule, utc(2026, 3, 4, 6, 30)) == utc(2026, 3, 4, 7)

    def test_weekly_sunday(self):
        schedule = ResetSchedule(type="weekly", day_of_week=0)
        assert compute_next_reset(schedule, utc(2026, 3, 4, 12)) == utc(2026, 3, 8)

    def test_monthly_day_31_in_april_clamps_to_april_30(self):
        schedule = ResetSchedule(type="monthly", day_of_month=31)
        assert compute_next_reset(schedule, utc(2026, 4, 10, 9)) == utc(2026, 4, 30)

    def test_monthly_after_clamped_slot_moves_to_next_month(self):
        schedule = ResetSchedule(type="monthly", day_of_month=31)
        assert compute_next_reset(schedule, utc(2026, 4, 30, 1)) == utc(2026, 5, 31)

    def test_monthly_december_rolls_into_next_year(self):
        schedule = ResetSchedule(type="monthly", day_of_month=15)
        assert compute_next_reset(schedule, utc(2026, 12, 20)) == utc(2027, 1, 15)

    def test_daily_after_hour_is_tomorrow(self):
        schedule = ResetSchedule(type="daily", hour=7)
        assert compute_next_reset(schedule, utc(2026, 3, 4, 12)) == utc(2026, 3, 5, 7)

    def test_daily_at_exact_slot_is_strictly_after(self):
        schedule = ResetSchedule(type="daily", hour=12)
        assert compute_next_reset(schedule, utc(2026, 3, 4, 12)) == utc(2026, 3, 5, 12)

    def test_timezone_offset_applied(self):
        schedule = ResetSchedule(type="daily", hour=0, timezone="America/New_York")
        # 12:00 UTC is 07:00 in New York; next local midnight is 05:00 UTC
        assert compute_next_reset(schedule, utc(2026, 3, 4, 12)) == utc(2026, 3, 5, 5)

    def test_unknown_timezone_treated_as_utc(self):
        schedule = ResetSchedule(type="daily", hour=7, timezone="Mars/Olympus")
        assert compute_next_reset(schedule, utc(2026, 3, 4, 12)) == utc(2026, 3, 5, 7)

    def test_naive_now_treated_as_utc(self):
        schedule = ResetSchedule(type="daily", hour=7)
        assert compute_next_reset(schedule, datetime(2026, 3, 4, 12)) == utc(2026, 3, 5, 7)

    def test_fixed_date_in_past_returned_as_is(self):
        schedule = ResetSchedule(type="fixed", fixed_date="2025-01-01T00:00:00Z")
        assert compute_next_reset(schedule, utc(2026, 3, 4)) == utc(2025, 1, 1)

    @pytest.mark.parametrize("fixed_date", [None, "not-a-date"])
    def test_fixed_without_valid_date_falls_back_to_next_midnight(self, fixed_date):
        schedule = ResetSchedule(type="fixed", fixed_date=fixed_date)
        assert compute_next_reset(schedule, utc(2026, 3, 4, 12)) == utc(2026, 3, 5)


class TestResetHelpers:
    def test_is_due(self):
        assert is_due(utc(2026, 3, 4), utc(2026, 3, 4)) is True
        assert is_due(utc(2026, 3, 5), utc(2026, 3, 4)) is False
        assert is_due(None, utc(2026, 3, 4)) is False

    def test_hours_until_reset_never_negative(self):
        assert hours_until_reset(utc(2026, 3, 4, 18), utc(2026, 3, 4, 12)) == 6
        assert hours_until_reset(utc(2026, 3, 4), utc(2026, 3, 4, 12)) == 0

    def test_describe(self):
        assert describe(ResetSchedule(type="daily")) == "Daily at midnight UTC"
        assert describe(ResetSchedule(type="weekly", day_of_week=3, hour=7)) == "Every Wednesday at 7:00 UTC"
        assert describe(ResetSchedule(type="monthly", day_of_month=22)) == "Monthly on the 22nd at midnight UTC"
        assert describe(ResetSchedule(type="monthly", day_of_month=11)) == "Monthly on the 11th at midnight UTC"

    def test_parse_short_forms(self):
        assert parse_reset_schedule("daily:7") == ResetSchedule(type="daily", hour=7)
        assert parse_reset_schedule("weekly:3:7") == ResetSchedule(type="weekly", day_of_week=3, hour=7)
        assert parse_reset_schedule("monthly:15") == ResetSchedule(type="monthly", day_of_month=15)
        assert parse_reset_schedule("2026-06-01").type == "fixed"

    @pytest.mark.parametrize("text", ["yearly", "weekly:9", "daily:abc"])
    def test_parse_invalid_falls_back_to_monthly(self, text):
        assert parse_reset_schedule(text) == ResetSchedule(type="monthly", day_of_month=1)
