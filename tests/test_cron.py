"""
Tests for Quartz cron parsing and next-fire computation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from auto_uploader.cron import CronParseError, next_fire_time, parse_cron


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestNextFireTime:
    def test_every_minute_default(self):
        now = utc(2026, 10, 18, 12, 0, 30)
        assert next_fire_time("0 * * * * ?", now=now) == utc(2026, 10, 18, 12, 1, 0)

    def test_strictly_after_now(self):
        now = utc(2026, 10, 18, 12, 1, 0)
        assert next_fire_time("0 * * * * ?", now=now) == utc(2026, 10, 18, 12, 2, 0)

    def test_seconds_step(self):
        now = utc(2026, 10, 18, 12, 0, 7)
        assert next_fire_time("*/15 * * * * ?", now=now) == utc(2026, 10, 18, 12, 0, 15)

    def test_weekday_names(self):
        # Saturday morning rolls over to Monday.
        now = utc(2026, 10, 17, 10, 0, 0)
        assert next_fire_time("0 30 9 ? * MON-FRI", now=now) == utc(2026, 10, 19, 9, 30, 0)

    def test_numeric_day_of_week_sunday_is_one(self):
        now = utc(2026, 10, 17, 10, 0, 0)
        assert next_fire_time("0 0 8 ? * 1", now=now) == utc(2026, 10, 18, 8, 0, 0)

    def test_day_of_month_rolls_to_next_month(self):
        now = utc(2026, 10, 18, 12, 0, 0)
        assert next_fire_time("0 0 12 1 * ?", now=now) == utc(2026, 11, 1, 12, 0, 0)

    def test_month_names(self):
        now = utc(2026, 10, 18, 12, 0, 0)
        assert next_fire_time("0 0 0 1 JAN ?", now=now) == utc(2027, 1, 1, 0, 0, 0)

    def test_start_with_step(self):
        now = utc(2026, 10, 18, 12, 0, 0)
        assert next_fire_time("0 5/20 * * * ?", now=now) == utc(2026, 10, 18, 12, 5, 0)

    def test_explicit_future_year(self):
        now = utc(2026, 10, 18, 12, 0, 0)
        assert next_fire_time("0 0 0 1 1 ? 2028", now=now) == utc(2028, 1, 1, 0, 0, 0)

    def test_past_year_never_fires(self):
        with pytest.raises(CronParseError):
            next_fire_time("0 0 0 1 1 ? 2000", now=utc(2026, 10, 18))

    def test_naive_now_is_utc(self):
        result = next_fire_time("0 0 9 * * ?", now=datetime(2026, 10, 18, 8, 0, 0))
        assert result == utc(2026, 10, 18, 9, 0, 0)

    def test_aware_now_keeps_its_zone(self):
        plus_two = timezone(timedelta(hours=2))
        now = datetime(2026, 10, 18, 8, 0, 0, tzinfo=plus_two)
        result = next_fire_time("0 0 9 * * ?", now=now)
        assert result == datetime(2026, 10, 18, 9, 0, 0, tzinfo=plus_two)


class TestParseCron:
    def test_fields(self):
        spec = parse_cron("0 */15 8-17 ? * MON,WED")
        assert spec.seconds == {0}
        assert spec.minutes == {0, 15, 30, 45}
        assert spec.hours == set(range(8, 18))
        assert spec.dow == {2, 4}
        assert spec.dom_any and not spec.dow_any
        assert spec.years is None

    @pytest.mark.parametrize(
        "expr",
        [
            "* * * * *",  # five fields
            "0 0 0 1 1 ? 2026 1",  # eight fields
            "? * * * * ?",  # '?' outside the day fields
            "0 0 12 1 * MON",  # both day fields restricted
            "*/0 * * * * ?",  # zero step
            "60 * * * * ?",  # second out of range
            "0 0 24 * * ?",  # hour out of range
            "0 0 0 ? * 8",  # day of week out of range
            "0 0 0 ? 13 *",  # month out of range
            "0 10-5 * * * ?",  # reversed range
            "0 x * * * ?",  # garbage
        ],
    )
    def test_invalid(self, expr):
        with pytest.raises(CronParseError):
            parse_cron(expr)

    def test_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_cron("bogus")
