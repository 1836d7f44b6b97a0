from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import NOW, UTC, at
from copilot.agent.normalizer import combine_date_and_time, match_temporal, normalize, strip_temporal
from copilot.config import _resolve_default_timezone


class TestRelativeExpressions:

    def test_tomorrow_with_time(self):
        match = match_temporal("tomorrow at 2pm", NOW, UTC)
        assert match.value == at(1, 14)
        assert match.has_date and match.has_time

    def test_date_only_lands_on_local_midnight(self):
        match = match_temporal("tomorrow", NOW, UTC)
        assert match.value == at(1, 0)
        assert match.has_date is True
        assert match.has_time is False

    def test_time_only_means_today(self):
        match = match_temporal("3:30pm", NOW, UTC)
        assert match.value == at(0, 15, 30)
        assert match.has_date is False

    def test_bare_weekday_is_strictly_after_today(self):
        # NOW is a Monday.
        assert normalize("monday", NOW, UTC) == at(7, 0)
        assert normalize("friday", NOW, UTC) == at(4, 0)
        assert normalize("next friday", NOW, UTC) == at(4, 0)

    def test_this_weekday_allows_today(self):
        assert normalize("this monday", NOW, UTC) == at(0, 0)

    def test_in_n_hours(self):
        assert normalize("in 2 hours", NOW, UTC) == NOW + timedelta(hours=2)

    def test_next_week_spans_seven_days_from_monday(self):
        match = match_temporal("next week", NOW, UTC)
        assert match.value == at(7, 0)
        assert match.span_days == 7

    def test_noon_and_at_hour(self):
        assert normalize("tomorrow at noon", NOW, UTC) == at(1, 12)
        assert normalize("tomorrow at 3", NOW, UTC) == at(1, 15)

    def test_part_of_day_without_time(self):
        match = match_temporal("friday afternoon", NOW, UTC)
        assert match.part_of_day == "afternoon"
        assert match.has_time is False

    def test_past_month_day_rolls_to_next_year(self):
        assert normalize("March 3 at 10am", NOW, UTC) == datetime(2027, 3, 3, 10, 0, tzinfo=UTC)
        assert normalize("Dec 24", NOW, UTC) == datetime(2026, 12, 24, tzinfo=UTC)

    def test_explicit_year_is_kept(self):
        assert normalize("March 3, 2026", NOW, UTC) == datetime(2026, 3, 3, tzinfo=UTC)

    def test_nothing_temporal(self):
        assert match_temporal("budget review", NOW, UTC) is None
        assert match_temporal("", NOW, UTC) is None


class TestAbsoluteAndZones:

    def test_iso_with_offset_is_trusted(self):
        berlin = ZoneInfo("Europe/Berlin")
        value = normalize("2026-10-20T10:00:00Z", NOW, berlin)
        assert value == datetime(2026, 10, 20, 10, 0, tzinfo=timezone.utc)
        assert value.tzinfo == berlin

    def test_naive_iso_is_local(self):
        tokyo = ZoneInfo("Asia/Tokyo")
        value = normalize("2026-10-20T10:00", NOW, tokyo)
        assert value == datetime(2026, 10, 20, 10, 0, tzinfo=tokyo)

    def test_relative_words_use_local_calendar_day(self):
        # 23:30 UTC on Monday is already Tuesday in Tokyo.
        late = datetime(2026, 10, 19, 23, 30, tzinfo=UTC)
        tokyo = ZoneInfo("Asia/Tokyo")
        assert normalize("tomorrow", late, tokyo) == datetime(2026, 10, 21, tzinfo=tokyo)

    def test_unknown_default_timezone_falls_back_to_utc(self):
        assert _resolve_default_timezone("Mars/Olympus") == ZoneInfo("UTC")
        assert _resolve_default_timezone("Europe/Paris") == ZoneInfo("Europe/Paris")

    def test_combine_date_and_time(self):
        value = combine_date_and_time(at(2, 0), at(0, 15, 45), UTC)
        assert value == at(2, 15, 45)


class TestStripTemporal:

    @pytest.mark.parametrize("text, expected", [
        ("team sync tomorrow 10am", "team sync"),
        ("standup next friday", "standup"),
        ("lunch in 2 hours", "lunch"),
        ("review on March 3", "review on"),
    ])
    def test_strips_expressions(self, text, expected):
        assert strip_temporal(text) == expected
