import asyncio
from datetime import timedelta

from conftest import at
from copilot.agent.availability import AvailabilityOracle
from copilot.models import BusyPeriod, TimeInterval


class RawBusyCalendar:
    """Calendar stub returning free/busy entries exactly as given."""

    def __init__(self, entries):
        self.entries = entries
        self.calendar_ids = None

    async def check_busy(self, window, calendar_ids):
        self.calendar_ids = calendar_ids
        return self.entries


def _make_window():
    start = at(1, 9)
    return TimeInterval(start=start, end=start + timedelta(hours=8))


class TestAvailabilityOracle:

    def test_keeps_overlapping_periods_unclipped_and_sorted(self):
        straddling = BusyPeriod(start=at(1, 8), end=at(1, 10), title="Breakfast")
        calendar = RawBusyCalendar([
            {"start": at(1, 15).isoformat(), "end": at(1, 16).isoformat()},
            straddling,
            BusyPeriod(start=at(1, 7), end=at(1, 9)),
            BusyPeriod(start=at(1, 17), end=at(1, 18)),
        ])
        oracle = AvailabilityOracle(calendar, calendar_ids=["primary"])

        periods = asyncio.run(oracle.busy_periods(_make_window()))

        assert [(p.start, p.end) for p in periods] == [(at(1, 8), at(1, 10)),
                                                       (at(1, 15), at(1, 16))]
        assert periods[0].title == "Breakfast"
        assert calendar.calendar_ids == ["primary"]

    def test_malformed_entries_are_dropped(self):
        calendar = RawBusyCalendar([
            {"start": "not a time", "end": at(1, 11).isoformat()},
            {"start": at(1, 10).isoformat(), "end": at(1, 11).isoformat()},
        ])
        oracle = AvailabilityOracle(calendar, calendar_ids=["primary"])

        periods = asyncio.run(oracle.busy_periods(_make_window()))

        assert [(p.start, p.end) for p in periods] == [(at(1, 10), at(1, 11))]
