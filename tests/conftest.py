from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from copilot.agent.orchestrator import SchedulingOrchestrator
from copilot.agent.state import ConversationStore
from copilot.models import Event
from copilot.state import LocalCalendar

UTC = ZoneInfo("UTC")
# Monday 2026-10-19, 08:00 local.
NOW = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)


def at(days: int, hour: int, minute: int = 0) -> datetime:
    """NOW's date shifted by ``days``, at the given local clock time."""
    day = NOW + timedelta(days=days)
    return day.replace(hour=hour, minute=minute, second=0, microsecond=0)


def make_event(event_id: str, title: str, start: datetime, minutes: int = 30) -> Event:
    return Event(id=event_id, title=title, start=start, end=start + timedelta(minutes=minutes))


@pytest.fixture
def calendar():
    return LocalCalendar()


@pytest.fixture
def store():
    return ConversationStore(ttl_seconds=1800)


@pytest.fixture
def orchestrator(calendar, store):
    return SchedulingOrchestrator(calendar=calendar,
                                  store=store,
                                  tz=UTC,
                                  now_provider=lambda: NOW,
                                  timeout=1.0)
