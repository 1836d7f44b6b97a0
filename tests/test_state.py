import asyncio
from datetime import timedelta

import pytest

from conftest import NOW, at, make_event
from copilot.agent.schemas import Entities
from copilot.agent.state import ConversationStore
from copilot.models import EventDraft, EventPatch, TimeInterval
from copilot.state import LocalCalendar


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _make_store(ttl=60):
    clock = FakeClock()
    ids = iter(f"conv_{index}" for index in range(1, 100))
    return ConversationStore(ttl_seconds=ttl, id_factory=lambda: next(ids), clock=clock), clock


def _day(days=0):
    start = at(days, 0)
    return TimeInterval(start=start, end=start + timedelta(days=1))


class TestConversationStore:

    def test_create_and_get(self):
        store, _ = _make_store()
        state = store.create("Schedule a meeting", "schedule", Entities(title="Sync"))

        assert state.id == "conv_1"
        loaded = store.get("conv_1")
        assert loaded.pending_entities.title == "Sync"
        assert loaded.operation == "schedule"

    def test_get_returns_copies(self):
        store, _ = _make_store()
        store.create("Schedule a meeting", "schedule")

        copy = store.get("conv_1")
        copy.missing_fields.append("title")

        assert store.get("conv_1").missing_fields == []

    def test_expiry_counts_from_last_save(self):
        store, clock = _make_store(ttl=60)
        state = store.create("Schedule a meeting", "schedule")

        clock.now += 50
        store.save(state)
        clock.now += 50
        assert store.get(state.id) is not None

        clock.now += 61
        assert store.get(state.id) is None
        assert len(store) == 0

    def test_unknown_or_empty_id(self):
        store, _ = _make_store()
        assert store.get(None) is None
        assert store.get("conv_missing") is None
        assert store.delete("") is False

    def test_delete(self):
        store, _ = _make_store()
        state = store.create("Cancel standup", "cancel")

        assert store.delete(state.id) is True
        assert store.delete(state.id) is False

    def test_purge_expired(self):
        store, clock = _make_store(ttl=10)
        store.create("a", "schedule")
        clock.now += 5
        store.create("b", "schedule")
        clock.now += 7

        assert store.purge_expired() == 1
        assert len(store) == 1

    def test_abandoned_conversation_is_evicted_by_later_writes(self):
        store, clock = _make_store(ttl=10)
        abandoned = store.create("Schedule a meeting", "schedule")
        clock.now += 11

        active = store.create("Cancel standup", "cancel")
        assert len(store) == 1
        clock.now += 5
        store.save(active)

        assert len(store) == 1
        assert store.get(abandoned.id) is None
        assert store.get(active.id) is not None


class TestLocalCalendar:

    def test_list_events_in_window_and_filter(self):
        calendar = LocalCalendar([
            make_event("evt_1", "Weekly Sync", at(0, 10)),
            make_event("evt_2", "Lunch", at(0, 12)),
            make_event("evt_3", "Weekly Sync", at(1, 10)),
        ])

        events = asyncio.run(calendar.list_events(_day(0)))
        assert [e.id for e in events] == ["evt_1", "evt_2"]

        synced = asyncio.run(calendar.list_events(_day(0), title_filter="sync"))
        assert [e.id for e in synced] == ["evt_1"]

    def test_check_busy_only_for_own_calendar(self):
        calendar = LocalCalendar([make_event("evt_1", "Weekly Sync", at(0, 10))])

        busy = asyncio.run(calendar.check_busy(_day(0), ["primary"]))
        assert [(b.start, b.end) for b in busy] == [(at(0, 10), at(0, 10, 30))]
        assert asyncio.run(calendar.check_busy(_day(0), ["team@example.com"])) == []

    def test_create_update_delete(self):
        calendar = LocalCalendar()
        draft = EventDraft(title="Budget review", start=at(1, 14), end=at(1, 14, 30))

        created = asyncio.run(calendar.create_event(draft))
        assert created.id.startswith("evt_")
        assert len(calendar) == 1

        updated = asyncio.run(calendar.update_event(created.id, EventPatch(title="Budget sync")))
        assert updated.title == "Budget sync"
        assert updated.start == at(1, 14)

        asyncio.run(calendar.delete_event(created.id))
        assert calendar.get(created.id) is None

    def test_missing_event(self):
        calendar = LocalCalendar()
        with pytest.raises(KeyError):
            asyncio.run(calendar.delete_event("evt_missing"))
        with pytest.raises(KeyError):
            asyncio.run(calendar.update_event("evt_missing", EventPatch(title="x")))

    def test_update_rejects_inverted_interval(self):
        calendar = LocalCalendar([make_event("evt_1", "Weekly Sync", NOW)])
        with pytest.raises(ValueError):
            asyncio.run(calendar.update_event("evt_1", EventPatch(end=NOW - timedelta(hours=1))))
