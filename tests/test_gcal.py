import asyncio
from datetime import timedelta

import pytest

from conftest import UTC, at
from copilot.gcal import (GoogleCalendarBackend, _build_gcal_event_body, _build_gcal_patch_body,
                          _normalize_gcal_event, load_gcal_token, save_gcal_token)
from copilot.models import EventDraft, EventPatch, TimeInterval


class _Call:

    def __init__(self, result):
        self.result = result

    def execute(self):
        return self.result


class FakeEvents:

    def __init__(self, pages=None):
        self.pages = list(pages or [])
        self.calls = []

    def list(self, **params):
        self.calls.append(("list", params))
        return _Call(self.pages.pop(0))

    def insert(self, calendarId, body):
        self.calls.append(("insert", {"calendarId": calendarId, "body": body}))
        return _Call({"id": "gcal_new", **body})

    def patch(self, calendarId, eventId, body):
        self.calls.append(("patch", {"eventId": eventId, "body": body}))
        raw = {
            "id": eventId,
            "summary": "Weekly Sync",
            "start": {"dateTime": "2026-10-20T10:00:00Z"},
            "end": {"dateTime": "2026-10-20T10:30:00Z"},
        }
        raw.update(body)
        return _Call(raw)

    def delete(self, calendarId, eventId):
        self.calls.append(("delete", {"calendarId": calendarId, "eventId": eventId}))
        return _Call("")


class FakeFreeBusy:

    def __init__(self, response):
        self.response = response
        self.bodies = []

    def query(self, body):
        self.bodies.append(body)
        return _Call(self.response)


class FakeService:

    def __init__(self, pages=None, freebusy=None):
        self._events = FakeEvents(pages)
        self._freebusy = FakeFreeBusy(freebusy or {"calendars": {}})

    def events(self):
        return self._events

    def freebusy(self):
        return self._freebusy


def _window():
    return TimeInterval(start=at(1, 0), end=at(2, 0))


def _raw_event(event_id, title, start, end):
    return {"id": event_id, "summary": title,
            "start": {"dateTime": start}, "end": {"dateTime": end}}


class TestNormalizeEvent:

    def test_timed_event(self):
        raw = _raw_event("g1", "Weekly Sync", "2026-10-20T12:00:00+02:00", "2026-10-20T12:30:00+02:00")
        raw["attendees"] = [{"email": "ana@example.com"}, {"displayName": "no email"}]
        event = _normalize_gcal_event(raw, "primary", UTC)

        assert event.start == at(1, 10)
        assert event.end == at(1, 10, 30)
        assert event.attendees == ["ana@example.com"]
        assert event.calendar_id == "primary"

    def test_all_day_event_starts_at_local_midnight(self):
        raw = {"id": "g2", "summary": "Offsite",
               "start": {"date": "2026-10-21"}, "end": {"date": "2026-10-22"}}
        event = _normalize_gcal_event(raw, "primary", UTC)

        assert event.start == at(2, 0)
        assert event.end == at(3, 0)

    def test_missing_end_and_title(self):
        raw = {"id": "g3", "start": {"dateTime": "2026-10-20T09:00:00Z"}}
        event = _normalize_gcal_event(raw, None, UTC)

        assert event.title == "(no title)"
        assert event.end - event.start == timedelta(hours=1)

    def test_cancelled_or_unreadable(self):
        cancelled = _raw_event("g4", "Gone", "2026-10-20T09:00:00Z", "2026-10-20T10:00:00Z")
        cancelled["status"] = "cancelled"

        assert _normalize_gcal_event(cancelled, None, UTC) is None
        assert _normalize_gcal_event({"id": "g5", "start": {"dateTime": "soon"}}, None, UTC) is None


class TestRequestBodies:

    def test_event_body(self):
        draft = EventDraft(title="Budget review", start=at(1, 14), end=at(1, 14, 30),
                           attendees=["ana@example.com"])
        body = _build_gcal_event_body(draft, UTC)

        assert body["summary"] == "Budget review"
        assert body["start"] == {"dateTime": at(1, 14).isoformat(), "timeZone": "UTC"}
        assert body["attendees"] == [{"email": "ana@example.com"}]
        assert "location" not in body

    def test_patch_body_has_only_changes(self):
        body = _build_gcal_patch_body(EventPatch(title="Team Sync"), UTC)
        assert body == {"summary": "Team Sync"}


class TestGoogleCalendarBackend:

    def test_list_events_follows_pages(self):
        pages = [
            {"items": [_raw_event("g1", "Weekly Sync", "2026-10-20T10:00:00Z",
                                  "2026-10-20T10:30:00Z")],
             "nextPageToken": "page-2"},
            {"items": [_raw_event("g2", "Weekly Sync Prep", "2026-10-20T09:00:00Z",
                                  "2026-10-20T09:30:00Z")]},
        ]
        service = FakeService(pages=pages)
        backend = GoogleCalendarBackend(service=service, calendar_id="primary", tz=UTC)

        events = asyncio.run(backend.list_events(_window(), title_filter="sync"))

        assert [e.id for e in events] == ["g1", "g2"]
        first, second = service.events().calls
        assert first[1]["pageToken"] is None
        assert first[1]["q"] == "sync"
        assert first[1]["singleEvents"] is True
        assert second[1]["pageToken"] == "page-2"

    def test_check_busy(self):
        response = {"calendars": {"primary": {"busy": [
            {"start": "2026-10-20T10:00:00Z", "end": "2026-10-20T10:30:00Z"},
            {"start": "garbage", "end": "2026-10-20T11:00:00Z"},
        ]}}}
        service = FakeService(freebusy=response)
        backend = GoogleCalendarBackend(service=service, calendar_id="primary", tz=UTC)

        busy = asyncio.run(backend.check_busy(_window(), ["primary"]))

        assert [(b.start, b.end) for b in busy] == [(at(1, 10), at(1, 10, 30))]
        assert service.freebusy().bodies[0]["items"] == [{"id": "primary"}]

    def test_check_busy_calendar_error(self):
        response = {"calendars": {"primary": {"errors": [{"reason": "notFound"}]}}}
        backend = GoogleCalendarBackend(service=FakeService(freebusy=response), tz=UTC)

        with pytest.raises(RuntimeError):
            asyncio.run(backend.check_busy(_window(), ["primary"]))

    def test_create_update_delete(self):
        service = FakeService()
        backend = GoogleCalendarBackend(service=service, calendar_id="primary", tz=UTC)
        draft = EventDraft(title="Budget review", start=at(1, 14), end=at(1, 14, 30))

        created = asyncio.run(backend.create_event(draft))
        assert created.id == "gcal_new"
        assert created.start == at(1, 14)

        updated = asyncio.run(backend.update_event("g1", EventPatch(title="Team Sync")))
        assert updated.title == "Team Sync"

        asyncio.run(backend.delete_event("g1"))
        assert [name for name, _ in service.events().calls] == ["insert", "patch", "delete"]


class TestToken:

    def test_missing_or_corrupt_token(self, tmp_path):
        path = tmp_path / "token.json"
        assert load_gcal_token(path) is None

        path.write_text("{not json", encoding="utf-8")
        assert load_gcal_token(path) is None

    def test_saved_token_is_readable(self, tmp_path):
        path = tmp_path / "nested" / "token.json"
        save_gcal_token(path, {"refresh_token": "abc"})
        assert load_gcal_token(path) == {"refresh_token": "abc"}
